"""Tests for the pipeline registry."""

import json

import pytest
import yaml

from buildmatrix.errors import ConfigurationError
from buildmatrix.registry import (
    BUNDLED_DEFINITIONS_DIR,
    PipelineNotFoundError,
    PipelineRegistry,
)
from buildmatrix.schemas import PipelineDef


def _definition(pipeline_id="smoke", axes=None):
    return {
        "pipeline_id": pipeline_id,
        "version": "1.0",
        "axes": axes if axes is not None else {"os": ["linux", "macos"]},
        "stages": [{"name": "hello", "effect": "test", "command": "echo hello"}],
    }


@pytest.fixture
def definitions(tmp_path):
    root = tmp_path / "definitions"
    root.mkdir()
    return root


class TestPipelineRegistry:
    def test_load_yaml(self, definitions):
        (definitions / "smoke.yaml").write_text(yaml.safe_dump(_definition()))
        pipeline = PipelineRegistry(definitions).load("smoke")
        assert isinstance(pipeline, PipelineDef)
        assert pipeline.axis_names == ("os",)

    def test_load_json(self, definitions):
        (definitions / "smoke.json").write_text(json.dumps(_definition()))
        assert PipelineRegistry(definitions).load("smoke").pipeline_id == "smoke"

    def test_yaml_preferred_over_json(self, definitions):
        (definitions / "smoke.yaml").write_text(yaml.safe_dump(_definition(axes={"os": ["linux"]})))
        (definitions / "smoke.json").write_text(json.dumps(_definition()))
        registry = PipelineRegistry(definitions)
        assert registry.find_definition("smoke").suffix == ".yaml"
        assert registry.load("smoke").axes_dict() == {"os": ["linux"]}

    def test_nested_directories(self, definitions):
        (definitions / "release").mkdir()
        (definitions / "release" / "publish.yaml").write_text(yaml.safe_dump(_definition("publish")))
        registry = PipelineRegistry(definitions)
        assert registry.list_pipelines() == ["publish"]
        assert registry.load("publish").pipeline_id == "publish"

    def test_deprecated_definitions_are_hidden(self, definitions):
        (definitions / "_deprecated").mkdir()
        (definitions / "_deprecated" / "old.yaml").write_text(yaml.safe_dump(_definition("old")))
        assert PipelineRegistry(definitions).list_pipelines() == []

    def test_not_found(self, definitions):
        with pytest.raises(PipelineNotFoundError, match="nightly"):
            PipelineRegistry(definitions).load("nightly")

    def test_invalid_yaml(self, definitions):
        (definitions / "smoke.yaml").write_text("stages: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Cannot parse"):
            PipelineRegistry(definitions).load("smoke")

    def test_non_mapping(self, definitions):
        (definitions / "smoke.yaml").write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError, match="does not contain a mapping"):
            PipelineRegistry(definitions).load("smoke")

    def test_invalid_definition_names_the_file(self, definitions):
        data = _definition()
        data["stages"][0]["effect"] = "deploy"
        (definitions / "smoke.yaml").write_text(yaml.safe_dump(data))
        with pytest.raises(ConfigurationError, match="smoke.yaml"):
            PipelineRegistry(definitions).load("smoke")

    def test_id_mismatch(self, definitions):
        (definitions / "smoke.yaml").write_text(yaml.safe_dump(_definition("other")))
        with pytest.raises(ConfigurationError, match="Pipeline ID mismatch"):
            PipelineRegistry(definitions).load("smoke")

    def test_cache_and_hash_lookup(self, definitions):
        (definitions / "smoke.yaml").write_text(yaml.safe_dump(_definition()))
        registry = PipelineRegistry(definitions)
        pipeline = registry.load("smoke")

        assert registry.load("smoke") is pipeline
        assert registry.load_by_hash(registry.compute_hash(pipeline)) is pipeline
        assert registry.load_by_hash("0" * 64) is None

        registry.clear_cache()
        assert registry.load_by_hash(registry.compute_hash(pipeline)) is None

    def test_preload_all(self, definitions):
        for pid in ("a", "b"):
            (definitions / f"{pid}.yaml").write_text(yaml.safe_dump(_definition(pid)))
        assert PipelineRegistry(definitions).preload_all() == 2

    def test_missing_directory_lists_nothing(self, tmp_path):
        assert PipelineRegistry(tmp_path / "nowhere").list_pipelines() == []

    def test_default_is_bundled(self):
        assert PipelineRegistry().definitions_dir == BUNDLED_DEFINITIONS_DIR


class TestComputeHash:
    def test_stable(self):
        a = PipelineDef.from_dict(_definition())
        b = PipelineDef.from_dict(_definition())
        assert PipelineRegistry.compute_hash(a) == PipelineRegistry.compute_hash(b)
        assert len(PipelineRegistry.compute_hash(a)) == 64

    def test_changes_with_content(self):
        a = PipelineDef.from_dict(_definition())
        b = PipelineDef.from_dict(_definition(axes={"os": ["linux"]}))
        assert PipelineRegistry.compute_hash(a) != PipelineRegistry.compute_hash(b)

    def test_axis_order_matters(self):
        """Axis order decides expansion order, so it is part of the identity."""
        a = PipelineDef.from_dict(_definition(axes={"os": ["linux"], "py": ["3.7"]}))
        b = PipelineDef.from_dict(_definition(axes={"py": ["3.7"], "os": ["linux"]}))
        assert PipelineRegistry.compute_hash(a) != PipelineRegistry.compute_hash(b)
