import threading

import pytest

from buildmatrix.handlers import CommandResult, Handler, HandlerRegistry
from buildmatrix.schemas import PipelineDef, TriggerEvent
from buildmatrix.trigger import evaluate_trigger


PYTHON_VERSIONS = ["3.7", "3.8", "3.9", "3.10", "3.11"]


class ScriptedHandler(Handler):
    """
    Thread-safe collaborator double.

    Records every manifest. `script(manifest)` decides the result: return an
    int exit code, a CommandResult, or raise.
    """

    def __init__(self, script=None):
        self.calls = []
        self._lock = threading.Lock()
        self._script = script

    def execute(self, manifest):
        with self._lock:
            self.calls.append(manifest)
        if self._script is None:
            return CommandResult(exit_code=0)
        result = self._script(manifest)
        if isinstance(result, CommandResult):
            return result
        return CommandResult(exit_code=result or 0)

    def stage_names(self, instance_key=None):
        return [
            m.stage_name for m in self.calls
            if instance_key is None or m.instance_key == instance_key
        ]


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point BUILDMATRIX_HOME at a temp dir and clear env overrides."""
    home = tmp_path / "home"
    monkeypatch.setenv("BUILDMATRIX_HOME", str(home))
    monkeypatch.delenv("BUILDMATRIX_MAX_PARALLEL", raising=False)
    monkeypatch.delenv("BUILDMATRIX_LOG_LEVEL", raising=False)
    return home


@pytest.fixture
def scripted():
    """Factory for ScriptedHandler doubles."""
    return ScriptedHandler


@pytest.fixture
def registry_of():
    """Build a HandlerRegistry from toolchain/publish doubles."""
    def _build(toolchain=None, publish=None):
        registry = HandlerRegistry()
        registry.register("toolchain", toolchain or ScriptedHandler())
        registry.register("publish", publish or ScriptedHandler())
        return registry
    return _build


@pytest.fixture
def matrix_pipeline() -> PipelineDef:
    """os x python_version pipeline with os-specific compile stages."""
    return PipelineDef.from_dict({
        "pipeline_id": "build",
        "version": "1.0",
        "axes": {
            "os": ["linux", "macos"],
            "python_version": PYTHON_VERSIONS,
        },
        "stages": [
            {"name": "setup", "effect": "setup", "command": "python@matrix.python_version --version"},
            {
                "name": "compile-linux",
                "effect": "compile",
                "if": "@matrix.os == 'linux'",
                "command": "cargo rustc -- -C link-arg=-undefined",
            },
            {
                "name": "compile-macos",
                "effect": "compile",
                "if": "@matrix.os == 'macos'",
                "command": "cargo rustc -- -C link-arg=-undefined -C link-arg=dynamic_lookup",
            },
            {"name": "test", "effect": "test", "command": "cargo test --release"},
        ],
    })


@pytest.fixture
def publish_pipeline() -> PipelineDef:
    """Master-only, os-only pipeline that packages and publishes."""
    return PipelineDef.from_dict({
        "pipeline_id": "publish",
        "version": "1.0",
        "trigger": {"events": ["push"], "branches": ["master"]},
        "axes": {"os": ["linux", "macos"]},
        "stages": [
            {"name": "install", "effect": "setup", "command": "pip3 install maturin"},
            {
                "name": "wheel",
                "effect": "package",
                "command": "maturin build --release",
                "artifacts": "target/wheels/*.whl",
            },
            {
                "name": "upload",
                "effect": "publish",
                "command": "twine upload $BUILDMATRIX_ARTIFACTS",
                "credential_env": "PYPI_API_TOKEN",
                "credential_target": "TWINE_PASSWORD",
            },
        ],
    })


@pytest.fixture
def admitted(matrix_pipeline):
    """A positive trigger decision for a push to main."""
    return evaluate_trigger(matrix_pipeline.trigger, TriggerEvent.push("main"))
