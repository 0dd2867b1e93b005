"""
PipelineRegistry - Load and validate PipelineDefs from storage.

The registry provides:
- Loading PipelineDefs from YAML or JSON files in a definitions directory
- Caching loaded definitions
- Validation of PipelineDef structure
- Content-addressable lookup via SHA256 hash
"""

import hashlib
import json
from pathlib import Path
from typing import Optional

import yaml

from buildmatrix.errors import BuildMatrixError, ConfigurationError
from buildmatrix.schemas import PipelineDef

# Pipelines shipped with the package
BUNDLED_DEFINITIONS_DIR = Path(__file__).parent / "pipelines" / "definitions"


class PipelineNotFoundError(BuildMatrixError):
    """Raised when a pipeline definition is not found."""
    pass


class PipelineRegistry:
    """
    Registry for loading and caching PipelineDefs.

    Loads pipeline definitions from files organized in a directory tree.
    Supports both flat and nested directory structures.

    Example directory structure:
        definitions/
            build.yaml
            test.yaml
            release/
                publish.yaml
    """

    def __init__(self, definitions_dir: Path | str = BUNDLED_DEFINITIONS_DIR):
        """
        Initialize the registry.

        Args:
            definitions_dir: Directory containing pipeline definition files
        """
        self._definitions_dir = Path(definitions_dir)
        self._cache: dict[str, PipelineDef] = {}
        self._hash_index: dict[str, str] = {}  # sha256 -> pipeline_id

    @property
    def definitions_dir(self) -> Path:
        """Get the definitions directory path."""
        return self._definitions_dir

    def load(self, pipeline_id: str) -> PipelineDef:
        """
        Load a PipelineDef by ID.

        Searches for {pipeline_id}.yaml, .yml or .json in the definitions
        directory tree. YAML files are preferred over JSON when both exist.

        Raises:
            PipelineNotFoundError: If the definition file doesn't exist
            ConfigurationError: If the definition is invalid
        """
        if pipeline_id in self._cache:
            return self._cache[pipeline_id]

        def_path = self.find_definition(pipeline_id)
        if def_path is None:
            raise PipelineNotFoundError(f"Pipeline definition not found: {pipeline_id}")

        data = self.load_file(def_path)

        try:
            pipeline_def = PipelineDef.from_dict(data)
        except ConfigurationError as e:
            raise ConfigurationError(f"Invalid pipeline in {def_path}: {e}") from e

        if pipeline_def.pipeline_id != pipeline_id:
            raise ConfigurationError(
                f"Pipeline ID mismatch: file is '{def_path.name}' but "
                f"pipeline_id is '{pipeline_def.pipeline_id}'"
            )

        self._cache[pipeline_id] = pipeline_def
        self._hash_index[self.compute_hash(pipeline_def)] = pipeline_id

        return pipeline_def

    @staticmethod
    def load_file(path: Path) -> dict:
        """
        Load a definition file (YAML or JSON).

        Raises:
            ConfigurationError: If the format is unsupported or parsing fails
        """
        suffix = path.suffix.lower()

        try:
            with open(path) as f:
                if suffix in (".yaml", ".yml"):
                    data = yaml.safe_load(f)
                elif suffix == ".json":
                    data = json.load(f)
                else:
                    raise ConfigurationError(f"Unsupported file format: {suffix}")
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot parse {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} does not contain a mapping")
        return data

    def load_by_hash(self, sha256: str) -> Optional[PipelineDef]:
        """Load a cached PipelineDef by its content hash."""
        pipeline_id = self._hash_index.get(sha256)
        if pipeline_id is None:
            return None
        return self._cache.get(pipeline_id)

    def list_pipelines(self) -> list[str]:
        """
        List all available pipeline IDs.

        Returns:
            Sorted list of pipeline IDs found in the definitions directory
        """
        if not self._definitions_dir.exists():
            return []

        pipeline_ids = set()
        for ext in ["*.yaml", "*.yml", "*.json"]:
            for f in self._definitions_dir.glob(f"**/{ext}"):
                if "_deprecated" not in str(f):
                    pipeline_ids.add(f.stem)

        return sorted(pipeline_ids)

    def find_definition(self, pipeline_id: str) -> Optional[Path]:
        """
        Find the definition file for a pipeline ID.

        Searches the definitions directory recursively, root first.
        YAML files are preferred over JSON.
        """
        for ext in [".yaml", ".yml", ".json"]:
            filename = f"{pipeline_id}{ext}"

            root_path = self._definitions_dir / filename
            if root_path.exists():
                return root_path

            matches = sorted(self._definitions_dir.glob(f"**/{filename}"))
            if matches:
                return matches[0]

        return None

    @staticmethod
    def compute_hash(pipeline_def: PipelineDef) -> str:
        """
        Compute SHA256 hash of a PipelineDef for content addressing.

        Uses canonical JSON serialization (sorted keys, no whitespace).
        Axis order is hashed separately since sorted keys would hide it.
        """
        payload = {
            "definition": pipeline_def.to_dict(),
            "axis_order": list(pipeline_def.axis_names),
        }
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()

    def clear_cache(self) -> None:
        """Clear the definition cache."""
        self._cache.clear()
        self._hash_index.clear()

    def preload_all(self) -> int:
        """
        Preload all pipeline definitions into cache.

        Returns:
            Number of pipelines loaded

        Raises:
            ConfigurationError: If any definition is invalid
        """
        count = 0
        for pipeline_id in self.list_pipelines():
            self.load(pipeline_id)
            count += 1
        return count
