"""
Configuration management for buildmatrix.

Loads <home>/config.yaml where home is $BUILDMATRIX_HOME or ~/.buildmatrix.
A missing file means defaults; a broken file is an error.
"""

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from buildmatrix.errors import ConfigError

HOME_ENV = "BUILDMATRIX_HOME"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_LOG_FORMATS = ("pretty", "structured")


def get_buildmatrix_home() -> Path:
    """Directory holding config.yaml, run records and workspaces."""
    env_home = os.environ.get(HOME_ENV)
    if env_home:
        return Path(env_home).expanduser()
    return Path.home() / ".buildmatrix"


def _default_path(name: str) -> str:
    return str(get_buildmatrix_home() / name)


@dataclass
class BuildMatrixConfig:
    """
    Runtime configuration.

    Attributes:
        definitions_dir: Pipeline definitions (None = bundled definitions)
        workspace_root: Parent directory of per-instance workspaces
        runs_dir: Where run records are written
        source_dir: Project checked out into each workspace (None = none)
        max_parallel: Job instances executing at once
        shell: Shell used for stage commands
        log_level: DEBUG, INFO, WARNING, ERROR
        log_format: "pretty" (rich) or "structured" (JSON)
        log_file: Optional structured log file
    """
    definitions_dir: Optional[str] = None
    workspace_root: str = field(default_factory=lambda: _default_path("workspaces"))
    runs_dir: str = field(default_factory=lambda: _default_path("runs"))
    source_dir: Optional[str] = None
    max_parallel: int = 4
    shell: str = "/bin/bash"
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None

    def __post_init__(self):
        self.log_level = str(self.log_level).upper()

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigError: On an out-of-range or unknown value
        """
        if not isinstance(self.max_parallel, int) or self.max_parallel < 1:
            raise ConfigError(f"max_parallel must be a positive integer, got {self.max_parallel!r}")
        if self.log_level not in _LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {_LOG_LEVELS}, got {self.log_level!r}")
        if self.log_format not in _LOG_FORMATS:
            raise ConfigError(f"log_format must be one of {_LOG_FORMATS}, got {self.log_format!r}")
        if not self.shell:
            raise ConfigError("shell must not be empty")

    def path(self, name: str) -> Optional[Path]:
        """A path-valued setting with ~ expanded."""
        value = getattr(self, name)
        return Path(value).expanduser() if value else None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildMatrixConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**data)


def _apply_env_overrides(config: BuildMatrixConfig) -> None:
    max_parallel = os.environ.get("BUILDMATRIX_MAX_PARALLEL")
    if max_parallel:
        try:
            config.max_parallel = int(max_parallel)
        except ValueError:
            raise ConfigError(f"BUILDMATRIX_MAX_PARALLEL must be an integer, got {max_parallel!r}")

    log_level = os.environ.get("BUILDMATRIX_LOG_LEVEL")
    if log_level:
        config.log_level = log_level.upper()


def load_config(config_path: Optional[Path] = None) -> BuildMatrixConfig:
    """
    Load configuration from YAML.

    Args:
        config_path: Path to config file. Defaults to <home>/config.yaml

    Returns:
        Validated BuildMatrixConfig

    Raises:
        ConfigError: If the file is not valid YAML or holds invalid values
    """
    if config_path is None:
        config_path = get_buildmatrix_home() / "config.yaml"

    data: dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path, "r") as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}")
        if loaded is not None:
            if not isinstance(loaded, dict):
                raise ConfigError(f"{config_path} must contain a mapping")
            data = loaded

    config = BuildMatrixConfig.from_dict(data)
    _apply_env_overrides(config)
    config.validate()
    return config
