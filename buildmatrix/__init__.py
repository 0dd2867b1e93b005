"""
buildmatrix - Matrix build/test/publish orchestrator

Expands a pipeline's axes into independent job instances and runs each
instance's stages in order against external toolchain and publish
collaborators.
"""

__version__ = "0.1.0"


__all__ = ["BuildMatrixConfig", "load_config", "get_buildmatrix_home"]

from .config import BuildMatrixConfig, load_config, get_buildmatrix_home
