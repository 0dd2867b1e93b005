"""
EffectClass enum - what kind of side effect a stage has.

Effect classes decide which collaborator runs a stage:
- setup, compile, test, package -> toolchain (local command execution)
- publish -> publish (credentialed upload of packaged artifacts)
"""

from enum import Enum
from typing import Literal


class EffectClass(str, Enum):
    """
    Declared effect of a stage.

    The runner treats every command as opaque; the effect class only
    controls routing and artifact handling.
    """
    SETUP = "setup"
    COMPILE = "compile"
    TEST = "test"
    PACKAGE = "package"
    PUBLISH = "publish"

    @property
    def backend(self) -> Literal["toolchain", "publish"]:
        """Name of the handler backend responsible for this effect."""
        if self == EffectClass.PUBLISH:
            return "publish"
        return "toolchain"

    @property
    def produces_artifacts(self) -> bool:
        """Package stages yield artifacts for later stages of the same instance."""
        return self == EffectClass.PACKAGE

    @property
    def requires_credential(self) -> bool:
        return self == EffectClass.PUBLISH

    @classmethod
    def from_string(cls, value: str) -> "EffectClass":
        """Parse an EffectClass from its string value."""
        for effect in cls:
            if effect.value == value:
                return effect
        raise ValueError(f"Unknown effect class: {value}")
