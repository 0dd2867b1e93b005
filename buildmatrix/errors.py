"""
Error classes for buildmatrix execution.

The taxonomy maps onto how far a failure reaches:
- ConfigurationError: malformed pipeline declaration or config. Raised before
  any job instance starts and aborts the whole run.
- StageFailure: a stage command exited non-zero. Local to one job instance.
- EnvironmentFailure: the toolchain or publish collaborator is unreachable or
  misconfigured (missing executable, missing credential). Treated exactly
  like a StageFailure.

Nothing is retried. The stage runner catches StageFailure and
EnvironmentFailure at the stage boundary and records them as the instance's
terminal status; ConfigurationError propagates to the caller.
"""

from typing import Optional


class BuildMatrixError(Exception):
    """Base exception for buildmatrix."""
    pass


class ConfigurationError(BuildMatrixError):
    """
    Malformed pipeline declaration.

    Examples:
    - An axis with zero values
    - A stage missing its name or command
    - An unknown effect class
    - A predicate that references an undeclared axis
    """
    pass


class ConfigError(ConfigurationError):
    """Invalid or unreadable buildmatrix config file."""
    pass


class StageFailure(BuildMatrixError):
    """A stage command returned a non-zero exit status."""

    def __init__(
        self,
        stage_name: str,
        exit_code: int,
        message: Optional[str] = None,
        output: str = "",
    ):
        self.stage_name = stage_name
        self.exit_code = exit_code
        self.output = output
        super().__init__(
            message or f"Stage '{stage_name}' exited with status {exit_code}"
        )


class EnvironmentFailure(BuildMatrixError):
    """
    An external collaborator could not do its job.

    Examples:
    - The shell or the command's executable is missing
    - The publish credential is not set
    - There is nothing to publish
    """

    def __init__(self, stage_name: str, message: str):
        self.stage_name = stage_name
        super().__init__(f"Stage '{stage_name}': {message}")
