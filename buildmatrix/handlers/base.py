"""
Base handler protocol and common implementations.

Handlers are the external collaborators behind the stage runner. Each
handler executes StageManifests for one backend:
- toolchain: setup, compile, test and package stages (local commands)
- publish: credentialed upload of packaged artifacts
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from buildmatrix.schemas import StageManifest


@dataclass(frozen=True)
class CommandResult:
    """
    What a collaborator reports back for one stage.

    Attributes:
        exit_code: Exit status of the command (0 means success)
        output: Combined stdout/stderr, possibly truncated
    """
    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Handler(ABC):
    """
    Abstract base class for execution handlers.

    Handlers receive StageManifests, run the corresponding command and
    return its exit status. They raise EnvironmentFailure when the
    collaborator itself is unusable.
    """

    @abstractmethod
    def execute(self, manifest: StageManifest) -> CommandResult:
        """
        Execute a stage manifest.

        Args:
            manifest: The StageManifest containing the command and context

        Returns:
            CommandResult with the exit status

        Raises:
            EnvironmentFailure: If the collaborator is unreachable or misconfigured
        """
        pass


class NoOpHandler(Handler):
    """
    No-op handler for testing and dry-run mode.

    Records every manifest it sees and reports success without running
    anything.
    """

    def __init__(self) -> None:
        self.calls: list[StageManifest] = []

    def execute(self, manifest: StageManifest) -> CommandResult:
        """Return a successful result without executing."""
        self.calls.append(manifest)
        return CommandResult(exit_code=0, output=f"[noop] {manifest.command}")
