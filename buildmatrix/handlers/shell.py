"""
Shell handler - the toolchain collaborator.

Runs a stage command through the shell inside the job instance's working
directory. The command is opaque: installing toolchains, compiling, running
tests and building wheels all look the same from here.
"""

import logging
import os
import subprocess
from typing import Optional

from buildmatrix.errors import EnvironmentFailure
from buildmatrix.handlers.base import CommandResult, Handler
from buildmatrix.schemas import StageManifest

logger = logging.getLogger(__name__)

# POSIX shells exit with 127 when the command itself cannot be found
COMMAND_NOT_FOUND = 127

DEFAULT_SHELL = "/bin/bash"

# Keep the tail of long build logs in run records
MAX_OUTPUT_CHARS = 20_000


def _tail(text: str, limit: int = MAX_OUTPUT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return "...\n" + text[-limit:]


class ShellHandler(Handler):
    """
    Handler for toolchain stages (setup, compile, test, package).

    Usage:
        handler = ShellHandler(shell="/bin/bash")
        result = handler.execute(manifest)
    """

    def __init__(
        self,
        shell: str = DEFAULT_SHELL,
        base_env: Optional[dict[str, str]] = None,
        inherit_env: bool = True,
    ):
        """
        Initialize the shell handler.

        Args:
            shell: Shell used to interpret stage commands
            base_env: Environment applied under every manifest's env
            inherit_env: Start from the orchestrator's own environment
        """
        self._shell = shell
        self._base_env = dict(base_env or {})
        self._inherit_env = inherit_env

    def build_env(self, manifest: StageManifest, extra: Optional[dict[str, str]] = None) -> dict[str, str]:
        """Compose the command environment for a manifest."""
        env: dict[str, str] = dict(os.environ) if self._inherit_env else {}
        env.update(self._base_env)
        env.update(manifest.env)
        if extra:
            env.update(extra)
        return env

    def execute(self, manifest: StageManifest, extra_env: Optional[dict[str, str]] = None) -> CommandResult:
        """
        Run the manifest's command and capture its exit status.

        Args:
            manifest: The StageManifest to run
            extra_env: Additional variables (never logged)

        Returns:
            CommandResult with exit code and output tail

        Raises:
            EnvironmentFailure: If the shell, working directory or command
                cannot be found
        """
        logger.debug(f"[{manifest.instance_key}] {manifest.stage_name}: {manifest.command}")

        try:
            completed = subprocess.run(
                manifest.command,
                shell=True,
                executable=self._shell,
                cwd=manifest.cwd,
                env=self.build_env(manifest, extra_env),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            raise EnvironmentFailure(
                manifest.stage_name,
                f"cannot execute command with {self._shell} in {manifest.cwd}: {e}",
            ) from e

        output = _tail(completed.stdout or "")

        if completed.returncode == COMMAND_NOT_FOUND:
            raise EnvironmentFailure(
                manifest.stage_name,
                f"command not found (exit {COMMAND_NOT_FOUND}): {output.strip()[-500:]}",
            )

        return CommandResult(exit_code=completed.returncode, output=output)
