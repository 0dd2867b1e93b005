"""
Publish handler - credentialed upload of packaged artifacts.

The credential is an opaque secret supplied out of band through an
environment variable. This handler checks that it is present and that there
is something to upload, then hands the actual upload command to the shell
collaborator with:
- the credential exported under the variable the command expects
- BUILDMATRIX_ARTIFACTS set to the space-separated artifact paths
"""

import logging
import os
import shlex
from typing import Optional

from buildmatrix.errors import EnvironmentFailure
from buildmatrix.handlers.base import CommandResult, Handler
from buildmatrix.handlers.shell import ShellHandler
from buildmatrix.schemas import EffectClass, StageManifest

logger = logging.getLogger(__name__)

ARTIFACTS_ENV = "BUILDMATRIX_ARTIFACTS"


class PublishHandler(Handler):
    """
    Handler for publish stages.

    Usage:
        handler = PublishHandler(ShellHandler())
        result = handler.execute(manifest)
    """

    def __init__(
        self,
        shell: Optional[ShellHandler] = None,
        secrets: Optional[dict[str, str]] = None,
    ):
        """
        Initialize the publish handler.

        Args:
            shell: Shell collaborator that runs the upload command
            secrets: Secret source; defaults to the process environment
        """
        self._shell = shell or ShellHandler()
        self._secrets = secrets

    def _lookup_credential(self, name: str) -> Optional[str]:
        source = self._secrets if self._secrets is not None else os.environ
        value = source.get(name)
        return value if value else None

    def execute(self, manifest: StageManifest) -> CommandResult:
        """
        Upload the manifest's artifacts.

        Raises:
            EnvironmentFailure: If the credential is missing or there are no
                artifacts to publish
        """
        if manifest.effect != EffectClass.PUBLISH:
            raise ValueError(f"Unsupported effect for publish handler: {manifest.effect.value}")

        if not manifest.credential_env:
            raise EnvironmentFailure(manifest.stage_name, "no credential variable configured")

        credential = self._lookup_credential(manifest.credential_env)
        if credential is None:
            raise EnvironmentFailure(
                manifest.stage_name,
                f"credential {manifest.credential_env} is not set",
            )

        if not manifest.artifacts:
            raise EnvironmentFailure(manifest.stage_name, "no artifacts to publish")

        target = manifest.credential_target or manifest.credential_env
        paths = " ".join(shlex.quote(a.path) for a in manifest.artifacts)

        logger.info(
            f"[{manifest.instance_key}] publishing {len(manifest.artifacts)} artifact(s) "
            f"using {manifest.credential_env}"
        )
        return self._shell.execute(
            manifest,
            extra_env={target: credential, ARTIFACTS_ENV: paths},
        )
