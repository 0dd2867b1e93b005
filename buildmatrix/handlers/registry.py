"""
Handler Registry for dispatching stages to the appropriate collaborator.

The registry maps backend names to Handler implementations:
- toolchain: setup, compile, test and package stages
- publish: publish stages
"""

from buildmatrix.handlers.base import CommandResult, Handler, NoOpHandler
from buildmatrix.schemas import StageManifest


class HandlerRegistry:
    """
    Registry for handler dispatch by backend name.

    Usage:
        registry = HandlerRegistry()
        registry.register("toolchain", ShellHandler())

        # Dispatch a manifest
        result = registry.dispatch(manifest)

        # Or use factory with defaults
        registry = HandlerRegistry.create_default()
    """

    def __init__(self) -> None:
        """Initialize an empty handler registry."""
        self._handlers: dict[str, Handler] = {}

    def register(self, backend: str, handler: Handler) -> None:
        """
        Register a handler for a backend.

        Args:
            backend: Backend name (toolchain or publish)
            handler: Handler instance for this backend
        """
        self._handlers[backend] = handler

    def get(self, backend: str) -> Handler:
        """
        Get handler for a backend.

        Raises:
            KeyError: If no handler registered for this backend
        """
        if backend not in self._handlers:
            registered = list(self._handlers.keys())
            raise KeyError(
                f"No handler registered for backend: {backend}. "
                f"Registered: {registered}"
            )
        return self._handlers[backend]

    def has(self, backend: str) -> bool:
        return backend in self._handlers

    def list_backends(self) -> list[str]:
        return list(self._handlers.keys())

    def dispatch(self, manifest: StageManifest) -> CommandResult:
        """
        Dispatch a manifest to the handler for its backend.

        Raises:
            KeyError: If no handler registered for the manifest's backend
        """
        handler = self.get(manifest.backend)
        return handler.execute(manifest)

    @classmethod
    def create_default(
        cls,
        shell: str | None = None,
        base_env: dict[str, str] | None = None,
    ) -> "HandlerRegistry":
        """
        Create a registry that runs real commands.

        Args:
            shell: Shell for stage commands (default /bin/bash)
            base_env: Environment applied under every stage

        Returns:
            Configured HandlerRegistry
        """
        from buildmatrix.handlers.publish import PublishHandler
        from buildmatrix.handlers.shell import DEFAULT_SHELL, ShellHandler

        shell_handler = ShellHandler(shell=shell or DEFAULT_SHELL, base_env=base_env)

        registry = cls()
        registry.register("toolchain", shell_handler)
        registry.register("publish", PublishHandler(shell_handler))
        return registry

    @classmethod
    def create_noop(cls) -> "HandlerRegistry":
        """
        Create a registry with NoOp handlers.

        Used for dry-run mode and tests.
        """
        registry = cls()
        registry.register("toolchain", NoOpHandler())
        registry.register("publish", NoOpHandler())
        return registry
