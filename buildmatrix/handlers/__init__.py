"""
Handlers module for buildmatrix collaborators.

The stage runner only sequences and gates stages; handlers do the work:
- toolchain: ShellHandler runs setup/compile/test/package commands
- publish: PublishHandler checks the credential and uploads artifacts

Usage:
    from buildmatrix.handlers import HandlerRegistry

    registry = HandlerRegistry.create_default()
    # Or for dry runs
    registry = HandlerRegistry.create_noop()
"""

from buildmatrix.handlers.base import CommandResult, Handler, NoOpHandler
from buildmatrix.handlers.publish import PublishHandler
from buildmatrix.handlers.registry import HandlerRegistry
from buildmatrix.handlers.shell import ShellHandler

__all__ = [
    "CommandResult",
    "Handler",
    "NoOpHandler",
    "HandlerRegistry",
    "PublishHandler",
    "ShellHandler",
]
