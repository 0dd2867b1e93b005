"""Tests for handlers: the toolchain and publish collaborators."""

import logging
from unittest.mock import MagicMock

import pytest

from buildmatrix.errors import EnvironmentFailure
from buildmatrix.handlers import (
    CommandResult,
    HandlerRegistry,
    NoOpHandler,
    PublishHandler,
    ShellHandler,
)
from buildmatrix.handlers.publish import ARTIFACTS_ENV
from buildmatrix.schemas import Artifact, EffectClass, StageManifest


def _manifest(cwd, command="true", effect=EffectClass.COMPILE, **kwargs):
    return StageManifest.for_effect(
        effect,
        run_id="R1",
        pipeline_id="build",
        instance_key="os=linux",
        stage_name=kwargs.pop("stage_name", "compile"),
        command=command,
        cwd=str(cwd),
        **kwargs,
    )


def _wheel(tmp_path, name="pkg-0.1.0-py3-none-any.whl"):
    path = tmp_path / name
    path.write_bytes(b"wheel")
    return Artifact(
        name=name,
        path=str(path),
        stage_name="wheel",
        instance_key="os=linux",
        sha256="0" * 64,
        size_bytes=5,
    )


class TestCommandResult:
    def test_ok(self):
        assert CommandResult(0).ok is True
        assert CommandResult(1).ok is False


class TestNoOpHandler:
    def test_records_and_succeeds(self, tmp_path):
        handler = NoOpHandler()
        result = handler.execute(_manifest(tmp_path, "cargo build"))
        assert result.ok
        assert result.output == "[noop] cargo build"
        assert [m.command for m in handler.calls] == ["cargo build"]


class TestHandlerRegistry:
    def test_get_unknown_backend(self):
        registry = HandlerRegistry()
        with pytest.raises(KeyError, match="No handler registered for backend: publish"):
            registry.get("publish")

    def test_register_and_dispatch(self, tmp_path):
        registry = HandlerRegistry()
        handler = MagicMock()
        handler.execute.return_value = CommandResult(0)
        registry.register("toolchain", handler)

        manifest = _manifest(tmp_path)
        assert registry.dispatch(manifest).ok
        handler.execute.assert_called_once_with(manifest)
        assert registry.has("toolchain")
        assert registry.list_backends() == ["toolchain"]

    def test_create_default(self):
        registry = HandlerRegistry.create_default(shell="/bin/sh")
        assert isinstance(registry.get("toolchain"), ShellHandler)
        assert isinstance(registry.get("publish"), PublishHandler)

    def test_create_noop(self):
        registry = HandlerRegistry.create_noop()
        assert isinstance(registry.get("toolchain"), NoOpHandler)
        assert isinstance(registry.get("publish"), NoOpHandler)


class TestShellHandler:
    def test_success(self, tmp_path):
        result = ShellHandler(shell="/bin/sh").execute(_manifest(tmp_path, "echo hello"))
        assert result.exit_code == 0
        assert result.output == "hello\n"

    def test_nonzero_exit_is_reported_not_raised(self, tmp_path):
        result = ShellHandler(shell="/bin/sh").execute(_manifest(tmp_path, "echo broken >&2; exit 3"))
        assert result.exit_code == 3
        assert "broken" in result.output

    def test_undecodable_output_does_not_fail_stage(self, tmp_path):
        """Build logs with non-UTF-8 bytes still report the real exit status."""
        result = ShellHandler(shell="/bin/sh").execute(_manifest(tmp_path, r"printf '\377\376 ok'; exit 0"))
        assert result.ok
        assert result.output.endswith(" ok")
        assert "�" in result.output

    def test_runs_in_workspace_with_manifest_env(self, tmp_path):
        manifest = _manifest(tmp_path, 'pwd; echo "$MATRIX_OS"', env={"MATRIX_OS": "linux"})
        result = ShellHandler(shell="/bin/sh").execute(manifest)
        lines = result.output.splitlines()
        assert lines[0] == str(tmp_path.resolve())
        assert lines[1] == "linux"

    def test_env_layering(self, tmp_path):
        handler = ShellHandler(base_env={"A": "base", "B": "base"}, inherit_env=False)
        manifest = _manifest(tmp_path, env={"B": "manifest"})
        env = handler.build_env(manifest, extra={"C": "extra"})
        assert env == {"A": "base", "B": "manifest", "C": "extra"}

    def test_missing_command_is_environment_failure(self, tmp_path):
        handler = ShellHandler(shell="/bin/sh")
        with pytest.raises(EnvironmentFailure, match="command not found"):
            handler.execute(_manifest(tmp_path, "buildmatrix-no-such-tool --version"))

    def test_missing_shell_is_environment_failure(self, tmp_path):
        handler = ShellHandler(shell=str(tmp_path / "no-such-shell"))
        with pytest.raises(EnvironmentFailure, match="cannot execute"):
            handler.execute(_manifest(tmp_path))

    def test_missing_workspace_is_environment_failure(self, tmp_path):
        handler = ShellHandler(shell="/bin/sh")
        with pytest.raises(EnvironmentFailure):
            handler.execute(_manifest(tmp_path / "gone"))


class TestPublishHandler:
    def _publish_manifest(self, tmp_path, artifacts=None, **kwargs):
        kwargs.setdefault("credential_env", "PYPI_API_TOKEN")
        return _manifest(
            tmp_path,
            "twine upload $BUILDMATRIX_ARTIFACTS",
            effect=EffectClass.PUBLISH,
            stage_name="upload",
            artifacts=tuple(artifacts if artifacts is not None else [_wheel(tmp_path)]),
            **kwargs,
        )

    def test_exports_credential_and_artifacts(self, tmp_path):
        shell = MagicMock(spec=ShellHandler)
        shell.execute.return_value = CommandResult(0)
        handler = PublishHandler(shell, secrets={"PYPI_API_TOKEN": "s3cret"})

        manifest = self._publish_manifest(tmp_path, credential_target="TWINE_PASSWORD")
        assert handler.execute(manifest).ok

        args, kwargs = shell.execute.call_args
        assert args[0] is manifest
        assert kwargs["extra_env"]["TWINE_PASSWORD"] == "s3cret"
        assert kwargs["extra_env"][ARTIFACTS_ENV] == manifest.artifacts[0].path

    def test_credential_name_is_default_target(self, tmp_path):
        shell = MagicMock(spec=ShellHandler)
        shell.execute.return_value = CommandResult(0)
        handler = PublishHandler(shell, secrets={"PYPI_API_TOKEN": "s3cret"})

        handler.execute(self._publish_manifest(tmp_path))
        assert shell.execute.call_args[1]["extra_env"]["PYPI_API_TOKEN"] == "s3cret"

    def test_secret_is_never_logged(self, tmp_path, caplog):
        shell = MagicMock(spec=ShellHandler)
        shell.execute.return_value = CommandResult(0)
        handler = PublishHandler(shell, secrets={"PYPI_API_TOKEN": "s3cret"})

        with caplog.at_level(logging.DEBUG, logger="buildmatrix"):
            handler.execute(self._publish_manifest(tmp_path))
        assert "PYPI_API_TOKEN" in caplog.text
        assert "s3cret" not in caplog.text

    @pytest.mark.parametrize("secrets", [{}, {"PYPI_API_TOKEN": ""}])
    def test_missing_credential(self, tmp_path, secrets):
        shell = MagicMock(spec=ShellHandler)
        handler = PublishHandler(shell, secrets=secrets)
        with pytest.raises(EnvironmentFailure, match="PYPI_API_TOKEN is not set"):
            handler.execute(self._publish_manifest(tmp_path))
        shell.execute.assert_not_called()

    def test_credential_from_process_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PYPI_API_TOKEN", "from-env")
        shell = MagicMock(spec=ShellHandler)
        shell.execute.return_value = CommandResult(0)
        PublishHandler(shell).execute(self._publish_manifest(tmp_path))
        assert shell.execute.call_args[1]["extra_env"]["PYPI_API_TOKEN"] == "from-env"

    def test_nothing_to_publish(self, tmp_path):
        shell = MagicMock(spec=ShellHandler)
        handler = PublishHandler(shell, secrets={"PYPI_API_TOKEN": "s3cret"})
        with pytest.raises(EnvironmentFailure, match="no artifacts"):
            handler.execute(self._publish_manifest(tmp_path, artifacts=[]))

    def test_rejects_other_effects(self, tmp_path):
        handler = PublishHandler(MagicMock(spec=ShellHandler), secrets={})
        with pytest.raises(ValueError):
            handler.execute(_manifest(tmp_path))

    def test_real_shell_sees_credential(self, tmp_path):
        handler = PublishHandler(ShellHandler(shell="/bin/sh"), secrets={"PYPI_API_TOKEN": "s3cret"})
        manifest = _manifest(
            tmp_path,
            'test "$TWINE_PASSWORD" = s3cret && test -f $BUILDMATRIX_ARTIFACTS',
            effect=EffectClass.PUBLISH,
            stage_name="upload",
            artifacts=(_wheel(tmp_path),),
            credential_env="PYPI_API_TOKEN",
            credential_target="TWINE_PASSWORD",
        )
        assert handler.execute(manifest).exit_code == 0
