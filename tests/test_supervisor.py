"""Tests for the restart loop in Supervisor."""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path

import pytest

from clawpen.errors import EmptySecretError, SandboxSetupError, SecretReadError
from clawpen.pipeline import build_deployment
from clawpen.runtime import SecretMaterializer
from clawpen.supervisor import Supervisor


class FakeHandle:
    """Stands in for ProcessHandle; exits with a scripted status."""

    def __init__(self, pid: int, code: int | None) -> None:
        self.pid = pid
        self.unit = "zeroclaw"
        self._code = code
        self._exited = asyncio.Event()
        self.signals: list[int] = []
        if code is not None:
            self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self._code

    async def send_signal(self, sig: int = signal.SIGTERM) -> None:
        self.signals.append(sig)
        if self._code is None:
            self._code = 128 + sig
            self._exited.set()

    def exit(self, code: int) -> None:
        self._code = code
        self._exited.set()


class FakeLauncher:
    """Hands out FakeHandles for a list of exit codes (None: run until signalled)."""

    def __init__(self, codes: list[int | None], config_path: Path | None = None) -> None:
        self._codes = list(codes)
        self._config_path = config_path
        self.launches: list[dict] = []
        self.handles: list[FakeHandle] = []

    async def launch(self, profile, binary, args, env, forwarded_env=()):
        self.launches.append(
            {
                "profile": profile,
                "binary": binary,
                "env": dict(env),
                "forwarded": tuple(forwarded_env),
                "config": self._config_path.read_text() if self._config_path else None,
            }
        )
        handle = FakeHandle(1000 + len(self.launches), self._codes.pop(0))
        self.handles.append(handle)
        return handle


@pytest.fixture
def deployment(service_config):
    return build_deployment(service_config)


@pytest.fixture
def materializer(deployment):
    return SecretMaterializer(
        Path(deployment.instance.runtime_dir),
        workspace_dir=deployment.document.workspace_dir,
    )


def _supervisor(deployment, materializer, launcher) -> Supervisor:
    return Supervisor(deployment, materializer, launcher, install_signal_handlers=False)


class TestSupervisor:
    @pytest.mark.asyncio
    async def test_clean_exit_ends_supervision(self, deployment, materializer):
        launcher = FakeLauncher([0])
        sup = _supervisor(deployment, materializer, launcher)
        assert await sup.run() == 0
        assert sup.starts == 1

    @pytest.mark.asyncio
    async def test_crash_is_restarted(self, deployment, materializer):
        launcher = FakeLauncher([1, 137, 0])
        sup = _supervisor(deployment, materializer, launcher)
        assert await sup.run() == 0
        assert sup.starts == 3

    @pytest.mark.asyncio
    async def test_restart_limit(self, service_config):
        cfg = service_config.model_copy(
            update={"restart": service_config.restart.model_copy(update={"max_restarts": 2})}
        )
        deployment = build_deployment(cfg)
        materializer = SecretMaterializer(
            Path(deployment.instance.runtime_dir),
            workspace_dir=deployment.document.workspace_dir,
        )
        launcher = FakeLauncher([3, 3, 3, 0])
        sup = _supervisor(deployment, materializer, launcher)
        assert await sup.run() == 3
        assert sup.starts == 3

    @pytest.mark.asyncio
    async def test_each_start_rematerializes(self, deployment, materializer, secrets_dir):
        launcher = FakeLauncher([1, 0], config_path=materializer.config_path)
        sup = _supervisor(deployment, materializer, launcher)

        original_launch = launcher.launch

        async def rotate_then_launch(*args, **kwargs):
            handle = await original_launch(*args, **kwargs)
            (secrets_dir / "telegram-token").write_text("rotated-token\n")
            return handle

        launcher.launch = rotate_then_launch
        await sup.run()

        first, second = launcher.launches
        assert "8000000000:AAF-test-token" in first["config"]
        assert "rotated-token" in second["config"]
        assert "rotated-token" not in second["env"].values()

    @pytest.mark.asyncio
    async def test_launch_receives_secrets_by_name(self, deployment, materializer):
        launcher = FakeLauncher([0])
        await _supervisor(deployment, materializer, launcher).run()
        launch = launcher.launches[0]
        assert launch["binary"] == "zeroclaw"
        assert launch["env"]["ZEROCLAW_API_KEY"] == "sk-ant-test-0001"
        assert "ZEROCLAW_API_KEY" in launch["forwarded"]
        assert launch["profile"] == deployment.profile()

    @pytest.mark.asyncio
    async def test_secret_failure_prevents_launch(self, deployment, materializer, secrets_dir):
        (secrets_dir / "telegram-token").write_text("")
        launcher = FakeLauncher([0])
        with pytest.raises(EmptySecretError):
            await _supervisor(deployment, materializer, launcher).run()
        assert launcher.launches == []

    @pytest.mark.asyncio
    async def test_secret_failure_on_restart(self, deployment, materializer, secrets_dir):
        launcher = FakeLauncher([1, 0])
        original_launch = launcher.launch

        async def break_then_launch(*args, **kwargs):
            handle = await original_launch(*args, **kwargs)
            (secrets_dir / "api-key").unlink()
            return handle

        launcher.launch = break_then_launch
        with pytest.raises(SecretReadError):
            await _supervisor(deployment, materializer, launcher).run()
        assert len(launcher.launches) == 1

    @pytest.mark.asyncio
    async def test_sandbox_failure_propagates(self, deployment, materializer):
        class RefusingLauncher:
            async def launch(self, *args, **kwargs):
                raise SandboxSetupError("syscall filter", "kernel has no seccomp support")

        with pytest.raises(SandboxSetupError):
            await _supervisor(deployment, materializer, RefusingLauncher()).run()

    @pytest.mark.asyncio
    async def test_stop_forwards_signal(self, deployment, materializer):
        launcher = FakeLauncher([None])
        sup = _supervisor(deployment, materializer, launcher)
        task = asyncio.create_task(sup.run())
        while not launcher.handles:
            await asyncio.sleep(0)

        sup.request_stop(signal.SIGTERM)
        code = await asyncio.wait_for(task, timeout=5)

        assert code == 0
        assert launcher.handles[0].signals == [signal.SIGTERM]
        assert sup.starts == 1
        assert sup.stopping

    @pytest.mark.asyncio
    async def test_stop_during_restart_delay(self, service_config):
        cfg = service_config.model_copy(
            update={"restart": service_config.restart.model_copy(update={"delay_seconds": 60})}
        )
        deployment = build_deployment(cfg)
        materializer = SecretMaterializer(
            Path(deployment.instance.runtime_dir),
            workspace_dir=deployment.document.workspace_dir,
        )
        launcher = FakeLauncher([1, 0])
        sup = _supervisor(deployment, materializer, launcher)
        task = asyncio.create_task(sup.run())
        while not launcher.handles:
            await asyncio.sleep(0)
        await asyncio.sleep(0.01)

        sup.request_stop(signal.SIGINT)
        # The last crash status is reported, not a clean stop.
        assert await asyncio.wait_for(task, timeout=5) == 1
        assert sup.starts == 1

    @pytest.mark.asyncio
    async def test_stop_with_unrelated_status_is_reported(self, deployment, materializer):
        launcher = FakeLauncher([None])
        sup = _supervisor(deployment, materializer, launcher)
        task = asyncio.create_task(sup.run())
        while not launcher.handles:
            await asyncio.sleep(0)

        launcher.handles[0].exit(3)
        sup.request_stop(signal.SIGTERM)
        assert await asyncio.wait_for(task, timeout=5) == 3

    @pytest.mark.asyncio
    async def test_stop_before_start_skips_launch(self, deployment, materializer):
        launcher = FakeLauncher([0])
        sup = _supervisor(deployment, materializer, launcher)
        sup.request_stop(signal.SIGTERM)

        assert await sup.run() == 0
        assert launcher.launches == []
        assert sup.starts == 0
        assert not materializer.config_path.exists()
