"""Supervise the single sandboxed agent process.

Each start runs the full run-time sequence again (fresh secrets, freshly
derived profile, overwritten runtime config).  Starts are serialized: a new
one only follows the previous instance's exit.

Restart policy: fixed delay, unbounded unless ``max_restarts`` is set.  A
clean exit (status 0) ends supervision.  A stop signal is forwarded to the
agent and supervision ends once it has exited.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Awaitable

from clawpen.errors import RuntimeCrash
from clawpen.pipeline import Deployment
from clawpen.runtime.secrets import SecretMaterializer
from clawpen.sandbox.launcher import ProcessHandle, SandboxLauncher

logger = logging.getLogger(__name__)

_STOP_SIGNALS = (signal.SIGTERM, signal.SIGINT)

# Exit statuses that count as a clean shutdown after a requested stop.
_CLEAN_STOP_STATUSES = frozenset(
    {0} | {128 + s for s in _STOP_SIGNALS} | {-s for s in _STOP_SIGNALS}
)


class Supervisor:
    """Runs materialize -> launch -> wait, restarting on crashes."""

    def __init__(
        self,
        deployment: Deployment,
        materializer: SecretMaterializer,
        launcher: SandboxLauncher,
        *,
        install_signal_handlers: bool = True,
    ) -> None:
        self._deployment = deployment
        self._materializer = materializer
        self._launcher = launcher
        self._install_signal_handlers = install_signal_handlers

        self._handle: ProcessHandle | None = None
        self._stop_signal: int | None = None
        self._stop_event = asyncio.Event()
        self._pending: set[asyncio.Task] = set()
        self._last_pid = 0
        self.starts = 0

    # ── Signals ───────────────────────────────────────────────────────────────

    def request_stop(self, sig: int = signal.SIGTERM) -> None:
        """Forward ``sig`` to the running agent and do not relaunch it."""
        if self._stop_signal is None:
            logger.info("Received %s, stopping agent", signal.Signals(sig).name)
        self._stop_signal = sig
        self._stop_event.set()
        if self._handle is not None:
            self._spawn(self._handle.send_signal(sig))

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @property
    def stopping(self) -> bool:
        return self._stop_signal is not None

    # ── Run loop ──────────────────────────────────────────────────────────────

    async def run(self) -> int:
        """Supervise until a clean exit, a stop request, or the restart limit.

        Returns the agent's last exit status, or 0 when a requested stop
        ended it with the forwarded signal.  Pre-launch failures
        (secrets, sandbox setup) propagate and end supervision.
        """
        loop = asyncio.get_running_loop()
        if self._install_signal_handlers:
            for sig in _STOP_SIGNALS:
                loop.add_signal_handler(sig, self.request_stop, sig)
        try:
            return await self._loop()
        finally:
            if self._install_signal_handlers:
                for sig in _STOP_SIGNALS:
                    loop.remove_signal_handler(sig)
            if self._pending:
                await asyncio.gather(*self._pending, return_exceptions=True)

    async def _loop(self) -> int:
        policy = self._deployment.instance.restart_policy
        restarts = 0
        while True:
            code = await self._start_once()
            if self.stopping:
                logger.info("Agent stopped with status %d", code)
                return 0 if code in _CLEAN_STOP_STATUSES else code
            if code == 0:
                logger.info("Agent exited cleanly")
                return 0

            crash = RuntimeCrash(self._last_pid, code)
            if policy.max_restarts is not None and restarts >= policy.max_restarts:
                logger.error("%s; restart limit (%d) reached", crash, policy.max_restarts)
                return code
            restarts += 1
            logger.warning(
                "%s; restarting in %.1fs (restart #%d)", crash, policy.delay_seconds, restarts
            )
            if await self._sleep_or_stop(policy.delay_seconds):
                return code

    async def _start_once(self) -> int:
        if self.stopping:
            logger.info("Stop requested before start, not launching agent")
            return 0
        deployment = self._deployment
        runtime = self._materializer.materialize(deployment.artifact, deployment.secret_refs)
        profile = deployment.profile()

        handle = await self._launcher.launch(
            profile,
            deployment.config.binary,
            deployment.config.args,
            runtime.agent_env.env,
            runtime.agent_env.forwarded,
        )
        self.starts += 1
        self._handle = handle
        self._last_pid = handle.pid
        try:
            if self._stop_signal is not None:
                await handle.send_signal(self._stop_signal)
            return await handle.wait()
        finally:
            self._handle = None

    async def _sleep_or_stop(self, delay: float) -> bool:
        """Sleep for ``delay``; return True if a stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

