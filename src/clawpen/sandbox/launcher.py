"""Launch the agent binary inside the sandbox profile.

The isolation primitives themselves are provided by the host's init system:
the profile is translated into systemd execution properties and the agent is
started as a transient unit via ``systemd-run``.  The properties are applied
in a fixed order: capability drop, syscall filter, namespace restriction,
filesystem view, network restriction, resource ceilings, W^X.

Nothing here degrades gracefully.  If the host cannot provide a primitive
the profile asks for, launch() raises SandboxSetupError and the agent is
never started unconfined.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path

from clawpen.errors import SandboxSetupError
from clawpen.sandbox.profile import SandboxProfile, ServiceInstance

logger = logging.getLogger(__name__)

REQUIRED_CGROUP_CONTROLLERS = ("memory", "cpu", "pids")

PROC_ROOT = Path("/proc")

# Seccomp mode 2 is a BPF filter (SystemCallFilter=).
_SECCOMP_FILTER = "2"


# ── Profile -> execution properties ──────────────────────────────────────────


def profile_properties(profile: SandboxProfile) -> list[tuple[str, str]]:
    """Translate a profile into ordered systemd execution properties."""
    props: list[tuple[str, str]] = []

    # 1. Capabilities
    caps = " ".join(sorted(profile.capabilities))
    props += [
        ("CapabilityBoundingSet", caps),
        ("AmbientCapabilities", caps),
        ("NoNewPrivileges", "yes"),
    ]

    # 2. Syscalls
    props += [
        ("SystemCallFilter", " ".join(profile.syscall_allow)),
        ("SystemCallArchitectures", "native"),
    ]

    # 3. Namespaces
    if profile.restrict_namespaces:
        props += [
            ("RestrictNamespaces", "yes"),
            ("ProtectHostname", "yes"),
            ("ProtectClock", "yes"),
            ("RestrictRealtime", "yes"),
            ("RestrictSUIDSGID", "yes"),
            ("RemoveIPC", "yes"),
            ("LockPersonality", "yes"),
        ]

    # 4. Filesystem
    fs = profile.filesystem
    if fs.read_only_root:
        props += [
            ("ProtectSystem", "strict"),
            ("ProtectHome", "yes"),
            ("PrivateTmp", "yes"),
            ("PrivateDevices", "yes"),
            ("ProtectKernelTunables", "yes"),
            ("ProtectKernelModules", "yes"),
            ("ProtectKernelLogs", "yes"),
            ("ProtectControlGroups", "yes"),
            ("ProtectProc", "invisible"),
            ("ProcSubset", "pid"),
        ]
    if fs.writable_paths:
        props.append(("ReadWritePaths", " ".join(fs.writable_paths)))
    props.append(("UMask", "0027"))

    # 5. Network
    net = profile.network
    props.append(("RestrictAddressFamilies", " ".join(net.allowed_families)))
    if net.deny_multicast:
        props.append(("IPAddressDeny", "multicast"))

    # 6. Resources; breaching MemoryMax gets the unit OOM-killed.
    res = profile.resources
    props += [
        ("MemoryMax", res.memory_max),
        ("OOMPolicy", "kill"),
        ("CPUQuota", res.cpu_quota),
        ("TasksMax", str(res.tasks_max)),
    ]

    # 7. W^X
    if profile.memory_deny_write_execute:
        props.append(("MemoryDenyWriteExecute", "yes"))

    return props


# ── Host probe ───────────────────────────────────────────────────────────────


class HostProbe:
    """Checks that the host can honor every primitive of a profile."""

    def __init__(
        self,
        *,
        cgroup_root: Path = Path("/sys/fs/cgroup"),
        proc_root: Path | None = None,
        which: Callable[[str], str | None] = shutil.which,
        require_root: bool = True,
    ) -> None:
        self._cgroup_root = cgroup_root
        self._proc_root = proc_root or PROC_ROOT
        self._which = which
        self._require_root = require_root

    def check(self, profile: SandboxProfile) -> str:
        """Return the systemd-run path, or raise SandboxSetupError."""
        systemd_run = self._which("systemd-run")
        if systemd_run is None:
            raise SandboxSetupError("sandbox launcher", "systemd-run not found on PATH")

        if self._require_root and os.geteuid() != 0:
            raise SandboxSetupError(
                "identity switch", "starting a system unit as the service user requires root"
            )

        controllers_file = self._cgroup_root / "cgroup.controllers"
        try:
            controllers = set(controllers_file.read_text().split())
        except OSError:
            raise SandboxSetupError(
                "resource ceilings", f"cgroup v2 hierarchy not found at {self._cgroup_root}"
            ) from None
        missing = [c for c in REQUIRED_CGROUP_CONTROLLERS if c not in controllers]
        if missing:
            raise SandboxSetupError(
                "resource ceilings", "cgroup controllers unavailable: " + ", ".join(missing)
            )

        if profile.syscall_allow and not self._has_seccomp():
            raise SandboxSetupError("syscall filter", "kernel has no seccomp support")

        if profile.restrict_namespaces and not (self._proc_root / "self" / "ns").is_dir():
            raise SandboxSetupError("namespace restriction", "kernel has no namespace support")

        return systemd_run

    def check_confined(self) -> None:
        """Raise unless this process already runs under the rendered unit's profile.

        Requires no_new_privs, an active seccomp filter and empty effective
        and bounding capability sets.
        """
        status = self._status()
        problems = []
        if status.get("NoNewPrivs") != "1":
            problems.append("no_new_privs not set")
        if status.get("Seccomp") != _SECCOMP_FILTER:
            problems.append("no seccomp filter")
        for field in ("CapEff", "CapBnd"):
            try:
                caps = int(status.get(field, ""), 16)
            except ValueError:
                caps = -1
            if caps != 0:
                problems.append(f"{field} not empty")
        if problems:
            raise SandboxSetupError(
                "sandbox launcher",
                "exec must run inside the rendered unit (" + ", ".join(problems) + ")",
            )

    def _status(self) -> dict[str, str]:
        try:
            text = (self._proc_root / "self" / "status").read_text()
        except OSError:
            return {}
        status = {}
        for line in text.splitlines():
            key, sep, value = line.partition(":")
            if sep:
                status[key] = value.strip()
        return status

    def _has_seccomp(self) -> bool:
        return "Seccomp" in self._status()


# ── Command ──────────────────────────────────────────────────────────────────


def build_command(
    profile: SandboxProfile,
    instance: ServiceInstance,
    binary: str,
    args: Iterable[str],
    forwarded_env: Iterable[str] = (),
    *,
    systemd_run: str = "systemd-run",
) -> list[str]:
    """Build the systemd-run argv for one launch.

    Environment variables are forwarded by name only; systemd-run takes
    their values from its own environment, so no secret ever appears on a
    command line.
    """
    cmd = [
        systemd_run,
        f"--unit={instance.name}",
        f"--description={instance.name} agent (clawpen)",
        "--service-type=exec",
        "--wait",
        "--collect",
        "--pipe",
        "--quiet",
        f"--uid={instance.identity.user}",
        f"--gid={instance.identity.group}",
        f"--working-directory={instance.state_dir}",
    ]
    for key, value in profile_properties(profile):
        cmd.append(f"--property={key}={value}")
    for name in forwarded_env:
        cmd.append(f"--setenv={name}")
    cmd.append("--")
    cmd.append(binary)
    cmd.extend(args)
    return cmd


# ── Process handle ───────────────────────────────────────────────────────────


class ProcessHandle:
    """A running sandboxed agent."""

    def __init__(self, process: asyncio.subprocess.Process, unit: str) -> None:
        self._process = process
        self.unit = unit

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    async def wait(self) -> int:
        return await self._process.wait()

    async def send_signal(self, sig: int = signal.SIGTERM) -> None:
        """Forward ``sig`` to the agent's unit rather than to systemd-run itself."""
        if self._process.returncode is not None:
            return
        name = signal.Signals(sig).name
        logger.info("Forwarding %s to unit %s", name, self.unit)
        proc = await asyncio.create_subprocess_exec(
            "systemctl", "kill", f"--signal={name}", f"{self.unit}.service",
        )
        await proc.wait()

    async def terminate(self) -> None:
        await self.send_signal(signal.SIGTERM)


class SandboxLauncher:
    """Starts the agent binary under a SandboxProfile."""

    def __init__(self, instance: ServiceInstance, probe: HostProbe | None = None) -> None:
        self._instance = instance
        self._probe = probe or HostProbe()

    async def launch(
        self,
        profile: SandboxProfile,
        binary: str,
        args: Iterable[str],
        env: Mapping[str, str],
        forwarded_env: Iterable[str] = (),
    ) -> ProcessHandle:
        """Start ``binary`` confined by ``profile``.

        Raises:
            SandboxSetupError: The host lacks a primitive, or systemd-run
                could not be executed.
        """
        systemd_run = self._probe.check(profile)
        cmd = build_command(
            profile, self._instance, binary, args, forwarded_env, systemd_run=systemd_run
        )
        logger.debug("Launch command: %s", " ".join(cmd))

        try:
            process = await asyncio.create_subprocess_exec(*cmd, env=dict(env))
        except OSError as exc:
            raise SandboxSetupError(
                "sandbox launcher", f"cannot execute {systemd_run}: {exc}"
            ) from exc

        logger.info(
            "Launched %s as unit %s (pid %d, user %s)",
            binary,
            self._instance.name,
            process.pid,
            self._instance.identity.user,
        )
        return ProcessHandle(process, self._instance.name)


def exec_in_place(
    binary: str,
    args: Iterable[str],
    env: Mapping[str, str],
    probe: HostProbe | None = None,
) -> None:
    """Replace the current process with the agent.

    Only valid as the rendered unit's ExecStart, where the init system has
    already applied the profile.  Does not return.

    Raises:
        SandboxSetupError: This process is not confined.
    """
    (probe or HostProbe()).check_confined()
    argv = [binary, *args]
    logger.info("Executing %s", binary)
    os.execvpe(binary, argv, dict(env))
