"""Sandbox profile and service instance, derived fresh on every launch."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from clawpen.config import ServiceConfig
from clawpen.policy.models import PolicyDocument

STANDARD_SERVICE_SYSCALLS = "@system-service"

# Standard networking only: Telegram long polling plus the local gateway.
DEFAULT_ADDRESS_FAMILIES: tuple[str, ...] = ("AF_INET", "AF_INET6", "AF_UNIX", "AF_NETLINK")


@dataclass(frozen=True)
class FilesystemView:
    read_only_root: bool = True
    writable_paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class NetworkPolicy:
    allowed_families: tuple[str, ...] = DEFAULT_ADDRESS_FAMILIES
    deny_multicast: bool = True


@dataclass(frozen=True)
class ResourceLimits:
    """Ceilings handed to the host's cgroup accounting."""

    memory_max: str = "1G"
    cpu_quota: str = "100%"
    tasks_max: int = 256


@dataclass(frozen=True)
class SandboxProfile:
    capabilities: frozenset[str] = frozenset()
    syscall_allow: tuple[str, ...] = (STANDARD_SERVICE_SYSCALLS,)
    restrict_namespaces: bool = True
    filesystem: FilesystemView = field(default_factory=FilesystemView)
    network: NetworkPolicy = field(default_factory=NetworkPolicy)
    resources: ResourceLimits = field(default_factory=ResourceLimits)
    # Only valid because the agent is a static, non-JIT binary.
    memory_deny_write_execute: bool = True


@dataclass(frozen=True)
class Identity:
    user: str
    group: str


@dataclass(frozen=True)
class RestartPolicy:
    mode: Literal["always"] = "always"
    delay_seconds: float = 5.0
    max_restarts: int | None = None


@dataclass(frozen=True)
class ServiceInstance:
    """Persistent identity and state location of the one agent service."""

    name: str
    identity: Identity
    state_dir: str
    restart_policy: RestartPolicy = field(default_factory=RestartPolicy)

    @property
    def workspace_dir(self) -> str:
        return f"{self.state_dir}/workspace"

    @property
    def runtime_dir(self) -> str:
        return f"{self.state_dir}/.zeroclaw"


def derive_instance(config: ServiceConfig, name: str = "zeroclaw") -> ServiceInstance:
    return ServiceInstance(
        name=name,
        identity=Identity(user=config.user, group=config.group),
        state_dir=config.state_dir,
        restart_policy=RestartPolicy(
            delay_seconds=config.restart.delay_seconds,
            max_restarts=config.restart.max_restarts,
        ),
    )


def limits_from_config(config: ServiceConfig) -> ResourceLimits:
    return ResourceLimits(
        memory_max=config.resources.memory_max,
        cpu_quota=config.resources.cpu_quota,
        tasks_max=config.resources.tasks_max,
    )


def derive_profile(
    doc: PolicyDocument,
    instance: ServiceInstance,
    limits: ResourceLimits,
) -> SandboxProfile:
    """Build the restricted execution profile for one launch.

    The only writable location is the service's state directory (plus the
    workspace, should it have been placed outside of it).
    """
    writable = [instance.state_dir]
    workspace = doc.workspace_dir.rstrip("/")
    if workspace != instance.state_dir and not workspace.startswith(instance.state_dir + "/"):
        writable.append(workspace)

    return SandboxProfile(
        filesystem=FilesystemView(read_only_root=True, writable_paths=tuple(writable)),
        resources=limits,
    )
