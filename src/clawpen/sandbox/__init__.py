"""Sandboxed agent execution.

The profile (capabilities, syscalls, namespaces, filesystem view, network,
resource ceilings, W^X) is derived from the policy document and applied by
the host's init system before the agent binary runs.  There is no
unconfined fallback: a host that cannot honor the profile refuses to start.
"""

from .profile import (
    FilesystemView,
    Identity,
    NetworkPolicy,
    ResourceLimits,
    RestartPolicy,
    SandboxProfile,
    ServiceInstance,
    derive_instance,
    derive_profile,
    limits_from_config,
)
from .launcher import (
    HostProbe,
    ProcessHandle,
    SandboxLauncher,
    build_command,
    exec_in_place,
    profile_properties,
)
from .provision import provision, resolve_owner
from .unit import render_sysusers, render_tmpfiles, render_unit

__all__ = [
    "FilesystemView",
    "HostProbe",
    "Identity",
    "NetworkPolicy",
    "ProcessHandle",
    "ResourceLimits",
    "RestartPolicy",
    "SandboxLauncher",
    "SandboxProfile",
    "ServiceInstance",
    "build_command",
    "derive_instance",
    "derive_profile",
    "exec_in_place",
    "limits_from_config",
    "profile_properties",
    "provision",
    "render_sysusers",
    "render_tmpfiles",
    "render_unit",
    "resolve_owner",
]
