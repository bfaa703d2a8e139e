"""Render the sandbox profile as a persistent systemd unit plus its tmpfiles.d
and sysusers.d rules.

The transient launch path and this unit share ``profile_properties()`` so
both apply exactly the same restrictions.  In the unit, ExecStart points at
``clawpen exec``, which materializes secrets and then execs the agent inside
the confinement systemd already set up.
"""

from __future__ import annotations

import shlex
from collections.abc import Iterable

from clawpen.sandbox.launcher import profile_properties
from clawpen.sandbox.profile import SandboxProfile, ServiceInstance


def _format_seconds(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value)}s"
    return f"{int(value * 1000)}ms"


def render_unit(
    profile: SandboxProfile,
    instance: ServiceInstance,
    exec_start: Iterable[str],
) -> str:
    lines = [
        "[Unit]",
        f"Description={instance.name} agent (clawpen)",
        "After=network-online.target",
        "Wants=network-online.target",
        "",
        "[Service]",
        "Type=simple",
        f"User={instance.identity.user}",
        f"Group={instance.identity.group}",
        f"ExecStart={shlex.join(list(exec_start))}",
        f"WorkingDirectory={instance.state_dir}",
        f"Restart={instance.restart_policy.mode}",
        f"RestartSec={_format_seconds(instance.restart_policy.delay_seconds)}",
    ]
    lines += [f"{key}={value}" for key, value in profile_properties(profile)]
    lines += [
        "",
        "[Install]",
        "WantedBy=multi-user.target",
    ]
    return "\n".join(lines) + "\n"


def render_tmpfiles(instance: ServiceInstance) -> str:
    """tmpfiles.d rules creating the state directories for the service identity."""
    user, group = instance.identity.user, instance.identity.group
    return "".join(
        f"d {path} 0750 {user} {group} -\n"
        for path in (instance.state_dir, instance.workspace_dir, instance.runtime_dir)
    )


def render_sysusers(instance: ServiceInstance) -> str:
    """sysusers.d rules creating the service's system user and group."""
    user, group = instance.identity.user, instance.identity.group
    return (
        f"g {group} -\n"
        f'u {user} -:{group} "{instance.name} service user" {instance.state_dir}\n'
    )
