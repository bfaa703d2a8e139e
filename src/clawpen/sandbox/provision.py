"""One-time provisioning of the service identity's state directories."""

from __future__ import annotations

import grp
import logging
import os
import pwd
from pathlib import Path

from clawpen.errors import SandboxSetupError
from clawpen.sandbox.profile import Identity, ServiceInstance

logger = logging.getLogger(__name__)


def resolve_owner(identity: Identity) -> tuple[int, int]:
    """Look up uid/gid for the service identity.

    Raises:
        SandboxSetupError: If the user or group does not exist on this host.
    """
    try:
        uid = pwd.getpwnam(identity.user).pw_uid
        gid = grp.getgrnam(identity.group).gr_gid
    except KeyError as exc:
        raise SandboxSetupError(
            "identity switch",
            f"unknown service identity {identity.user}:{identity.group} "
            "(install the sysusers.d rules from 'clawpen unit' first)",
        ) from exc
    return uid, gid


def provision(instance: ServiceInstance, *, chown: bool | None = None) -> list[Path]:
    """Create state, workspace and runtime directories (mode 0750).

    Existing directories are kept; only their mode and owner are reset.
    Ownership is only changed when running as root unless ``chown`` says
    otherwise.
    """
    if chown is None:
        chown = os.geteuid() == 0

    owner = resolve_owner(instance.identity) if chown else None
    created = []
    for path in (instance.state_dir, instance.workspace_dir, instance.runtime_dir):
        p = Path(path)
        p.mkdir(parents=True, exist_ok=True)
        p.chmod(0o750)
        if owner is not None:
            os.chown(p, *owner)
        created.append(p)
        logger.info("Provisioned %s", p)
    return created
