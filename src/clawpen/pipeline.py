"""Wiring between the build-time and run-time phases.

Build time (pure): service configuration -> compose -> validate -> render.
Run time (all I/O): materialize secrets -> launch under the sandbox profile.

The two phases meet only at the rendered artifact and its placeholder
tokens; everything the run-time side needs is derived from the immutable
Deployment below.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from clawpen.config import ServiceConfig
from clawpen.policy import DEFAULT_LISTS, ListSpec, PolicyDocument, compose_service, ensure_valid
from clawpen.render import ConfigArtifact, render
from clawpen.runtime.secrets import SecretMaterializer, SecretRef, secret_refs
from clawpen.sandbox.profile import (
    ResourceLimits,
    SandboxProfile,
    ServiceInstance,
    derive_instance,
    derive_profile,
    limits_from_config,
)
from clawpen.sandbox.provision import resolve_owner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Deployment:
    """Everything fixed at build time for one service."""

    config: ServiceConfig
    document: PolicyDocument
    artifact: ConfigArtifact
    instance: ServiceInstance
    limits: ResourceLimits

    @property
    def secret_refs(self) -> list[SecretRef]:
        return secret_refs(self.document)

    def profile(self) -> SandboxProfile:
        return derive_profile(self.document, self.instance, self.limits)


def build_deployment(config: ServiceConfig, defaults: ListSpec = DEFAULT_LISTS) -> Deployment:
    """Compose, validate and render.

    Raises:
        MalformedEntryError: A list entry is unusable.
        PolicyValidationError: The document violates one or more invariants.
    """
    document = ensure_valid(compose_service(config, defaults))
    artifact = render(document)
    logger.info(
        "Composed policy: %d allowed commands, %d forbidden paths, telegram=%s",
        len(document.autonomy.allowed_commands),
        len(document.autonomy.forbidden_paths),
        "on" if document.telegram else "off",
    )
    return Deployment(
        config=config,
        document=document,
        artifact=artifact,
        instance=derive_instance(config),
        limits=limits_from_config(config),
    )


def make_materializer(deployment: Deployment) -> SecretMaterializer:
    """Materializer writing into the instance's runtime dir.

    When running as root the private config is handed to the service
    identity; otherwise it stays owned by the current user.
    """
    owner = None
    if os.geteuid() == 0:
        owner = resolve_owner(deployment.instance.identity)
    return SecretMaterializer(
        Path(deployment.instance.runtime_dir),
        workspace_dir=deployment.document.workspace_dir,
        tool_packages=deployment.document.tool_packages,
        owner=owner,
    )
