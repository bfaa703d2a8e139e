"""Secret materialization, run once per agent start.

The steps are strictly sequential and each either fully succeeds or raises:

    load_secrets -> substitute -> write_config -> export_env

A failure in any of the first three aborts the start before the agent's
environment is even built, so the agent never runs with a partially
materialized config.  The runtime config is replaced, never appended to, so
a restart after a token rotation cannot keep a stale value around.

Resolved values are never logged.  Log lines name files and variables only.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, model_validator

from clawpen.errors import EmptySecretError, SecretReadError, UnresolvedPlaceholderError
from clawpen.policy.models import PolicyDocument
from clawpen.render import CONFIG_FILENAME, ConfigArtifact, escape_basic, find_placeholders
from clawpen.runtime.env import API_KEY_ENV, AgentEnv, build_agent_env

logger = logging.getLogger(__name__)


class SecretRef(BaseModel):
    """Where a secret comes from and where it is consumed.

    Exactly one of ``placeholder`` (substituted into the config file) and
    ``env_var`` (exported into the agent's environment) is set.
    """

    model_config = ConfigDict(frozen=True)

    source_path: Path
    placeholder: str | None = None
    env_var: str | None = None

    @model_validator(mode="after")
    def _one_destination(self) -> SecretRef:
        if (self.placeholder is None) == (self.env_var is None):
            raise ValueError(
                f"secret {self.source_path} needs exactly one of placeholder or env_var"
            )
        return self


def secret_refs(doc: PolicyDocument) -> list[SecretRef]:
    """Derive the secret references a validated document needs."""
    refs: list[SecretRef] = []
    if doc.api_key_file is not None:
        refs.append(SecretRef(source_path=Path(doc.api_key_file), env_var=API_KEY_ENV))
    tg = doc.telegram
    if tg is not None and tg.bot_token_file is not None:
        refs.append(
            SecretRef(source_path=Path(tg.bot_token_file), placeholder=tg.bot_token_placeholder)
        )
    return refs


@dataclass(frozen=True)
class ResolvedSecret:
    ref: SecretRef
    value: str

    def __repr__(self) -> str:
        return f"ResolvedSecret(ref={self.ref!r}, value=<redacted>)"


@dataclass
class MaterializedRuntime:
    """Result of one materialization: the private config and the agent env."""

    config_path: Path
    agent_env: AgentEnv


class SecretMaterializer:
    """Resolves placeholder tokens into a private runtime copy of the config."""

    def __init__(
        self,
        runtime_dir: Path,
        *,
        workspace_dir: str,
        tool_packages: Iterable[str] = (),
        owner: tuple[int, int] | None = None,
    ) -> None:
        self._runtime_dir = runtime_dir
        self._workspace_dir = workspace_dir
        self._tool_packages = tuple(tool_packages)
        self._owner = owner

    @property
    def config_path(self) -> Path:
        return self._runtime_dir / CONFIG_FILENAME

    # ── Steps ─────────────────────────────────────────────────────────────────

    def load_secrets(self, refs: Iterable[SecretRef]) -> list[ResolvedSecret]:
        """Read every secret file; fail closed on unreadable or blank content."""
        resolved = []
        for ref in refs:
            try:
                raw = ref.source_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                detail = exc.strerror if isinstance(exc, OSError) and exc.strerror else str(exc)
                raise SecretReadError(ref.source_path, detail) from exc
            value = raw.strip()
            if not value:
                raise EmptySecretError(ref.source_path)
            logger.debug("Loaded secret from %s", ref.source_path)
            resolved.append(ResolvedSecret(ref=ref, value=value))
        return resolved

    def substitute(self, text: str, resolved: Iterable[ResolvedSecret]) -> str:
        """Replace every occurrence of each placeholder with its escaped value."""
        for secret in resolved:
            if secret.ref.placeholder is None:
                continue
            text = text.replace(secret.ref.placeholder, escape_basic(secret.value))
        leftover = find_placeholders(text)
        if leftover:
            raise UnresolvedPlaceholderError(leftover)
        return text

    def write_config(self, text: str) -> Path:
        """Atomically replace the private runtime config (mode 0600)."""
        self._runtime_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        if self._owner is not None:
            # The agent opens config.toml here as the service identity.
            os.chown(self._runtime_dir, *self._owner)
            os.chmod(self._runtime_dir, 0o700)
        fd, tmp_name = tempfile.mkstemp(
            dir=self._runtime_dir, prefix=".config.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o600)
            if self._owner is not None:
                os.chown(tmp_name, *self._owner)
            os.replace(tmp_name, self.config_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("Wrote runtime config %s", self.config_path)
        return self.config_path

    def export_env(
        self,
        resolved: Iterable[ResolvedSecret],
        base_env: Mapping[str, str] | None = None,
    ) -> AgentEnv:
        """Build the agent's environment with the env-delivered secrets."""
        env_secrets = {s.ref.env_var: s.value for s in resolved if s.ref.env_var is not None}
        agent_env = build_agent_env(
            workspace_dir=self._workspace_dir,
            config_dir=str(self._runtime_dir),
            tool_packages=self._tool_packages,
            secrets=env_secrets,
            base_env=base_env,
        )
        if env_secrets:
            logger.info("Exported secret env vars: %s", ", ".join(sorted(env_secrets)))
        return agent_env

    # ── Pipeline ──────────────────────────────────────────────────────────────

    def materialize(
        self,
        artifact: ConfigArtifact,
        refs: Iterable[SecretRef],
        base_env: Mapping[str, str] | None = None,
    ) -> MaterializedRuntime:
        """Run all steps in order.

        Raises:
            SecretReadError: A secret file is missing or unreadable.
            EmptySecretError: A secret file is blank after trimming.
            UnresolvedPlaceholderError: A placeholder has no matching secret.
        """
        resolved = self.load_secrets(refs)
        text = self.substitute(artifact.text, resolved)
        config_path = self.write_config(text)
        agent_env = self.export_env(resolved, base_env)
        return MaterializedRuntime(config_path=config_path, agent_env=agent_env)
