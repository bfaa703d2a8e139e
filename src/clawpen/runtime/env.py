"""Environment construction for the agent process.

Builds the environment handed to the launcher by:
1. Stripping every inherited secret-looking variable (the supervisor may
   run with credentials of its own that the agent must not see).
2. Injecting the agent's workspace and config locations.
3. Prepending tool package ``bin`` directories to PATH.
4. Injecting the env-delivered secrets resolved for this start.

The result also records which names the launcher must forward into the
sandbox; everything else stays on the supervisor's side.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

WORKSPACE_ENV = "ZEROCLAW_WORKSPACE"
CONFIG_DIR_ENV = "ZEROCLAW_CONFIG_DIR"
API_KEY_ENV = "ZEROCLAW_API_KEY"

# Never inherited from the supervisor; only set explicitly from secret files.
SECRET_ENV_VARS: frozenset[str] = frozenset(
    {
        API_KEY_ENV,
        "ANTHROPIC_API_KEY",
        "OPENAI_API_KEY",
        "OPENROUTER_API_KEY",
        "TELEGRAM_BOT_TOKEN",
        "GITHUB_TOKEN",
        "GH_TOKEN",
    }
)

_SECRET_PATTERNS = frozenset(
    {
        "API_KEY",
        "SECRET_KEY",
        "PRIVATE_KEY",
        "ACCESS_TOKEN",
        "AUTH_TOKEN",
        "BOT_TOKEN",
    }
)

_KEEP = frozenset({"SSH_AUTH_SOCK"})


@dataclass
class AgentEnv:
    """Environment for the agent plus the names to forward into the sandbox."""

    env: dict[str, str]
    forwarded: tuple[str, ...] = field(default_factory=tuple)


def scrub_env(base_env: Mapping[str, str], extra_strip: Iterable[str] = ()) -> dict[str, str]:
    """Return a copy of ``base_env`` without secret variables.  Never mutates the input."""
    strip_set = set(SECRET_ENV_VARS)
    strip_set.update(extra_strip)

    env: dict[str, str] = {}
    stripped: list[str] = []
    for key, value in base_env.items():
        upper = key.upper()
        if key in strip_set or (
            key not in _KEEP and any(p in upper for p in _SECRET_PATTERNS)
        ):
            stripped.append(key)
            continue
        env[key] = value

    if stripped:
        logger.info(
            "Env scrub: stripped %d secret vars: %s", len(stripped), ", ".join(sorted(stripped))
        )
    return env


def build_agent_env(
    *,
    workspace_dir: str,
    config_dir: str,
    tool_packages: Iterable[str] = (),
    secrets: Mapping[str, str] | None = None,
    base_env: Mapping[str, str] | None = None,
) -> AgentEnv:
    """Build the agent's environment for one process start.

    Args:
        workspace_dir: Exported as ZEROCLAW_WORKSPACE.
        config_dir: Directory holding the materialized config.toml.
        tool_packages: Install prefixes whose ``bin`` goes first on PATH.
        secrets: Env-delivered secrets, name -> resolved value.
        base_env: Inherited environment (default: ``os.environ``).
    """
    secrets = dict(secrets or {})
    env = scrub_env(os.environ if base_env is None else base_env)

    env[WORKSPACE_ENV] = workspace_dir
    env[CONFIG_DIR_ENV] = config_dir

    bin_dirs = [f"{prefix.rstrip('/')}/bin" for prefix in tool_packages]
    if bin_dirs:
        current = env.get("PATH", "")
        env["PATH"] = ":".join(bin_dirs + ([current] if current else []))

    env.update(secrets)

    forwarded = [WORKSPACE_ENV, CONFIG_DIR_ENV]
    if bin_dirs:
        forwarded.append("PATH")
    forwarded.extend(sorted(secrets))
    return AgentEnv(env=env, forwarded=tuple(forwarded))
