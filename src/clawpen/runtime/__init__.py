"""Run-time phase: resolve secrets into a private config and the agent env."""

from .env import AgentEnv, build_agent_env, scrub_env
from .secrets import MaterializedRuntime, SecretMaterializer, SecretRef, secret_refs

__all__ = [
    "AgentEnv",
    "MaterializedRuntime",
    "SecretMaterializer",
    "SecretRef",
    "build_agent_env",
    "scrub_env",
    "secret_refs",
]
