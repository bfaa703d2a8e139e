"""Built-in default allow/deny lists.

Passed explicitly into ``compose()``; nothing reads this module implicitly.
These mirror the agent's own built-in defaults and are always rendered in
full, so the runtime config never depends on the agent's internal list.
"""

from __future__ import annotations

from clawpen.policy.models import ListSpec

DEFAULT_ALLOWED_COMMANDS: tuple[str, ...] = (
    "git",
    "npm",
    "cargo",
    "ls",
    "cat",
    "grep",
    "find",
    "echo",
    "pwd",
    "wc",
    "head",
    "tail",
)

DEFAULT_FORBIDDEN_PATHS: tuple[str, ...] = (
    "/etc",
    "/root",
    "/home",
    "/boot",
    "/dev",
    "/proc",
    "/sys",
    "/run",
    "/usr",
    "/bin",
    "/sbin",
    "/lib",
    "/opt",
)

DEFAULT_LISTS = ListSpec(
    commands=DEFAULT_ALLOWED_COMMANDS,
    tool_packages=(),
    forbidden_paths=DEFAULT_FORBIDDEN_PATHS,
)
