"""Render a validated PolicyDocument into the agent's config.toml.

The output grammar is fixed: top-level ``key = value`` scalars first, then
``[section]`` / ``[section.subsection]`` blocks in a constant order.  Strings
are double-quoted basic strings, lists are one-line arrays of strings,
booleans are bare ``true``/``false`` and integers are bare.

Secrets never pass through here.  The Telegram token is written as its
placeholder token; the provider API key is delivered via the process
environment and has no key in the file at all.
"""

from __future__ import annotations

import re
import tomllib
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from clawpen.policy.models import PolicyDocument

CONFIG_FILENAME = "config.toml"

PLACEHOLDER_RE = re.compile(r"@[A-Z][A-Z0-9_]*@")

_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\b": "\\b",
    "\t": "\\t",
    "\n": "\\n",
    "\f": "\\f",
    "\r": "\\r",
}


@dataclass(frozen=True)
class ConfigArtifact:
    """Rendered config text plus the placeholder tokens it contains."""

    text: str
    placeholders: tuple[str, ...] = field(default_factory=tuple)

    def parse(self) -> dict[str, Any]:
        return parse_artifact(self.text)


def escape_basic(value: str) -> str:
    """Escape ``value`` for use inside a TOML basic (double-quoted) string."""
    out = []
    for ch in value:
        if ch in _ESCAPES:
            out.append(_ESCAPES[ch])
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append(f"\\u{ord(ch):04X}")
        else:
            out.append(ch)
    return "".join(out)


def _str(value: str) -> str:
    return f'"{escape_basic(value)}"'


def _bool(value: bool) -> str:
    return "true" if value else "false"


def _list(values: Iterable[str]) -> str:
    return "[" + ", ".join(_str(v) for v in values) + "]"


def render(doc: PolicyDocument) -> ConfigArtifact:
    """Serialize ``doc``; deterministic and total for any validated document."""
    lines = [
        f"workspace_dir = {_str(doc.workspace_dir)}",
        f"default_provider = {_str(doc.provider)}",
        f"default_model = {_str(doc.model)}",
        "",
        "[gateway]",
        f"port = {doc.gateway.port}",
        f"host = {_str(doc.gateway.host)}",
        f"require_pairing = {_bool(doc.gateway.require_pairing)}",
        f"allow_public_bind = {_bool(doc.gateway.allow_public_bind)}",
        "",
        "[channels_config]",
        f"cli = {_bool(doc.channels.cli)}",
    ]

    placeholders: list[str] = []
    tg = doc.telegram
    if tg is not None:
        placeholders.append(tg.bot_token_placeholder)
        lines += [
            "",
            "[channels_config.telegram]",
            f"bot_token = {_str(tg.bot_token_placeholder)}",
            f"allowed_users = {_list(tg.allowed_users)}",
            f"mention_only = {_bool(tg.mention_only)}",
        ]

    autonomy = doc.autonomy
    lines += [
        "",
        "[autonomy]",
        f"level = {_str(autonomy.level)}",
        f"workspace_only = {_bool(autonomy.workspace_only)}",
        f"block_high_risk_commands = {_bool(autonomy.block_high_risk_commands)}",
        f"allowed_commands = {_list(autonomy.allowed_commands)}",
        f"forbidden_paths = {_list(autonomy.forbidden_paths)}",
        f"max_actions_per_hour = {autonomy.max_actions_per_hour}",
        f"max_cost_per_day_cents = {autonomy.max_cost_per_day_cents}",
    ]

    return ConfigArtifact(text="\n".join(lines) + "\n", placeholders=tuple(placeholders))


def parse_artifact(text: str) -> dict[str, Any]:
    """Parse rendered (or materialized) config text back into a dict."""
    return tomllib.loads(text)


def find_placeholders(text: str) -> list[str]:
    """Return the distinct placeholder tokens left in ``text``, in order of appearance."""
    seen: dict[str, None] = {}
    for match in PLACEHOLDER_RE.finditer(text):
        seen.setdefault(match.group(0), None)
    return list(seen)
