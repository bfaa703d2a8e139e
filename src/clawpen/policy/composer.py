"""Policy composer: merge default and operator lists into one document.

Pure functions only.  The built-in defaults are an explicit argument, so
``compose(A, B)`` depends on nothing but ``A``, ``B`` and the options.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from pathlib import PurePosixPath

from clawpen.config import ServiceConfig
from clawpen.errors import MalformedEntryError
from clawpen.policy.models import (
    AutonomyPolicy,
    Channels,
    GatewaySettings,
    ListSpec,
    PolicyDocument,
    TelegramChannel,
)


def _check_command(field: str, value: str) -> None:
    if not value or not value.strip():
        raise MalformedEntryError(field, value, "command must not be empty")
    if any(c.isspace() for c in value):
        raise MalformedEntryError(field, value, "command must be a single word")


def _check_abs_path(field: str, value: str) -> None:
    if not value or not value.strip():
        raise MalformedEntryError(field, value, "path must not be empty")
    if not PurePosixPath(value).is_absolute():
        raise MalformedEntryError(field, value, "path must be absolute")


def _check_user(field: str, value: str) -> None:
    if not value or not value.strip():
        raise MalformedEntryError(field, value, "user must not be empty")


def _merge(
    name: str,
    defaults: Iterable[str],
    overrides: Iterable[str],
    check: Callable[[str, str], None],
) -> tuple[str, ...]:
    """defaults ++ (overrides not already present), exact-match dedup."""
    seen: set[str] = set()
    merged: list[str] = []
    for source, entries in (("defaults", defaults), ("overrides", overrides)):
        for i, entry in enumerate(entries):
            check(f"{name}[{i}] ({source})", entry)
            if entry in seen:
                continue
            seen.add(entry)
            merged.append(entry)
    return tuple(merged)


def merge_lists(defaults: ListSpec, overrides: ListSpec) -> ListSpec:
    """Merge two ListSpecs; order-stable, deduplicated, idempotent.

    Raises:
        MalformedEntryError: On the first unusable entry, naming its field.
    """
    return ListSpec(
        commands=_merge("commands", defaults.commands, overrides.commands, _check_command),
        tool_packages=_merge(
            "tool_packages", defaults.tool_packages, overrides.tool_packages, _check_abs_path
        ),
        forbidden_paths=_merge(
            "forbidden_paths", defaults.forbidden_paths, overrides.forbidden_paths, _check_abs_path
        ),
    )


def operator_lists(config: ServiceConfig) -> ListSpec:
    """The operator-supplied lists of a service configuration."""
    return ListSpec(
        commands=tuple(config.autonomy.extra_allowed_commands),
        tool_packages=tuple(config.tool_packages),
        forbidden_paths=tuple(config.autonomy.extra_forbidden_paths),
    )


def compose(
    defaults: ListSpec,
    overrides: ListSpec,
    options: ServiceConfig | None = None,
) -> PolicyDocument:
    """Build the policy document from merged lists plus the scalar options.

    ``options`` supplies everything that is not a mergeable list; when omitted
    every option takes its declared default.
    """
    options = options or ServiceConfig()
    lists = merge_lists(defaults, overrides)

    telegram: TelegramChannel | None = None
    if options.telegram.enable:
        telegram = TelegramChannel(
            bot_token_file=options.telegram.bot_token_file,
            allowed_users=_merge(
                "telegram.allowed_users", (), options.telegram.allowed_users, _check_user
            ),
            mention_only=options.telegram.mention_only,
        )

    return PolicyDocument(
        provider=options.provider,
        model=options.model,
        api_key_file=options.api_key_file,
        workspace_dir=options.workspace_dir,
        gateway=GatewaySettings(
            port=options.gateway.port,
            host=options.gateway.host,
            require_pairing=options.gateway.require_pairing,
            allow_public_bind=options.gateway.allow_public_bind,
        ),
        channels=Channels(cli=options.channels.cli, telegram=telegram),
        autonomy=AutonomyPolicy(
            level=options.autonomy.level,
            workspace_only=options.autonomy.workspace_only,
            block_high_risk_commands=options.autonomy.block_high_risk_commands,
            allowed_commands=lists.commands,
            forbidden_paths=lists.forbidden_paths,
            max_actions_per_hour=options.autonomy.max_actions_per_hour,
            max_cost_per_day_cents=options.autonomy.max_cost_per_day_cents,
        ),
        tool_packages=lists.tool_packages,
    )


def compose_service(config: ServiceConfig, defaults: ListSpec) -> PolicyDocument:
    """Compose the document for a loaded service configuration."""
    return compose(defaults, operator_lists(config), config)
