"""Cross-field checks over a composed PolicyDocument.

Every check runs regardless of the others so an operator sees all defects
in one pass.  Nothing may start while ``validate()`` returns errors.
"""

from __future__ import annotations

import logging

from clawpen.errors import ConfigValidationError, PolicyValidationError
from clawpen.policy.models import PolicyDocument

logger = logging.getLogger(__name__)

_PORT_MIN = 1
_PORT_MAX = 65535


def _check_credential(doc: PolicyDocument) -> list[ConfigValidationError]:
    if doc.api_key_file is None:
        return [
            ConfigValidationError(
                "api_key_file",
                f"a credential file for provider {doc.provider!r} must be set",
            )
        ]
    return []


def _check_telegram(doc: PolicyDocument) -> list[ConfigValidationError]:
    tg = doc.telegram
    if tg is None:
        return []
    errors = []
    if tg.bot_token_file is None:
        errors.append(
            ConfigValidationError(
                "telegram.bot_token_file", "must be set when Telegram is enabled"
            )
        )
    if not tg.allowed_users:
        errors.append(
            ConfigValidationError(
                "telegram.allowed_users", "must be non-empty when Telegram is enabled"
            )
        )
    return errors


def _check_rates(doc: PolicyDocument) -> list[ConfigValidationError]:
    errors = []
    for name in ("max_actions_per_hour", "max_cost_per_day_cents"):
        value = getattr(doc.autonomy, name)
        if value < 0:
            errors.append(
                ConfigValidationError(f"autonomy.{name}", f"must not be negative, got {value}")
            )
    return errors


def _check_port(doc: PolicyDocument) -> list[ConfigValidationError]:
    port = doc.gateway.port
    if not _PORT_MIN <= port <= _PORT_MAX:
        return [
            ConfigValidationError(
                "gateway.port", f"must be between {_PORT_MIN} and {_PORT_MAX}, got {port}"
            )
        ]
    return []


_CHECKS = (_check_credential, _check_telegram, _check_rates, _check_port)


def validate(doc: PolicyDocument) -> list[ConfigValidationError]:
    """Return every violated invariant; an empty list means the document is usable."""
    errors: list[ConfigValidationError] = []
    for check in _CHECKS:
        errors.extend(check(doc))
    for err in errors:
        logger.debug("Policy check failed: %s", err)
    return errors


def ensure_valid(doc: PolicyDocument) -> PolicyDocument:
    """Return ``doc`` unchanged, or raise PolicyValidationError with all errors."""
    errors = validate(doc)
    if errors:
        raise PolicyValidationError(errors)
    return doc
