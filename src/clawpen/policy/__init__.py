"""Build-time policy pipeline: compose the lists, then validate the document."""

from .models import (
    TELEGRAM_TOKEN_PLACEHOLDER,
    AutonomyPolicy,
    Channels,
    GatewaySettings,
    ListSpec,
    PolicyDocument,
    TelegramChannel,
)
from .defaults import DEFAULT_LISTS
from .composer import compose, compose_service, merge_lists, operator_lists
from .validator import ensure_valid, validate

__all__ = [
    "DEFAULT_LISTS",
    "TELEGRAM_TOKEN_PLACEHOLDER",
    "AutonomyPolicy",
    "Channels",
    "GatewaySettings",
    "ListSpec",
    "PolicyDocument",
    "TelegramChannel",
    "compose",
    "compose_service",
    "ensure_valid",
    "merge_lists",
    "operator_lists",
    "validate",
]
