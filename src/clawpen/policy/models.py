"""Policy data models.

All models are frozen: a composed PolicyDocument is built once per
deployment and never mutated afterwards.  Set-like fields are tuples so that
their order (defaults first, then operator additions) survives into the
rendered config byte for byte.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict

# Reserved marker the renderer writes instead of the real bot token.
TELEGRAM_TOKEN_PLACEHOLDER = "@TELEGRAM_BOT_TOKEN@"

AutonomyLevel = Literal["readonly", "supervised", "full"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ListSpec(_Frozen):
    """The mergeable lists: allowed commands, tool packages, forbidden paths."""

    commands: tuple[str, ...] = ()
    tool_packages: tuple[str, ...] = ()
    forbidden_paths: tuple[str, ...] = ()


class GatewaySettings(_Frozen):
    port: int = 3000
    host: str = "127.0.0.1"
    require_pairing: bool = False
    allow_public_bind: bool = False


class TelegramChannel(_Frozen):
    bot_token_file: str | None = None
    bot_token_placeholder: str = TELEGRAM_TOKEN_PLACEHOLDER
    allowed_users: tuple[str, ...] = ()
    mention_only: bool = False


class Channels(_Frozen):
    cli: bool = True
    telegram: TelegramChannel | None = None  # None: channel disabled


class AutonomyPolicy(_Frozen):
    level: AutonomyLevel = "supervised"
    workspace_only: bool = True
    block_high_risk_commands: bool = True
    allowed_commands: tuple[str, ...] = ()
    forbidden_paths: tuple[str, ...] = ()
    max_actions_per_hour: int = 20
    max_cost_per_day_cents: int = 500


class PolicyDocument(_Frozen):
    """The composed runtime policy for one agent service."""

    provider: str
    model: str
    api_key_file: str | None = None
    workspace_dir: str
    gateway: GatewaySettings = GatewaySettings()
    channels: Channels = Channels()
    autonomy: AutonomyPolicy = AutonomyPolicy()
    tool_packages: tuple[str, ...] = ()

    @property
    def lists(self) -> ListSpec:
        """The composed lists, usable as ``defaults`` for another compose()."""
        return ListSpec(
            commands=self.autonomy.allowed_commands,
            tool_packages=self.tool_packages,
            forbidden_paths=self.autonomy.forbidden_paths,
        )

    @property
    def telegram(self) -> TelegramChannel | None:
        return self.channels.telegram
