"""Shared fixtures: secret files and service configurations rooted in tmp_path."""

from __future__ import annotations

from pathlib import Path

import pytest

from clawpen.config import ServiceConfig


@pytest.fixture
def secrets_dir(tmp_path: Path) -> Path:
    d = tmp_path / "secrets"
    d.mkdir()
    (d / "api-key").write_text("sk-ant-test-0001\n")
    (d / "telegram-token").write_text("8000000000:AAF-test-token\n")
    return d


@pytest.fixture
def service_config(tmp_path: Path, secrets_dir: Path) -> ServiceConfig:
    """Valid configuration with Telegram enabled and a zero restart delay."""
    return ServiceConfig(
        state_dir=str(tmp_path / "state"),
        api_key_file=str(secrets_dir / "api-key"),
        telegram={
            "enable": True,
            "bot_token_file": str(secrets_dir / "telegram-token"),
            "allowed_users": ["8593807304"],
        },
        restart={"delay_seconds": 0},
    )
