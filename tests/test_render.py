"""Tests for config.toml rendering."""

import pytest

from clawpen.config import ServiceConfig
from clawpen.policy import DEFAULT_LISTS, ListSpec, compose
from clawpen.policy.models import TELEGRAM_TOKEN_PLACEHOLDER
from clawpen.render import escape_basic, find_placeholders, parse_artifact, render


def _options(**kwargs) -> ServiceConfig:
    kwargs.setdefault("api_key_file", "/run/secrets/anthropic")
    return ServiceConfig(**kwargs)


@pytest.fixture
def telegram_doc():
    options = _options(
        telegram={
            "enable": True,
            "bot_token_file": "/run/secrets/tg",
            "allowed_users": ["8593807304"],
        }
    )
    return compose(DEFAULT_LISTS, ListSpec(), options)


class TestRender:
    def test_scalar_lines(self):
        text = render(compose(DEFAULT_LISTS, DEFAULT_LISTS, _options())).text
        lines = text.splitlines()
        assert lines[0] == 'workspace_dir = "/var/lib/zeroclaw/workspace"'
        assert lines[1] == 'default_provider = "anthropic"'
        assert lines[2] == 'default_model = "claude-sonnet-4-20250514"'
        assert "[gateway]" in lines
        assert "port = 3000" in lines
        assert 'host = "127.0.0.1"' in lines
        assert "cli = true" in lines
        assert text.endswith("\n")

    def test_section_order(self):
        text = render(compose(DEFAULT_LISTS, DEFAULT_LISTS, _options())).text
        assert text.index("[gateway]") < text.index("[channels_config]") < text.index("[autonomy]")

    def test_no_telegram_section_when_disabled(self):
        artifact = render(compose(DEFAULT_LISTS, DEFAULT_LISTS, _options()))
        assert "telegram" not in artifact.text
        assert artifact.placeholders == ()

    def test_telegram_section(self, telegram_doc):
        artifact = render(telegram_doc)
        lines = artifact.text.splitlines()
        assert "[channels_config.telegram]" in lines
        assert f'bot_token = "{TELEGRAM_TOKEN_PLACEHOLDER}"' in lines
        assert 'allowed_users = ["8593807304"]' in lines
        assert "mention_only = false" in lines
        assert artifact.placeholders == (TELEGRAM_TOKEN_PLACEHOLDER,)

    def test_autonomy_lists(self):
        artifact = render(compose(DEFAULT_LISTS, DEFAULT_LISTS, _options()))
        parsed = artifact.parse()
        assert parsed["autonomy"]["allowed_commands"] == list(DEFAULT_LISTS.commands)
        assert parsed["autonomy"]["forbidden_paths"] == list(DEFAULT_LISTS.forbidden_paths)
        assert parsed["autonomy"]["level"] == "supervised"
        assert parsed["autonomy"]["max_actions_per_hour"] == 20
        assert parsed["autonomy"]["max_cost_per_day_cents"] == 500

    def test_parses_back_to_document_values(self, telegram_doc):
        parsed = parse_artifact(render(telegram_doc).text)
        assert parsed["workspace_dir"] == telegram_doc.workspace_dir
        assert parsed["gateway"]["port"] == telegram_doc.gateway.port
        assert parsed["gateway"]["require_pairing"] is False
        tg = parsed["channels_config"]["telegram"]
        assert tg["allowed_users"] == ["8593807304"]
        assert tg["bot_token"] == TELEGRAM_TOKEN_PLACEHOLDER

    def test_never_contains_secret_paths_or_keys(self, telegram_doc):
        text = render(telegram_doc).text
        assert "/run/secrets" not in text
        assert "api_key" not in text

    def test_deterministic(self, telegram_doc):
        assert render(telegram_doc) == render(telegram_doc)

    def test_strings_are_escaped(self):
        doc = compose(DEFAULT_LISTS, DEFAULT_LISTS, _options(model='odd "model"\\v1'))
        assert parse_artifact(render(doc).text)["default_model"] == 'odd "model"\\v1'


class TestEscapeBasic:
    @pytest.mark.parametrize(
        "raw,escaped",
        [
            ("plain", "plain"),
            ('a"b', 'a\\"b'),
            ("a\\b", "a\\\\b"),
            ("line\nbreak", "line\\nbreak"),
            ("tab\there", "tab\\there"),
            ("\x01", "\\u0001"),
            ("\x7f", "\\u007F"),
        ],
    )
    def test_escapes(self, raw, escaped):
        assert escape_basic(raw) == escaped

    def test_parses_back(self):
        raw = 'tok"en\\with\nstuff\x00'
        assert parse_artifact(f'v = "{escape_basic(raw)}"\n')["v"] == raw


class TestFindPlaceholders:
    def test_distinct_in_order(self):
        text = "a = \"@B_TOKEN@\"\nb = \"@A@\"\nc = \"@B_TOKEN@\"\n"
        assert find_placeholders(text) == ["@B_TOKEN@", "@A@"]

    def test_ignores_lowercase_and_emails(self):
        assert find_placeholders('x = "user@example.com"\ny = "@lower@"\n') == []

    def test_none(self):
        assert find_placeholders("port = 3000\n") == []
