"""Tests for list merging and policy composition."""

import pytest

from clawpen.config import ServiceConfig
from clawpen.errors import MalformedEntryError
from clawpen.policy import (
    DEFAULT_LISTS,
    ListSpec,
    compose,
    compose_service,
    merge_lists,
    operator_lists,
)
from clawpen.render import render

A = ListSpec(
    commands=("git", "ls", "cat"),
    tool_packages=("/opt/tools",),
    forbidden_paths=("/etc", "/root"),
)
B = ListSpec(
    commands=("ls", "make", "make", "jq"),
    tool_packages=("/opt/tools", "/nix/store/abc-ripgrep"),
    forbidden_paths=("/boot", "/etc"),
)


class TestMergeLists:
    def test_defaults_first_then_new_overrides(self):
        merged = merge_lists(A, B)
        assert merged.commands == ("git", "ls", "cat", "make", "jq")
        assert merged.tool_packages == ("/opt/tools", "/nix/store/abc-ripgrep")
        assert merged.forbidden_paths == ("/etc", "/root", "/boot")

    def test_duplicates_in_defaults_collapse(self):
        merged = merge_lists(ListSpec(commands=("ls", "ls", "git")), ListSpec())
        assert merged.commands == ("ls", "git")

    def test_identity(self):
        assert merge_lists(A, ListSpec()) == A

    def test_idempotent(self):
        once = merge_lists(A, B)
        assert merge_lists(once, B) == once
        assert merge_lists(once, once) == once

    def test_exact_match_only(self):
        merged = merge_lists(ListSpec(commands=("git",)), ListSpec(commands=("Git",)))
        assert merged.commands == ("git", "Git")

    def test_empty_command_rejected(self):
        with pytest.raises(MalformedEntryError) as exc_info:
            merge_lists(A, ListSpec(commands=("make", "")))
        assert exc_info.value.field == "commands[1] (overrides)"

    def test_multiword_command_rejected(self):
        with pytest.raises(MalformedEntryError) as exc_info:
            merge_lists(A, ListSpec(commands=("rm -rf",)))
        assert exc_info.value.field.startswith("commands")

    def test_relative_forbidden_path_rejected(self):
        with pytest.raises(MalformedEntryError) as exc_info:
            merge_lists(A, ListSpec(forbidden_paths=("etc/shadow",)))
        assert exc_info.value.field == "forbidden_paths[0] (overrides)"
        assert "absolute" in str(exc_info.value)

    def test_relative_tool_package_rejected(self):
        with pytest.raises(MalformedEntryError) as exc_info:
            merge_lists(A, ListSpec(tool_packages=("bin",)))
        assert exc_info.value.field.startswith("tool_packages")

    def test_malformed_default_is_named(self):
        with pytest.raises(MalformedEntryError) as exc_info:
            merge_lists(ListSpec(forbidden_paths=("",)), ListSpec())
        assert exc_info.value.field == "forbidden_paths[0] (defaults)"


class TestCompose:
    def test_lists_land_in_document(self):
        doc = compose(A, B)
        assert doc.autonomy.allowed_commands == ("git", "ls", "cat", "make", "jq")
        assert doc.autonomy.forbidden_paths == ("/etc", "/root", "/boot")
        assert doc.tool_packages == ("/opt/tools", "/nix/store/abc-ripgrep")
        assert doc.lists == merge_lists(A, B)

    def test_compose_is_idempotent(self):
        doc = compose(A, B)
        assert compose(doc.lists, B) == doc

    def test_compose_identity(self):
        assert compose(A, ListSpec()).lists == A

    def test_deterministic_render(self):
        first = render(compose(DEFAULT_LISTS, B, ServiceConfig(api_key_file="/k")))
        second = render(compose(DEFAULT_LISTS, B, ServiceConfig(api_key_file="/k")))
        assert first.text == second.text

    def test_default_options(self):
        doc = compose(A, ListSpec())
        assert doc.provider == "anthropic"
        assert doc.workspace_dir == "/var/lib/zeroclaw/workspace"
        assert doc.telegram is None
        assert doc.channels.cli is True

    def test_telegram_users_deduplicated(self):
        options = ServiceConfig(
            telegram={"enable": True, "bot_token_file": "/t", "allowed_users": ["1", "2", "1"]}
        )
        doc = compose(A, ListSpec(), options)
        assert doc.telegram is not None
        assert doc.telegram.allowed_users == ("1", "2")
        assert doc.telegram.bot_token_placeholder == "@TELEGRAM_BOT_TOKEN@"

    def test_empty_telegram_user_rejected(self):
        options = ServiceConfig(telegram={"enable": True, "allowed_users": [""]})
        with pytest.raises(MalformedEntryError):
            compose(A, ListSpec(), options)

    def test_telegram_disabled_ignores_settings(self):
        options = ServiceConfig(telegram={"enable": False, "allowed_users": ["1"]})
        assert compose(A, ListSpec(), options).telegram is None

    def test_document_is_frozen(self):
        doc = compose(A, B)
        with pytest.raises(Exception):
            doc.provider = "openai"


class TestComposeService:
    def test_operator_lists(self):
        cfg = ServiceConfig(
            autonomy={"extra_allowed_commands": ["make"], "extra_forbidden_paths": ["/srv"]},
            tool_packages=["/opt/jq"],
        )
        assert operator_lists(cfg) == ListSpec(
            commands=("make",), tool_packages=("/opt/jq",), forbidden_paths=("/srv",)
        )

    def test_defaults_then_extras(self):
        cfg = ServiceConfig(autonomy={"extra_allowed_commands": ["make", "git"]})
        doc = compose_service(cfg, DEFAULT_LISTS)
        commands = doc.autonomy.allowed_commands
        assert commands[: len(DEFAULT_LISTS.commands)] == DEFAULT_LISTS.commands
        assert commands[-1] == "make"
        assert commands.count("git") == 1
