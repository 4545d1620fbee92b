"""Tests for remote command parsing."""

import pytest

from remote.commands import CommandType, parse_command


class TestParseCommand:
    """Test permissive command parsing."""

    @pytest.mark.parametrize("text,expected", [
        ("stop", CommandType.STOP),
        ("/stop", CommandType.STOP),
        ("/STOP@my_bot", CommandType.STOP),
        ("halt", CommandType.HALT),
        ("pause", CommandType.HALT),
        ("continue", CommandType.CONTINUE),
        ("/resume", CommandType.CONTINUE),
        ("status", CommandType.STATUS),
    ])
    def test_keywords(self, text, expected):
        assert parse_command(text).type == expected

    def test_info_with_text(self):
        command = parse_command("/info use structlog please", sender_id=7, sender_name="ana", chat_id=99)

        assert command.type == CommandType.INFO
        assert command.text == "use structlog please"
        assert command.sender_id == 7
        assert command.chat_id == 99

    def test_add_alias(self):
        assert parse_command("add more tests").text == "more tests"

    def test_free_text_is_injected(self):
        command = parse_command("Please also cover the CLI")

        assert command.type == CommandType.INFO
        assert command.text == "Please also cover the CLI"

    def test_command_words_without_usable_form(self):
        assert parse_command("help").type == CommandType.UNKNOWN
        assert parse_command("info").type == CommandType.UNKNOWN
        assert parse_command("status now").type == CommandType.UNKNOWN

    def test_empty_message(self):
        assert parse_command("") is None
        assert parse_command("   ") is None
