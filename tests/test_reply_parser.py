"""Tests for inline reply parsing."""

from agents.reply_parser import parse_inline_payload, parse_inline_reply
from schemas.conversation import RawReply, StructuredReply


class TestParseInlineReply:
    """Test the structured-then-raw fallback chain."""

    def test_fenced_json_payload(self):
        text = (
            "Here you go:\n```json\n"
            '{"requestId": "c1", "generatedMarkdown": "Added logging", "references": ["app.py"]}\n'
            "```"
        )

        reply = parse_inline_reply(text, "c1")

        assert isinstance(reply, StructuredReply)
        assert reply.text == "Added logging"
        assert reply.references == ["app.py"]

    def test_bare_json_payload_adopts_correlation_id(self):
        text = 'Result: {"generatedMarkdown": "Done", "responseValues": {"pr": "42"}}'

        reply = parse_inline_reply(text, "c7")

        assert isinstance(reply, StructuredReply)
        assert reply.correlation_id == "c7"
        assert reply.values == {"pr": "42"}

    def test_mismatched_payload_is_not_accepted(self):
        text = '{"requestId": "old", "generatedMarkdown": "Stale"}'

        assert parse_inline_payload(text, "c2") is None
        reply = parse_inline_reply(text, "c2")
        assert isinstance(reply, RawReply)
        assert reply.text == text

    def test_invalid_json_degrades_to_raw(self):
        reply = parse_inline_reply('```json\n{"generatedMarkdown": \n```', "c1")

        assert isinstance(reply, RawReply)
        assert reply.correlation_id == "c1"
        assert reply.source == "inline"

    def test_plain_text(self):
        reply = parse_inline_reply("  I added a logger.  ", "c1")

        assert reply == RawReply(correlation_id="c1", text="I added a logger.")
