"""Tests for the response mailbox."""

import asyncio
import json
import time

import pytest

from channels.mailbox import (
    ResponseMailbox,
    mailbox_address,
    reply_from_payload,
    reply_to_payload,
)
from schemas.conversation import StructuredReply
from utils.cancellation import CancellationToken


class TestMailboxSlot:
    """Test read, write and clear."""

    def test_address_is_stable(self):
        assert mailbox_address("abcdef123456", "0123456789") == "abcdef12_01234567"
        assert mailbox_address() == mailbox_address()

    def test_read_matching_reply(self, mailbox):
        mailbox.write(StructuredReply(correlation_id="c2", text="hello", values={"k": "v"}))

        reply = mailbox.read("c2")

        assert reply.text == "hello"
        assert reply.values == {"k": "v"}

    def test_mismatched_id_reads_as_not_found(self, mailbox):
        mailbox.write(StructuredReply(correlation_id="c1", text="old"))

        assert mailbox.read("c2") is None
        assert mailbox.path.exists()

    def test_clear_removes_stale_reply(self, mailbox):
        mailbox.write(StructuredReply(correlation_id="c1", text="old"))
        mailbox.clear()
        mailbox.clear()

        assert mailbox.read("c1") is None

    def test_invalid_json_reads_as_not_found(self, mailbox):
        mailbox.folder.mkdir(parents=True, exist_ok=True)
        mailbox.path.write_text('{"requestId": "c1", "generatedMark', encoding="utf-8")

        assert mailbox.read("c1") is None

    def test_payload_format(self, mailbox):
        reply = StructuredReply(
            correlation_id="c1",
            text="body",
            comments="note",
            references=["a.py"],
            attachments=["b.py"],
        )
        mailbox.write(reply)

        data = json.loads(mailbox.path.read_text(encoding="utf-8"))
        assert data["requestId"] == "c1"
        assert data["generatedMarkdown"] == "body"
        assert data["requestedAttachments"] == ["b.py"]
        assert reply_from_payload(reply_to_payload(reply)) == reply

    def test_payload_without_text_is_rejected(self):
        assert reply_from_payload({"requestId": "c1"}) is None
        assert reply_from_payload({"generatedMarkdown": "x"}) is None
        assert reply_from_payload(["not", "a", "dict"]) is None


class TestMailboxWait:
    """Test waiting for a reply."""

    @pytest.mark.asyncio
    async def test_wait_resolves_on_matching_reply(self, mailbox):
        mailbox.clear()
        loop = asyncio.get_running_loop()
        loop.call_later(0.1, mailbox.write, StructuredReply(correlation_id="c2", text="answer"))

        reply = await mailbox.wait("c2", timeout=5)

        assert reply is not None
        assert reply.text == "answer"

    @pytest.mark.asyncio
    async def test_mismatched_reply_does_not_resolve_wait(self, mailbox):
        mailbox.clear()
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, mailbox.write, StructuredReply(correlation_id="c1", text="wrong"))

        reply = await mailbox.wait("c2", timeout=0.5)

        assert reply is None

    @pytest.mark.asyncio
    async def test_wait_returns_existing_reply_immediately(self, mailbox):
        mailbox.write(StructuredReply(correlation_id="c3", text="ready"))

        reply = await mailbox.wait("c3", timeout=0)

        assert reply.text == "ready"

    @pytest.mark.asyncio
    async def test_cancel_resolves_wait_early(self, mailbox):
        mailbox.clear()
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.1, token.cancel, "test")

        started = time.monotonic()
        reply = await mailbox.wait("c2", timeout=30, cancel_token=token)

        assert reply is None
        assert time.monotonic() - started < 5
