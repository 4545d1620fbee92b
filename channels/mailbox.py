"""File-backed single-slot reply mailbox."""

import asyncio
import hashlib
import json
import logging
import os
import socket
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from schemas.conversation import StructuredReply
from utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)

# Process-wide session identity for the default mailbox address
_SESSION_ID = uuid.uuid4().hex


def mailbox_address(session_id: Optional[str] = None, machine_id: Optional[str] = None) -> str:
    """Stable per-session address, e.g. ``3f2a9c1d_8be0f6a2``."""
    session = session_id or _SESSION_ID
    machine = machine_id or hashlib.sha1(socket.gethostname().encode("utf-8")).hexdigest()
    return f"{session[:8]}_{machine[:8]}"


def reply_from_payload(data: Any) -> Optional[StructuredReply]:
    """
    Build a StructuredReply from the JSON answer format.

    Expected keys: requestId, generatedMarkdown, comments, references,
    requestedAttachments, responseValues. Returns None when the payload
    has no request id or no text.
    """
    if not isinstance(data, dict):
        return None
    request_id = data.get("requestId")
    text = data.get("generatedMarkdown")
    if not request_id or not isinstance(text, str) or not text:
        return None

    references = data.get("references")
    attachments = data.get("requestedAttachments")
    values = data.get("responseValues")
    comments = data.get("comments")
    return StructuredReply(
        correlation_id=str(request_id),
        text=text,
        comments=str(comments) if comments else None,
        references=[str(r) for r in references] if isinstance(references, list) else [],
        attachments=[str(a) for a in attachments] if isinstance(attachments, list) else [],
        values={str(k): str(v) for k, v in values.items()} if isinstance(values, dict) else {},
    )


def reply_to_payload(reply: StructuredReply) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "requestId": reply.correlation_id,
        "generatedMarkdown": reply.text,
        "references": list(reply.references),
        "requestedAttachments": list(reply.attachments),
    }
    if reply.comments:
        payload["comments"] = reply.comments
    if reply.values:
        payload["responseValues"] = dict(reply.values)
    return payload


class ResponseMailbox:
    """
    Single-slot inbox at ``<folder>/<address>_answer.json``.

    The engine clears the slot before every dispatch and then waits for a
    reply tagged with the current correlation id. A reply carrying any
    other id reads as "not found" and is left in place, not buffered.
    """

    # Interval for checking the file's stat signature
    WATCH_INTERVAL = 0.2

    def __init__(
        self,
        folder: Path,
        address: Optional[str] = None,
        poll_interval: float = 5.0,
        settle_delay: float = 0.5,
    ):
        """
        Initialize mailbox.

        Args:
            folder: Directory holding the answer file
            address: Session address (defaults to this process's address)
            poll_interval: Fallback full read interval in seconds
            settle_delay: Delay after a change before reading, so the writer can finish
        """
        self.folder = Path(folder)
        self.address = address or mailbox_address()
        self.poll_interval = poll_interval
        self.settle_delay = settle_delay

    @property
    def path(self) -> Path:
        return self.folder / f"{self.address}_answer.json"

    def clear(self):
        """Remove any stale reply."""
        self.folder.mkdir(parents=True, exist_ok=True)
        try:
            self.path.unlink()
            logger.debug(f"Cleared mailbox {self.path}")
        except FileNotFoundError:
            pass

    def read(self, expected_id: str) -> Optional[StructuredReply]:
        """Return the stored reply if it matches ``expected_id``."""
        try:
            raw = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read mailbox {self.path}: {e}")
            return None
        if not raw:
            return None

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            # Partially written or not JSON yet
            logger.debug(f"Mailbox {self.path} does not hold valid JSON yet")
            return None

        reply = reply_from_payload(data)
        if reply is None:
            return None
        if reply.correlation_id != expected_id:
            logger.debug(f"Ignoring mailbox reply for {reply.correlation_id}, waiting for {expected_id}")
            return None
        return reply

    def write(self, reply: StructuredReply):
        """Atomically replace the slot content."""
        self.folder.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.folder, prefix=".answer-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(reply_to_payload(reply), f, indent=2)
            os.replace(tmp_name, self.path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def wait(
        self,
        expected_id: str,
        timeout: float,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Optional[StructuredReply]:
        """
        Wait for a reply tagged ``expected_id``.

        Resolves on the first of: a change to the answer file (after the
        settle delay), the fallback poll, the timeout, or cancellation.

        Returns:
            The matching reply, or None on timeout or cancellation
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        reply = self.read(expected_id)
        if reply is not None:
            return reply

        signature = self._signature()
        last_poll = loop.time()

        while True:
            if cancel_token is not None and cancel_token.cancelled:
                logger.debug(f"Mailbox wait for {expected_id} cancelled")
                return None
            now = loop.time()
            if now >= deadline:
                logger.info(f"Mailbox wait for {expected_id} timed out after {timeout}s")
                return None

            current = self._signature()
            if current != signature:
                signature = current
                if current is not None:
                    await self._pause(self.settle_delay, cancel_token)
                    if cancel_token is not None and cancel_token.cancelled:
                        continue
                    signature = self._signature()
                    reply = self.read(expected_id)
                    if reply is not None:
                        return reply
            elif now - last_poll >= self.poll_interval:
                last_poll = now
                reply = self.read(expected_id)
                if reply is not None:
                    return reply

            await self._pause(min(self.WATCH_INTERVAL, max(0.0, deadline - now)), cancel_token)

    def _signature(self) -> Optional[Tuple[int, int, int]]:
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return None
        return (stat.st_mtime_ns, stat.st_size, stat.st_ino)

    @staticmethod
    async def _pause(seconds: float, cancel_token: Optional[CancellationToken]):
        if cancel_token is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(cancel_token.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
