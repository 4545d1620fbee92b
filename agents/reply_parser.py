"""Inline reply parsing: structured payload if present, raw text otherwise."""

import json
import logging
import re
from typing import Optional, Union

from channels.mailbox import reply_from_payload
from schemas.conversation import RawReply, StructuredReply

logger = logging.getLogger(__name__)

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")
_BARE_JSON_RE = re.compile(r"(\{[\s\S]*\"generatedMarkdown\"[\s\S]*\})")


def parse_inline_payload(text: str, correlation_id: str) -> Optional[StructuredReply]:
    """
    Extract a structured reply embedded in free text.

    Tries a fenced code block first, then a bare object containing
    ``generatedMarkdown``. A payload without a request id adopts
    ``correlation_id``; a payload tagged with another id is rejected.
    """
    for pattern in (_FENCED_JSON_RE, _BARE_JSON_RE):
        match = pattern.search(text)
        if not match:
            continue
        try:
            data = json.loads(match.group(1))
        except json.JSONDecodeError:
            continue
        if not isinstance(data, dict):
            continue
        data.setdefault("requestId", correlation_id)
        reply = reply_from_payload(data)
        if reply is None:
            continue
        if reply.correlation_id != correlation_id:
            logger.warning(
                f"Inline payload is tagged {reply.correlation_id}, expected {correlation_id}; ignoring it"
            )
            return None
        return reply
    return None


def parse_inline_reply(text: str, correlation_id: str) -> Union[StructuredReply, RawReply]:
    """Structured reply when the text embeds one, else the raw text wrapped."""
    reply = parse_inline_payload(text, correlation_id)
    if reply is not None:
        return reply
    logger.debug(f"No structured payload in inline reply for {correlation_id}, wrapping raw text")
    return RawReply(correlation_id=correlation_id, text=text.strip())
