"""Responder side of a turn: dispatch, mailbox wait and reply fallback chain."""

import logging
from typing import Optional, Union

from channels.mailbox import ResponseMailbox
from config.conversation import ConversationConfig
from llm.backends import ResponderBackend
from prompts.templates import resolve_template
from schemas.conversation import RawReply, StructuredReply
from utils.cancellation import CancellationToken, run_cancellable
from .reply_parser import parse_inline_reply

logger = logging.getLogger(__name__)

NO_REPLY_PLACEHOLDER = "(no reply received)"


class ResponderAgent:
    """
    Sends an instruction to the responder and settles on one reply.

    Precedence: a matching mailbox reply, then a structured payload
    embedded in the inline text, then the inline text as-is. With inline
    text in hand the mailbox gets ``reply_grace_seconds`` to catch up;
    with none it gets the full ``reply_timeout_seconds``.
    """

    def __init__(
        self,
        backend: ResponderBackend,
        mailbox: ResponseMailbox,
        config: ConversationConfig
    ):
        self.backend = backend
        self.mailbox = mailbox
        self.config = config

    def build_dispatch_text(self, instruction: str, correlation_id: str) -> str:
        """Instruction plus the goal suffix carrying the correlation id."""
        suffix = resolve_template(self.config.goal_suffix_template, {
            "answerFilePath": str(self.mailbox.path),
            "requestId": correlation_id,
        })
        return instruction + suffix

    async def exchange(
        self,
        instruction: str,
        correlation_id: str,
        cancel_token: Optional[CancellationToken] = None
    ) -> Union[StructuredReply, RawReply]:
        """
        Dispatch ``instruction`` and wait for its reply.

        Raises:
            CancelledRun: Cancelled during dispatch or the mailbox wait
            BackendCallError: The responder call failed
        """
        text = self.build_dispatch_text(instruction, correlation_id)
        self.mailbox.clear()

        inline = await run_cancellable(
            self.backend.send(self.config.responder_model, text, cancel_token),
            cancel_token,
        )
        inline = (inline or "").strip()

        wait_seconds = self.config.reply_grace_seconds if inline else self.config.reply_timeout_seconds
        mailbox_reply = await self.mailbox.wait(correlation_id, wait_seconds, cancel_token)
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        if mailbox_reply is not None:
            logger.info(f"Reply {correlation_id} received through the mailbox")
            return mailbox_reply

        if inline:
            return parse_inline_reply(inline, correlation_id)

        logger.warning(f"No reply for {correlation_id} within {wait_seconds}s")
        return RawReply(correlation_id=correlation_id, text=NO_REPLY_PLACEHOLDER, source="placeholder")
