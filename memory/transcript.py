"""Markdown transcripts and per-turn artifacts for conversation runs."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from schemas.conversation import Exchange

logger = logging.getLogger(__name__)


def trail_timestamp(moment: datetime) -> str:
    """File-name timestamp, e.g. 20260119_142501123."""
    return moment.strftime("%Y%m%d_%H%M%S") + f"{moment.microsecond // 1000:03d}"


class TranscriptWriter:
    """
    Persists a run to ``log_dir``.

    Files per run:
      - ``<conversation_id>.md``: the full transcript, rewritten after every turn
      - ``<ts>_prompt_<request_id>.userprompt.md`` and
        ``<ts>_answer_<request_id>.answer.json``: written once per turn

    Rolling files shared across runs in the workspace, extended only:
      - ``<workspace>.prompts.md``, ``<workspace>.answers.md``, ``<workspace>.trail.md``
    """

    PROMPTS_HEADER = "# AI Conversation Prompts Trail\n\n"
    ANSWERS_HEADER = "# AI Conversation Answers Trail\n\n"
    TRAIL_HEADER = "# AI Conversation Trail\n\nCompact conversation history.\n\n"

    def __init__(self, log_dir: Path, workspace_name: str = "default"):
        self.log_dir = Path(log_dir)
        self.workspace_name = workspace_name
        # conversation id -> number of exchanges already mirrored
        self._mirrored: Dict[str, int] = {}

    def transcript_path(self, conversation_id: str) -> Path:
        return self.log_dir / f"{conversation_id}.md"

    def write(
        self,
        conversation_id: str,
        goal: str,
        exchanges: Sequence[Exchange],
        description: str = "",
        profile_key: str = "",
        max_turns: int = 0,
        status: str = "In progress",
    ) -> Path:
        """
        Write the transcript and mirror any new exchanges.

        Returns:
            Path of the transcript document
        """
        self.log_dir.mkdir(parents=True, exist_ok=True)
        path = self.transcript_path(conversation_id)

        lines: List[str] = [
            f"# Bot Conversation: {conversation_id}",
            "",
            f"**Goal:** {goal}",
        ]
        if description:
            lines.append(f"**Description:** {description}")
        lines.extend([
            f"**Profile:** {profile_key or 'default'}",
            f"**Max turns:** {max_turns}",
            f"**Status:** {status}",
            f"**Turns completed:** {len(exchanges)}",
            "",
        ])
        for exchange in exchanges:
            lines.extend(self._render_exchange(exchange))

        path.write_text("\n".join(lines), encoding="utf-8")

        start = self._mirrored.get(conversation_id, 0)
        new_exchanges = list(exchanges)[start:]
        if new_exchanges:
            self._mirror(conversation_id, new_exchanges)
            self._mirrored[conversation_id] = start + len(new_exchanges)

        return path

    def read_log(self, conversation_id: str) -> Optional[str]:
        """Return a persisted transcript, or None if there is none."""
        path = self.transcript_path(conversation_id)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def _render_exchange(self, exchange: Exchange) -> List[str]:
        reply = exchange.reply
        lines = [f"## Turn {exchange.turn}", f"*{exchange.timestamp.isoformat()}*"]
        if exchange.stats:
            lines.append(f"*Driver: {exchange.stats.describe()}*")
        lines.extend(["", "### Instruction", "", exchange.instruction, "", "### Reply", "", reply.text])

        comments = getattr(reply, "comments", None)
        references = getattr(reply, "references", None) or []
        attachments = getattr(reply, "attachments", None) or []
        if comments:
            lines.extend(["", f"**Comments:** {comments}"])
        if references:
            lines.extend(["", f"**References:** {', '.join(references)}"])
        if attachments:
            lines.extend(["", f"**Attachments:** {', '.join(attachments)}"])
        lines.extend(["", "---", ""])
        return lines

    def _mirror(self, conversation_id: str, exchanges: Sequence[Exchange]):
        prompts, answers, trail = [], [], []
        for exchange in exchanges:
            ts = exchange.timestamp.isoformat()
            request_id = exchange.reply.correlation_id or f"{conversation_id}_t{exchange.turn}"

            prompts.append(f"## {ts}\n\n{exchange.instruction}\n\n---\n\n")
            answers.append(f"## {ts}\n\n{exchange.reply.text}\n\n---\n\n")
            trail.append(
                f"## {ts}\n\n### Prompt\n\n{exchange.instruction}\n\n"
                f"### Response\n\n{exchange.reply.text}\n\n---\n\n"
            )

            file_ts = trail_timestamp(exchange.timestamp)
            prompt_file = self.log_dir / f"{file_ts}_prompt_{request_id}.userprompt.md"
            answer_file = self.log_dir / f"{file_ts}_answer_{request_id}.answer.json"
            if not prompt_file.exists():
                prompt_file.write_text(exchange.instruction, encoding="utf-8")
            if not answer_file.exists():
                answer_file.write_text(
                    json.dumps(exchange.reply.model_dump(), indent=2), encoding="utf-8"
                )

        self._append(f"{self.workspace_name}.prompts.md", self.PROMPTS_HEADER, prompts)
        self._append(f"{self.workspace_name}.answers.md", self.ANSWERS_HEADER, answers)
        self._append(f"{self.workspace_name}.trail.md", self.TRAIL_HEADER, trail)

    def _append(self, name: str, header: str, entries: List[str]):
        path = self.log_dir / name
        with open(path, "a", encoding="utf-8") as f:
            if f.tell() == 0:
                f.write(header)
            f.write("".join(entries))
