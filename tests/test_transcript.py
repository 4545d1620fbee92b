"""Tests for transcripts and trail files."""

import json

from memory.transcript import TranscriptWriter
from schemas.conversation import Exchange, GenerationStats, RawReply, StructuredReply


def make_exchange(turn, text="Done"):
    return Exchange(
        turn=turn,
        instruction=f"Instruction {turn}",
        reply=StructuredReply(
            correlation_id=f"bot_x_t{turn}",
            text=text,
            comments="note",
            references=["app.py"],
        ),
        stats=GenerationStats(prompt_tokens=3, completion_tokens=2),
    )


class TestTranscriptWriter:
    """Test transcript and trail persistence."""

    def setup_method(self):
        self.exchanges = [make_exchange(1), make_exchange(2)]

    def test_transcript_document(self, tmp_path):
        writer = TranscriptWriter(tmp_path, workspace_name="ws")

        path = writer.write("bot_x", "add logging", self.exchanges, description="svc",
                            profile_key="review", max_turns=5, status="Goal reached")

        text = path.read_text(encoding="utf-8")
        assert path == tmp_path / "bot_x.md"
        assert "# Bot Conversation: bot_x" in text
        assert "**Profile:** review" in text
        assert "**Status:** Goal reached" in text
        assert "## Turn 2" in text
        assert "**References:** app.py" in text
        assert writer.read_log("bot_x") == text
        assert writer.read_log("missing") is None

    def test_per_turn_files_and_trails_are_written_once(self, tmp_path):
        writer = TranscriptWriter(tmp_path, workspace_name="ws")

        writer.write("bot_x", "goal", self.exchanges[:1])
        writer.write("bot_x", "goal", self.exchanges)
        writer.write("bot_x", "goal", self.exchanges, status="Turn limit reached")

        trail = (tmp_path / "ws.trail.md").read_text(encoding="utf-8")
        assert trail.startswith("# AI Conversation Trail")
        assert trail.count("Instruction 1") == 1
        assert trail.count("Instruction 2") == 1
        assert len(list(tmp_path.glob("*.userprompt.md"))) == 2
        answers = sorted(tmp_path.glob("*_answer_bot_x_t1.answer.json"))
        assert json.loads(answers[0].read_text(encoding="utf-8"))["text"] == "Done"

    def test_placeholder_reply_uses_turn_request_id(self, tmp_path):
        writer = TranscriptWriter(tmp_path, workspace_name="ws")
        exchange = Exchange(turn=3, instruction="DONE", reply=RawReply(text="(goal reached)", source="placeholder"))

        writer.write("bot_y", "goal", [exchange])

        assert len(list(tmp_path.glob("*_prompt_bot_y_t3.userprompt.md"))) == 1
