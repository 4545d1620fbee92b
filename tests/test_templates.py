"""Tests for placeholder resolution and file context."""

from datetime import datetime

from prompts.defaults import NO_FILE_CONTEXT
from prompts.file_context import read_file_context
from prompts.templates import chat_values, resolve_template


class TestResolveTemplate:
    """Test ${name} and {{name}} substitution."""

    def test_dollar_and_mustache_placeholders(self):
        result = resolve_template("Goal: ${goal} / {{goal}}", {"goal": "add logging"})
        assert result == "Goal: add logging / add logging"

    def test_case_insensitive_fallback(self):
        assert resolve_template("${TurnNumber}", {"turnNumber": 2}) == "2"

    def test_unresolved_placeholder_becomes_empty(self):
        assert resolve_template("a${missing}b", {}) == "ab"

    def test_chat_namespace(self):
        values = chat_values({"branch": "feat/logging"})
        assert resolve_template("On ${chat.branch}", values) == "On feat/logging"
        assert resolve_template("On ${chat.unknown}", values) == "On "

    def test_env_namespace(self, monkeypatch):
        monkeypatch.setenv("BOT_TEST_VALUE", "from-env")
        assert resolve_template("${env.BOT_TEST_VALUE}", {}) == "from-env"

    def test_date_namespace(self):
        assert resolve_template("${date.%Y}", {}) == str(datetime.now().year)

    def test_values_are_not_resolved_again_by_default(self):
        result = resolve_template("${a}", {"a": "${b}", "b": "deep"})
        assert result == "${b}"
        assert resolve_template("${a}", {"a": "${b}", "b": "deep"}, max_depth=2) == "deep"

    def test_mustache_value_is_not_expanded_by_dollar_syntax(self, monkeypatch):
        monkeypatch.setenv("BOT_TEST_SECRET", "s3cr3t")

        result = resolve_template("Reply: {{lastReply}}", {"lastReply": "see ${env.BOT_TEST_SECRET}"})

        assert result == "Reply: see ${env.BOT_TEST_SECRET}"

    def test_dollar_value_is_not_expanded_by_mustache_syntax(self):
        result = resolve_template("Reply: ${lastReply}", {"lastReply": "{{goal}}", "goal": "leak"})
        assert result == "Reply: {{goal}}"

    def test_none_value(self):
        assert resolve_template("[${x}]", {"x": None}) == "[]"


class TestFileContext:
    """Test context file rendering."""

    def test_no_files(self):
        assert read_file_context([]) == NO_FILE_CONTEXT

    def test_existing_and_missing_files(self, tmp_path):
        (tmp_path / "notes.md").write_text("remember this", encoding="utf-8")

        result = read_file_context(["notes.md", "gone.md"], base_dir=tmp_path)

        assert result == "--- notes.md ---\nremember this\n\n--- gone.md --- (file not found)"
