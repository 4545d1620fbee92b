"""Shared helpers."""

from .cancellation import CancellationToken, CancelledRun, run_cancellable
from .markdown import escape_markdown_v2, strip_markdown, strip_thinking_tags, truncate

__all__ = [
    "CancellationToken",
    "CancelledRun",
    "run_cancellable",
    "escape_markdown_v2",
    "strip_markdown",
    "strip_thinking_tags",
    "truncate",
]
