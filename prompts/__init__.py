"""Prompt templates and placeholder resolution."""

from .templates import resolve_template, chat_values
from .file_context import read_file_context
from . import defaults

__all__ = [
    "resolve_template",
    "chat_values",
    "read_file_context",
    "defaults",
]
