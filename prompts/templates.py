"""Placeholder substitution for prompt templates."""

import os
import re
from datetime import datetime
from typing import Any, Dict, Mapping

# ${key} and {{key}} share one value map and are substituted in the same pass
_PLACEHOLDER_RE = re.compile(r"\$\{([^{}]+)\}|\{\{([^{}]+)\}\}")


def _lookup(key: str, values: Mapping[str, Any]) -> str:
    if key in values:
        return _stringify(values[key])

    lowered = key.lower()
    for name, value in values.items():
        if name.lower() == lowered:
            return _stringify(value)

    # Dot path into a nested mapping, e.g. ${chat.branch}
    if "." in key:
        head, _, rest = key.partition(".")
        nested = values.get(head)
        if isinstance(nested, Mapping):
            return _lookup(rest, nested)
        if head == "env":
            return os.environ.get(rest, "")
        if head == "date":
            return datetime.now().strftime(rest)

    return ""


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def resolve_template(template: str, values: Mapping[str, Any], max_depth: int = 1) -> str:
    """
    Substitute placeholders in a template.

    Supports ``${name}`` and ``{{name}}``, case-insensitive fallback,
    dot paths into nested mappings (``${chat.key}``), ``${env.VAR}`` and
    ``${date.<strftime>}``. Unresolved placeholders become empty strings.

    Args:
        template: Template text
        values: Placeholder values
        max_depth: Number of passes, so values may themselves contain placeholders

    Returns:
        Resolved text
    """
    result = template
    previous = None
    for _ in range(max(1, max_depth)):
        if result == previous:
            break
        previous = result
        result = _PLACEHOLDER_RE.sub(
            lambda m: _lookup((m.group(1) or m.group(2)).strip(), values), result
        )
    return result


def chat_values(values: Dict[str, str]) -> Dict[str, Any]:
    """Expose reply side-values as the ``chat`` namespace."""
    return {"chat": dict(values)}
