"""Context-file rendering for the initial prompt."""

import logging
from pathlib import Path
from typing import Iterable, Optional

from .defaults import NO_FILE_CONTEXT

logger = logging.getLogger(__name__)


def read_file_context(paths: Iterable[str], base_dir: Optional[Path] = None) -> str:
    """
    Concatenate context files as ``--- path ---`` blocks.

    Relative paths resolve against ``base_dir`` (the workspace root).
    Missing or unreadable files are listed with a marker instead of
    aborting the run.
    """
    paths = list(paths)
    if not paths:
        return NO_FILE_CONTEXT

    blocks = []
    for raw in paths:
        path = Path(raw).expanduser()
        if base_dir is not None and not path.is_absolute():
            path = base_dir / path
        try:
            if path.is_file():
                blocks.append(f"--- {raw} ---\n{path.read_text(encoding='utf-8')}")
            else:
                blocks.append(f"--- {raw} --- (file not found)")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read context file {path}: {e}")
            blocks.append(f"--- {raw} --- (read error)")
    return "\n\n".join(blocks)
