"""Reading and writing the doing file on disk.

Writes replace the whole file. There is no locking: two processes saving at
the same time race and the last writer wins.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from .models import DEFAULT_SECTION, DoingFile
from .taskpaper import parse_doing, serialize_doing

logger = logging.getLogger(__name__)


@contextmanager
def atomic_write(path: Path, encoding: str = "utf-8") -> Generator:
    """Write to a file atomically.

    Writes to a temporary file then renames to target path.

    Args:
        path: Target file path
        encoding: Text encoding

    Yields:
        File handle for writing
    """
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with open(tmp_path, "w", encoding=encoding) as f:
            yield f

        # Atomic rename (on POSIX; Windows may need to remove first)
        if os.name == "nt" and path.exists():
            path.unlink()
        tmp_path.rename(path)

    except Exception:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


def load_doing_file(path: Path, default_section: str = DEFAULT_SECTION) -> DoingFile:
    """Load and parse a doing file.

    A missing file is not an error: it yields an empty DoingFile holding only
    the default section. Any other OSError propagates.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.debug("No doing file at %s, starting empty", path)
        return DoingFile.new(path=path, default_section=default_section)

    return parse_doing(content, default_section=default_section, path=path)


def save_doing_file(doing: DoingFile, path: Optional[Path] = None) -> Path:
    """Serialize a DoingFile and write it to disk.

    Args:
        doing: Container to write
        path: Destination; defaults to the path the container was loaded from

    Returns:
        The path written.
    """
    target = path or doing.path
    if target is None:
        raise ValueError("No path given and the doing file has no path")

    with atomic_write(target) as f:
        f.write(serialize_doing(doing))

    logger.debug("Wrote %d entries to %s", doing.entry_count(), target)
    return target
