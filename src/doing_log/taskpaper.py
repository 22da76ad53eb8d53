"""Parse and serialize the doing file format.

The file is a TaskPaper-style outline::

    Currently:
     - 2025-01-01 09:00 | Fix bug @urgent <11111111-1111-1111-1111-111111111111>
      a note line

    Archive:

Parsing is lenient: lines that cannot be understood are skipped, and a bad
timestamp or id inside an otherwise valid task line is replaced by a fresh
value instead of failing the whole file.
"""

from __future__ import annotations

import logging
import re
import uuid
from pathlib import Path
from typing import Optional

from .models import (
    DEFAULT_SECTION,
    DoingFile,
    Entry,
    format_timestamp,
    local_now,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

TASK_RE = re.compile(
    r"^ ?- (?P<timestamp>[^|]*?)\s*\| ?(?P<clause>.*?)(?:\s*<(?P<id>[^<>]*)>)?\s*$"
)
TAG_RE = re.compile(r"\s*(?<!\S)@(?P<name>\w+)(?:\((?P<value>[^)]*)\))?")

NOTE_INDENT = "  "


def extract_tags(text: str) -> tuple[str, dict[str, Optional[str]]]:
    """Split inline @tag / @tag(value) markers out of a description.

    Returns:
        Tuple of (clean description, tag mapping). Tags keep their textual
        order; a repeated name keeps the last value.
    """
    tags: dict[str, Optional[str]] = {}
    for match in TAG_RE.finditer(text):
        tags[match.group("name")] = match.group("value")
    description = TAG_RE.sub("", text).strip()
    return description, tags


def format_tag(name: str, value: Optional[str]) -> str:
    if value is None:
        return f"@{name}"
    return f"@{name}({value})"


def _parse_task_line(match: re.Match, section: str) -> Entry:
    description, tags = extract_tags(match.group("clause"))

    try:
        timestamp = parse_timestamp(match.group("timestamp"))
    except ValueError:
        logger.debug("Unparsable timestamp %r, using now", match.group("timestamp"))
        timestamp = local_now()

    raw_id = match.group("id")
    try:
        entry_id = uuid.UUID(raw_id.strip()) if raw_id else uuid.uuid4()
    except ValueError:
        logger.debug("Unparsable id %r, generating a new one", raw_id)
        entry_id = uuid.uuid4()

    return Entry(
        description=description,
        section=section,
        timestamp=timestamp,
        tags=tags,
        id=entry_id,
    )


def parse_doing(
    content: str,
    default_section: str = DEFAULT_SECTION,
    path: Optional[Path] = None,
) -> DoingFile:
    """Parse doing file content into a DoingFile.

    Never raises on malformed input.
    """
    if content.startswith("\ufeff"):
        content = content[1:]

    doing = DoingFile.new(path=path, default_section=default_section)
    current_section = default_section
    current: Optional[Entry] = None

    def flush() -> None:
        nonlocal current
        if current is not None:
            doing.add_entry(current)
            current = None

    for lineno, line in enumerate(content.splitlines(), start=1):
        task = TASK_RE.match(line)
        if task:
            flush()
            current = _parse_task_line(task, current_section)
        elif current is not None and line.startswith(NOTE_INDENT):
            current.append_note(line.lstrip())
        elif not line.strip():
            flush()
        elif line.strip().endswith(":") and line.strip()[:-1].strip():
            flush()
            current_section = line.strip()[:-1].strip()
            doing.add_section(current_section)
        else:
            logger.debug("Skipping unrecognized line %d: %r", lineno, line)

    flush()
    return doing


def format_entry(entry: Entry) -> str:
    """Render one entry as its task line plus indented note lines."""
    clause = entry.description
    for name, value in entry.tags.items():
        clause += " " + format_tag(name, value)

    lines = [f" - {format_timestamp(entry.timestamp)} | {clause} <{entry.id}>"]
    if entry.note is not None:
        for note_line in entry.note.split("\n"):
            lines.append(f"{NOTE_INDENT}{note_line}")
    return "\n".join(lines)


def serialize_doing(doing: DoingFile) -> str:
    """Render a DoingFile as doing file text.

    Sections are written default section first, then by name; each section is
    followed by a blank line.
    """
    lines = []
    for name in doing.section_names():
        lines.append(f"{name}:")
        for entry in doing.sections[name]:
            lines.append(format_entry(entry))
        lines.append("")
    return "\n".join(lines)
