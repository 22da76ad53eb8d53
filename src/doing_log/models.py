"""Data models for doing entries and the section container."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator, Optional

DEFAULT_SECTION = "Currently"
LATER_SECTION = "Later"
ARCHIVE_SECTION = "Archive"

DONE_TAG = "done"

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M"

# Tag names are word characters only; anything else cannot be read back
TAG_NAME_RE = re.compile(r"\w+")


class DoingError(Exception):
    """Base exception for doing log operations."""
    pass


class FilterError(DoingError):
    """Raised when a filter cannot be built (bad regex, query or date)."""
    pass


def local_now() -> datetime:
    """Get the current local time, truncated to the minute."""
    return datetime.now().replace(second=0, microsecond=0)


def format_timestamp(dt: datetime) -> str:
    """Format a datetime the way it is stored in the doing file."""
    return dt.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(s: str) -> datetime:
    """Parse a stored timestamp (YYYY-MM-DD HH:MM) as a naive local datetime."""
    return datetime.strptime(s.strip(), TIMESTAMP_FORMAT)


def validate_tag_name(name: str) -> str:
    """Return name unchanged, or raise ValueError if it is not a word."""
    if not isinstance(name, str) or not TAG_NAME_RE.fullmatch(name):
        raise ValueError(f"Invalid tag name: {name!r}")
    return name


@dataclass
class Entry:
    """A single logged activity."""
    description: str
    section: str = DEFAULT_SECTION
    timestamp: datetime = field(default_factory=local_now)
    tags: dict[str, Optional[str]] = field(default_factory=dict)
    note: Optional[str] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def __setattr__(self, name, value):
        if name == "id" and "id" in self.__dict__:
            raise AttributeError("Entry id cannot be reassigned")
        if name == "tags":
            for tag in value:
                validate_tag_name(tag)
        super().__setattr__(name, value)

    def set_tag(self, name: str, value: Optional[str] = None) -> None:
        self.tags[validate_tag_name(name)] = value

    def remove_tag(self, name: str) -> bool:
        """Remove a tag. Returns True if it was present."""
        if name in self.tags:
            del self.tags[name]
            return True
        return False

    def has_tag(self, name: str) -> bool:
        return name in self.tags

    def is_done(self) -> bool:
        return self.has_tag(DONE_TAG)

    def mark_done(self, at: Optional[datetime] = None, date: bool = True) -> None:
        """Tag the entry @done, with the completion time unless date is False."""
        if date:
            self.tags[DONE_TAG] = format_timestamp(at or local_now())
        else:
            self.tags[DONE_TAG] = None

    def unmark_done(self) -> None:
        self.remove_tag(DONE_TAG)

    @property
    def done_at(self) -> Optional[datetime]:
        """Completion time from the @done value, if it has a parseable one."""
        value = self.tags.get(DONE_TAG)
        if not value:
            return None
        try:
            return parse_timestamp(value)
        except ValueError:
            return None

    def duration(self) -> Optional[timedelta]:
        """Time between start and completion, or None when not timed."""
        done = self.done_at
        if done is None:
            return None
        return done - self.timestamp

    def append_note(self, text: str) -> None:
        if self.note is None:
            self.note = text
        else:
            self.note = f"{self.note}\n{text}"

    def duplicate(self) -> "Entry":
        """Return a new entry with the same content and a fresh id."""
        return Entry(
            description=self.description,
            section=self.section,
            timestamp=self.timestamp,
            tags=dict(self.tags),
            note=self.note,
        )


@dataclass
class DoingFile:
    """Entries grouped by section name.

    Sections iterate in a fixed order: the default section first, then the
    remaining names sorted. Every entry's ``section`` field matches the key of
    the list holding it.
    """
    sections: dict[str, list[Entry]] = field(default_factory=dict)
    default_section: str = DEFAULT_SECTION
    path: Optional[Path] = None

    @classmethod
    def new(
        cls,
        path: Optional[Path] = None,
        default_section: str = DEFAULT_SECTION,
    ) -> "DoingFile":
        """Create an empty container seeded with the default section."""
        return cls(
            sections={default_section: []},
            default_section=default_section,
            path=path,
        )

    def section_names(self) -> list[str]:
        rest = sorted(name for name in self.sections if name != self.default_section)
        if self.default_section in self.sections:
            return [self.default_section] + rest
        return rest

    def has_section(self, name: str) -> bool:
        return name in self.sections

    def add_section(self, name: str) -> list[Entry]:
        """Ensure a section exists and return its entry list."""
        return self.sections.setdefault(name, [])

    def remove_section(self, name: str) -> list[Entry]:
        """Remove a section, returning the entries it held."""
        return self.sections.pop(name)

    def add_entry(self, entry: Entry) -> None:
        self.add_section(entry.section).append(entry)

    def add_entry_to_section(self, entry: Entry, section: str) -> None:
        entry.section = section
        self.add_section(section).append(entry)

    def iter_entries(self) -> Iterator[tuple[str, Entry]]:
        for name in self.section_names():
            for entry in self.sections[name]:
                yield name, entry

    def all_entries(self) -> list[Entry]:
        return [entry for _, entry in self.iter_entries()]

    def entry_count(self) -> int:
        return sum(len(entries) for entries in self.sections.values())

    def find_entry(self, entry_id: uuid.UUID) -> Optional[tuple[str, Entry]]:
        for name, entry in self.iter_entries():
            if entry.id == entry_id:
                return name, entry
        return None

    def remove_entry(self, entry_id: uuid.UUID) -> Optional[Entry]:
        """Remove an entry by id. Returns the removed entry, or None."""
        for entries in self.sections.values():
            for i, entry in enumerate(entries):
                if entry.id == entry_id:
                    return entries.pop(i)
        return None

    def move_entry(self, entry_id: uuid.UUID, section: str) -> Optional[Entry]:
        """Move an entry to another section, creating it if needed."""
        entry = self.remove_entry(entry_id)
        if entry is not None:
            self.add_entry_to_section(entry, section)
        return entry
