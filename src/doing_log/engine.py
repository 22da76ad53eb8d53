"""Doing engine - command-level operations on the doing file.

Every mutating operation loads the whole file, changes the in-memory copy and
writes the whole file back. Nothing is locked; when two processes write at
once the last one wins.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Iterable, Optional, Union

from .config import DoingConfig
from .dates import DateParseError, parse_date_filter, parse_duration, resolve_bound
from .filtering import FilterSpec, Match, chronological, filter_entries, newest_first
from .matching import CaseSensitivity, compile_tag_pattern
from .models import DoingError, DoingFile, Entry, format_timestamp, local_now
from .storage import load_doing_file, save_doing_file
from .taskpaper import extract_tags

logger = logging.getLogger(__name__)

TimeInput = Union[str, datetime, time, None]

UPDATABLE_FIELDS = ("description", "note", "timestamp", "tags")


class EntryNotFoundError(DoingError):
    """Raised when no entry has the requested id."""
    pass


class NoMatchingEntriesError(DoingError):
    """Raised when a command's filter selects nothing."""
    pass


class SectionError(DoingError):
    """Raised for invalid section operations."""
    pass


def resolve_time(value: TimeInput) -> datetime:
    """Turn user time input into a minute-precision local datetime.

    None means now; strings go through the date parser; a bare time of day is
    taken as today.
    """
    if value is None:
        return local_now()
    if isinstance(value, str):
        value = parse_date_filter(value)
    return resolve_bound(value).replace(second=0, microsecond=0)


def _to_duration(value: Union[str, timedelta]) -> timedelta:
    if isinstance(value, timedelta):
        return value
    return parse_duration(value)


class DoingEngine:
    """Operations on a single doing file."""

    def __init__(self, config: DoingConfig):
        self.config = config

    @property
    def path(self) -> Path:
        return self.config.get_doing_file_path()

    def load(self) -> DoingFile:
        return load_doing_file(self.path, default_section=self.config.default_section)

    def save(self, doing: DoingFile) -> None:
        save_doing_file(doing, self.path)

    # ========== Helpers ==========

    def _spec(self, spec: Optional[FilterSpec] = None, **overrides) -> FilterSpec:
        if spec is None:
            spec = FilterSpec(case=self.config.search_case)
        return replace(spec, **overrides) if overrides else spec

    def _select(self, doing: DoingFile, spec: FilterSpec, count: int = 1) -> list[Match]:
        """Newest-first matches, limited to count (0 means all)."""
        matches = newest_first(filter_entries(doing, spec))
        if count:
            matches = matches[:count]
        if not matches:
            raise NoMatchingEntriesError("No matching entries found")
        return matches

    def _new_entry(
        self,
        text: str,
        section: str,
        note: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Entry:
        description, tags = extract_tags(text.strip())
        if not description:
            raise DoingError("Entry text cannot be empty")
        entry = Entry(description=description, section=section, tags=tags, note=note)
        if timestamp is not None:
            entry.timestamp = timestamp
        return entry

    # ========== Adding Entries ==========

    def now(
        self,
        text: str,
        note: Optional[str] = None,
        section: Optional[str] = None,
        back: TimeInput = None,
        finish_last: bool = False,
    ) -> Entry:
        """Record what you are doing now.

        Args:
            text: Description, may contain inline @tags
            note: Optional note
            section: Target section (default section if omitted)
            back: Start time, if not now
            finish_last: Mark the newest unfinished entry in the section done first

        Returns:
            The new entry.
        """
        target = section or self.config.default_section
        start = resolve_time(back)
        doing = self.load()

        if finish_last:
            pending = newest_first(filter_entries(
                doing, FilterSpec(sections=[target], unfinished=True)
            ))
            if pending:
                pending[0][1].mark_done(start)

        entry = self._new_entry(text, target, note=note, timestamp=start)
        doing.add_entry(entry)
        self.save(doing)
        logger.info("Added entry %s to %s", entry.id, target)
        return entry

    def later(self, text: str, tags: Iterable[str] = (), note: Optional[str] = None) -> Entry:
        """Add an entry to the later section."""
        tag_text = " ".join("@" + t.lstrip("@") for t in tags)
        doing = self.load()
        entry = self._new_entry(f"{text} {tag_text}", self.config.later_section, note=note)
        doing.add_entry(entry)
        self.save(doing)
        logger.info("Added entry %s to %s", entry.id, entry.section)
        return entry

    def done(
        self,
        text: Optional[str] = None,
        note: Optional[str] = None,
        section: Optional[str] = None,
        back: TimeInput = None,
        at: TimeInput = None,
        took: Union[str, timedelta, None] = None,
        archive: bool = False,
    ) -> Entry:
        """Add a finished entry, or finish the newest unfinished one.

        With text, a new entry is created already tagged @done. Without text
        the newest unfinished entry in the section is marked @done.

        Raises:
            NoMatchingEntriesError: No text and nothing left to finish
        """
        target = section or self.config.default_section
        duration = _to_duration(took) if took is not None else None
        doing = self.load()

        if text:
            finished = resolve_time(at) if at is not None else None
            if back is not None:
                start = resolve_time(back)
            elif duration is not None:
                start = (finished or local_now()) - duration
            else:
                start = finished or local_now()
            if finished is None:
                finished = start + duration if duration is not None else local_now()

            dest = self.config.archive_section if archive else target
            entry = self._new_entry(text, dest, note=note, timestamp=start)
            entry.mark_done(finished)
            doing.add_entry(entry)
        else:
            _, entry = self._select(doing, FilterSpec(sections=[target], unfinished=True))[0]
            if at is not None:
                finished = resolve_time(at)
            elif duration is not None:
                finished = entry.timestamp + duration
            else:
                finished = local_now()
            entry.mark_done(finished)
            if note:
                entry.append_note(note)
            if archive:
                doing.move_entry(entry.id, self.config.archive_section)

        self.save(doing)
        logger.info("Marked %s done", entry.id)
        return entry

    # ========== Finishing ==========

    def finish(
        self,
        count: int = 1,
        spec: Optional[FilterSpec] = None,
        at: TimeInput = None,
        took: Union[str, timedelta, None] = None,
        date: bool = True,
        archive: bool = False,
        remove: bool = False,
    ) -> list[Entry]:
        """Mark the newest matching unfinished entries @done.

        Args:
            count: How many entries (0 for all matches)
            spec: Which entries; defaults to the default section
            at: Completion time
            took: Duration after the entry's start to use as completion time
            date: Record the completion time in the tag value
            archive: Move finished entries to the archive section
            remove: Remove @done from finished entries instead
        """
        if spec is None:
            spec = self._spec(sections=[self.config.default_section])
        spec = replace(spec, unfinished=not remove, only_timed=remove)
        finished_at = resolve_time(at) if at is not None else None
        duration = _to_duration(took) if took is not None else None

        doing = self.load()
        matches = self._select(doing, spec, count)

        entries = []
        for _, entry in matches:
            if remove:
                entry.unmark_done()
            else:
                if finished_at is not None:
                    when = finished_at
                elif duration is not None:
                    when = entry.timestamp + duration
                else:
                    when = local_now()
                entry.mark_done(when, date=date)
                if archive:
                    doing.move_entry(entry.id, self.config.archive_section)
            entries.append(entry)

        self.save(doing)
        logger.info("%s %d entries", "Reopened" if remove else "Finished", len(entries))
        return entries

    def cancel(
        self,
        count: int = 1,
        spec: Optional[FilterSpec] = None,
        archive: bool = False,
    ) -> list[Entry]:
        """Mark entries @done without a completion time."""
        return self.finish(count=count, spec=spec, date=False, archive=archive)

    def again(
        self,
        spec: Optional[FilterSpec] = None,
        section: Optional[str] = None,
        note: Optional[str] = None,
        back: TimeInput = None,
    ) -> Entry:
        """Resume the newest matching entry as a new, unfinished entry."""
        doing = self.load()
        _, source = self._select(doing, self._spec(spec))[0]

        entry = source.duplicate()
        entry.unmark_done()
        entry.timestamp = resolve_time(back)
        if section:
            entry.section = section
        if note is not None:
            entry.note = note
        doing.add_entry(entry)
        self.save(doing)
        logger.info("Resumed %s as %s", source.id, entry.id)
        return entry

    def reset(
        self,
        spec: Optional[FilterSpec] = None,
        back: TimeInput = None,
        resume: bool = True,
    ) -> Entry:
        """Reset the start time of the newest matching entry."""
        doing = self.load()
        _, entry = self._select(doing, self._spec(spec))[0]
        entry.timestamp = resolve_time(back)
        if resume:
            entry.unmark_done()
        self.save(doing)
        logger.info("Reset %s to %s", entry.id, entry.timestamp)
        return entry

    # ========== Tags and Notes ==========

    def tag(
        self,
        tags: list[str],
        spec: Optional[FilterSpec] = None,
        count: int = 1,
        value: Optional[str] = None,
        date: bool = False,
        remove: bool = False,
        rename: Optional[str] = None,
        regex: bool = False,
        case: Optional[CaseSensitivity] = None,
    ) -> list[Entry]:
        """Add, remove or rename tags on the newest matching entries.

        Args:
            tags: Tag names; with remove these are globs (or regexes), with
                rename the first name is the new tag name
            spec: Which entries (all sections by default)
            count: How many entries (0 for all matches)
            value: Value for added tags
            date: Use the current time as the value for added tags
            remove: Remove matching tags
            rename: Glob (or regex) of tag names to rename to tags[0]
            regex: Treat remove/rename patterns as regular expressions
            case: Case policy for remove/rename patterns
        """
        if not tags:
            raise DoingError("No tags given")
        case = case or self.config.search_case

        if rename is not None:
            patterns = [compile_tag_pattern(rename, case, regex)]
        elif remove:
            patterns = [compile_tag_pattern(t, case, regex) for t in tags]
        else:
            patterns = []

        additions = {}
        for token in tags:
            _, parsed = extract_tags("@" + token.lstrip("@"))
            for name, inline_value in parsed.items():
                if value is not None:
                    inline_value = value
                elif date:
                    inline_value = format_timestamp(local_now())
                additions[name] = inline_value
        if not remove and not additions:
            raise DoingError(f"Invalid tag names: {', '.join(tags)}")

        doing = self.load()
        matches = self._select(doing, self._spec(spec), count)

        entries = []
        for _, entry in matches:
            if rename is not None:
                new_name = next(iter(additions))
                for name in [n for n in entry.tags if patterns[0].match(n)]:
                    entry.tags[new_name] = entry.tags.pop(name)
            elif remove:
                for name in [n for n in entry.tags if any(p.match(n) for p in patterns)]:
                    entry.remove_tag(name)
            else:
                entry.tags.update(additions)
            entries.append(entry)

        self.save(doing)
        logger.info("Tagged %d entries", len(entries))
        return entries

    def note(
        self,
        text: Optional[str] = None,
        spec: Optional[FilterSpec] = None,
        append: bool = True,
        remove: bool = False,
    ) -> Entry:
        """Add to, replace or remove the note of the newest matching entry."""
        if text is None and not remove:
            raise DoingError("No note text given")

        doing = self.load()
        _, entry = self._select(doing, self._spec(spec))[0]
        if remove:
            entry.note = None
        if text is not None:
            if append:
                entry.append_note(text)
            else:
                entry.note = text
        self.save(doing)
        logger.info("Updated note on %s", entry.id)
        return entry

    # ========== Removing and Moving ==========

    def delete(self, spec: Optional[FilterSpec] = None, count: int = 1) -> list[Entry]:
        """Delete the newest matching entries."""
        doing = self.load()
        removed = [
            doing.remove_entry(entry.id)
            for _, entry in self._select(doing, self._spec(spec), count)
        ]
        self.save(doing)
        logger.info("Deleted %d entries", len(removed))
        return removed

    def archive(
        self,
        spec: Optional[FilterSpec] = None,
        to: Optional[str] = None,
        keep: Optional[int] = None,
        label: bool = True,
    ) -> list[Entry]:
        """Move matching entries into the archive section.

        Args:
            spec: Which entries (all sections by default)
            to: Destination section (archive section by default)
            keep: Leave this many of the newest matches in each section
            label: Tag moved entries with @from(<original section>)

        Returns:
            The moved entries.
        """
        dest = to or self.config.archive_section
        doing = self.load()
        doing.add_section(dest)

        by_section: dict[str, list[Entry]] = {}
        for section, entry in newest_first(filter_entries(doing, self._spec(spec))):
            if section != dest:
                by_section.setdefault(section, []).append(entry)

        moved = []
        for section, entries in by_section.items():
            for entry in entries[keep or 0:]:
                if label:
                    entry.set_tag("from", section)
                doing.move_entry(entry.id, dest)
                moved.append(entry)

        self.save(doing)
        logger.info("Archived %d entries to %s", len(moved), dest)
        return moved

    def move(self, entry_id: uuid.UUID, section: str) -> Entry:
        doing = self.load()
        if doing.find_entry(entry_id) is None:
            raise EntryNotFoundError(f"Entry not found: {entry_id}")
        entry = doing.move_entry(entry_id, section)
        self.save(doing)
        logger.info("Moved %s to %s", entry_id, section)
        return entry

    # ========== Id-addressed Edits ==========

    def get_entry(self, entry_id: uuid.UUID) -> Entry:
        found = self.load().find_entry(entry_id)
        if found is None:
            raise EntryNotFoundError(f"Entry not found: {entry_id}")
        return found[1]

    def update_entry(self, entry_id: uuid.UUID, **changes) -> Entry:
        """Rewrite fields of one entry (description, note, timestamp, tags)."""
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        doing = self.load()
        found = doing.find_entry(entry_id)
        if found is None:
            raise EntryNotFoundError(f"Entry not found: {entry_id}")
        entry = found[1]
        for name, value in changes.items():
            setattr(entry, name, value)
        self.save(doing)
        logger.info("Updated %s: %s", entry_id, ", ".join(sorted(changes)))
        return entry

    def toggle_done(self, entry_id: uuid.UUID) -> Entry:
        doing = self.load()
        found = doing.find_entry(entry_id)
        if found is None:
            raise EntryNotFoundError(f"Entry not found: {entry_id}")
        entry = found[1]
        if entry.is_done():
            entry.unmark_done()
        else:
            entry.mark_done()
        self.save(doing)
        return entry

    def delete_entry(self, entry_id: uuid.UUID) -> Entry:
        doing = self.load()
        entry = doing.remove_entry(entry_id)
        if entry is None:
            raise EntryNotFoundError(f"Entry not found: {entry_id}")
        self.save(doing)
        logger.info("Deleted %s", entry_id)
        return entry

    # ========== Sections ==========

    def sections(self) -> dict[str, int]:
        """Entry counts per section, in file order."""
        doing = self.load()
        return {name: len(doing.sections[name]) for name in doing.section_names()}

    def add_section(self, name: str) -> None:
        doing = self.load()
        if doing.has_section(name):
            raise SectionError(f"Section '{name}' already exists")
        doing.add_section(name)
        self.save(doing)
        logger.info("Added section %s", name)

    def remove_section(self, name: str, archive: bool = False) -> list[Entry]:
        """Remove a section, optionally moving its entries to the archive.

        Archived entries go to the front of the archive section.
        """
        doing = self.load()
        if not doing.has_section(name):
            raise SectionError(f"Section '{name}' does not exist")
        if name == self.config.default_section:
            raise SectionError(f"Cannot remove the '{name}' section")

        entries = doing.remove_section(name)
        if archive and entries:
            dest = self.config.archive_section
            for entry in entries:
                entry.section = dest
            doing.add_section(dest)[:0] = entries

        self.save(doing)
        logger.info("Removed section %s", name)
        return entries

    # ========== Views ==========

    def tag_counts(self, spec: Optional[FilterSpec] = None) -> dict[str, int]:
        """Count tag usage over matching entries, sorted by tag name."""
        counts: dict[str, int] = {}
        for _, entry in filter_entries(self.load(), self._spec(spec)):
            for name in entry.tags:
                counts[name] = counts.get(name, 0) + 1
        return dict(sorted(counts.items()))

    def show(self, spec: Optional[FilterSpec] = None, count: int = 0) -> list[Match]:
        """Matching entries, oldest first; count keeps only the newest N."""
        matches = newest_first(filter_entries(self.load(), self._spec(spec)))
        if count:
            matches = matches[:count]
        return chronological(matches)

    def grep(self, search: str, **fields) -> list[Match]:
        return self.show(self._spec(search=search, **fields))

    def last(self, spec: Optional[FilterSpec] = None) -> Optional[Match]:
        matches = self.show(spec, count=1)
        return matches[0] if matches else None

    def recent(self, count: int = 10, section: Optional[str] = None) -> list[Match]:
        return self.show(self._spec(sections=[section] if section else []), count=count)

    def on(self, day: Union[str, date]) -> list[Match]:
        """Entries from a single day."""
        if isinstance(day, str):
            parsed = parse_date_filter(day)
            if not isinstance(parsed, datetime):
                raise DateParseError(f"Expected a date, got a time of day: {day!r}")
            day = parsed.date()
        elif isinstance(day, datetime):
            day = day.date()
        start = datetime.combine(day, time.min)
        end = datetime.combine(day, time.max)
        return self.show(self._spec(date_range=(start, end)))

    def today(self) -> list[Match]:
        return self.on(date.today())

    def yesterday(self) -> list[Match]:
        return self.on(date.today() - timedelta(days=1))

    def since(self, when: TimeInput) -> list[Match]:
        start = resolve_time(when)
        return self.show(self._spec(date_range=(start, None)))
