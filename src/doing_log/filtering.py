"""Filter engine: select (section, entry) pairs from a DoingFile.

Filtering is a pure function over an already loaded DoingFile. Every pattern
in a FilterSpec is compiled before any entry is looked at, so a bad regex,
value query or date raises FilterError and no partial result is returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .dates import DateBound, parse_date_filter, parse_date_range
from .matching import BoolOp, CaseSensitivity, SearchQuery, TagQuery, ValueQuery
from .models import DoingFile, Entry, FilterError

__all__ = [
    "BoolOp",
    "CaseSensitivity",
    "FilterError",
    "FilterSpec",
    "filter_entries",
]

logger = logging.getLogger(__name__)

Match = tuple[str, Entry]


@dataclass
class FilterSpec:
    """Declarative description of which entries to select.

    ``after`` and ``before`` take either a ``datetime`` (compared with the
    full timestamp) or a ``time`` (compared with the time of day only).
    """
    sections: list[str] = field(default_factory=list)
    search: Optional[str] = None
    case: CaseSensitivity = CaseSensitivity.SMART
    exact: bool = False
    tags: list[str] = field(default_factory=list)
    bool_op: BoolOp = BoolOp.PATTERN
    values: list[str] = field(default_factory=list)
    after: Optional[DateBound] = None
    before: Optional[DateBound] = None
    date_range: Optional[tuple[datetime, Optional[datetime]]] = None
    only_timed: bool = False
    unfinished: bool = False
    invert: bool = False

    @classmethod
    def build(
        cls,
        after: Optional[str] = None,
        before: Optional[str] = None,
        date_range: Optional[str] = None,
        **kwargs,
    ) -> "FilterSpec":
        """Create a spec, resolving date strings ("8am", "yesterday", ...).

        Raises:
            DateParseError: If a date string cannot be parsed
        """
        return cls(
            after=parse_date_filter(after) if after else None,
            before=parse_date_filter(before) if before else None,
            date_range=parse_date_range(date_range) if date_range else None,
            **kwargs,
        )


def _at_or_after(entry: Entry, bound: DateBound) -> bool:
    if isinstance(bound, datetime):
        return entry.timestamp >= bound
    return entry.timestamp.time() >= bound


def _at_or_before(entry: Entry, bound: DateBound) -> bool:
    if isinstance(bound, datetime):
        return entry.timestamp <= bound
    return entry.timestamp.time() <= bound


def _in_range(entry: Entry, start: datetime, end: Optional[datetime]) -> bool:
    if end is None:
        return entry.timestamp >= start
    return start <= entry.timestamp <= end


def _target_sections(doing: DoingFile, spec: FilterSpec) -> list[str]:
    if not spec.sections:
        return doing.section_names()
    return [name for name in dict.fromkeys(spec.sections) if doing.has_section(name)]


def _candidates(doing: DoingFile, sections: list[str]) -> list[Match]:
    return [(name, entry) for name in sections for entry in doing.sections[name]]


def filter_entries(doing: DoingFile, spec: FilterSpec) -> list[Match]:
    """Select entries matching a FilterSpec.

    Args:
        doing: Container to read; never modified
        spec: What to select

    Returns:
        List of (section name, entry) pairs in section order, entries in file
        order within a section.

    Raises:
        FilterError: For an invalid regex, tag value query or date bound
    """
    search = SearchQuery.parse(spec.search, spec.case, spec.exact) if spec.search else None
    tag_query = TagQuery.parse(spec.tags, spec.bool_op) if spec.tags else None
    value_queries = [ValueQuery.parse(v) for v in spec.values]

    sections = _target_sections(doing, spec)
    results = _candidates(doing, sections)

    if spec.after is not None:
        results = [m for m in results if _at_or_after(m[1], spec.after)]

    if spec.before is not None:
        results = [m for m in results if _at_or_before(m[1], spec.before)]

    if spec.date_range is not None:
        start, end = spec.date_range
        results = [m for m in results if _in_range(m[1], start, end)]

    if search is not None:
        results = [m for m in results if search.matches(m[1].description, m[1].note)]

    if tag_query is not None:
        results = [m for m in results if tag_query.matches(m[1].tags)]

    if spec.only_timed:
        results = [m for m in results if m[1].is_done()]

    if spec.unfinished:
        results = [m for m in results if not m[1].is_done()]

    if value_queries:
        results = [m for m in results if _values_match(m[1], value_queries, spec.bool_op)]

    if spec.invert:
        # Complement relative to the sections in scope, by identity
        matched_ids = {entry.id for _, entry in results}
        results = [m for m in _candidates(doing, sections) if m[1].id not in matched_ids]

    logger.debug("Filter selected %d entries from %d sections", len(results), len(sections))
    return results


def _values_match(entry: Entry, queries: list[ValueQuery], bool_op: BoolOp) -> bool:
    if bool_op == BoolOp.OR:
        return any(q.matches(entry.tags) for q in queries)
    if bool_op == BoolOp.NOT:
        return not any(q.matches(entry.tags) for q in queries)
    return all(q.matches(entry.tags) for q in queries)


def newest_first(matches: list[Match]) -> list[Match]:
    """Sort matches by entry timestamp, newest first (stable for ties)."""
    return sorted(matches, key=lambda m: m[1].timestamp, reverse=True)


def chronological(matches: list[Match]) -> list[Match]:
    return sorted(matches, key=lambda m: m[1].timestamp)
