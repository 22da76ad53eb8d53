"""Small parsers behind the filter engine: search text, tag tokens, value queries."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .dates import DateBound, parse_date_filter, parse_tag_timestamp, resolve_bound
from .models import FilterError


class CaseSensitivity(Enum):
    """How search text and tag globs treat letter case."""
    CASE_SENSITIVE = "case-sensitive"
    IGNORE = "ignore"
    SMART = "smart"

    @classmethod
    def parse(cls, value: str) -> "CaseSensitivity":
        """Accept "c"/"case-sensitive", "i"/"ignore", "s"/"smart"."""
        v = value.strip().lower()
        for member in cls:
            if v in (member.value, member.value[0]):
                return member
        raise ValueError(f"Unknown case sensitivity: {value}")


class BoolOp(Enum):
    """How multiple tag tokens combine."""
    PATTERN = "pattern"
    AND = "and"
    OR = "or"
    NOT = "not"


class SearchMode(Enum):
    REGEX = "regex"
    EXACT = "exact"
    CONTAINS = "contains"


def resolve_case_sensitive(text: str, case: CaseSensitivity) -> bool:
    """Smart case is case-sensitive only when the text has an uppercase letter."""
    if case == CaseSensitivity.CASE_SENSITIVE:
        return True
    if case == CaseSensitivity.IGNORE:
        return False
    return any(c.isupper() for c in text)


def compile_regex(pattern: str, case_sensitive: bool) -> re.Pattern:
    flags = 0 if case_sensitive else re.IGNORECASE
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        raise FilterError(f"Invalid regular expression {pattern!r}: {e}") from e


def glob_to_regex(pattern: str) -> str:
    """Translate a * / ? tag glob into an anchored regular expression."""
    escaped = re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")
    return f"^{escaped}$"


def compile_tag_pattern(
    pattern: str,
    case: CaseSensitivity = CaseSensitivity.CASE_SENSITIVE,
    regex: bool = False,
) -> re.Pattern:
    """Compile a tag name pattern (glob by default, anchored regex if regex=True)."""
    name = pattern[1:] if pattern.startswith("@") else pattern
    source = f"^(?:{name})$" if regex else glob_to_regex(name)
    return compile_regex(source, resolve_case_sensitive(name, case))


def is_glob(pattern: str) -> bool:
    return "*" in pattern or "?" in pattern


@dataclass
class SearchQuery:
    """A compiled search over entry descriptions and notes."""
    text: str
    mode: SearchMode
    case_sensitive: bool
    regex: Optional[re.Pattern] = None

    @classmethod
    def parse(
        cls,
        query: str,
        case: CaseSensitivity = CaseSensitivity.SMART,
        exact: bool = False,
    ) -> "SearchQuery":
        """Work out the search mode from the query text.

        "/.../" is a regular expression, a leading "'" asks for exact
        equality, and anything else is a substring search unless exact is set.
        """
        case_sensitive = resolve_case_sensitive(query, case)

        if len(query) >= 2 and query.startswith("/") and query.endswith("/"):
            pattern = query[1:-1]
            return cls(
                text=pattern,
                mode=SearchMode.REGEX,
                case_sensitive=case_sensitive,
                regex=compile_regex(pattern, case_sensitive),
            )

        if query.startswith("'"):
            return cls(text=query[1:], mode=SearchMode.EXACT, case_sensitive=case_sensitive)

        mode = SearchMode.EXACT if exact else SearchMode.CONTAINS
        return cls(text=query, mode=mode, case_sensitive=case_sensitive)

    def matches_text(self, value: str) -> bool:
        if self.mode == SearchMode.REGEX:
            return self.regex.search(value) is not None

        needle, haystack = self.text, value
        if not self.case_sensitive:
            needle, haystack = needle.casefold(), haystack.casefold()

        if self.mode == SearchMode.EXACT:
            return haystack == needle
        return needle in haystack

    def matches(self, description: str, note: Optional[str]) -> bool:
        if self.matches_text(description):
            return True
        return note is not None and self.matches_text(note)


class TagMatcher:
    """Matches one tag token (plain name or glob) against an entry's tags."""

    def __init__(self, name: str):
        self.name = name
        self._regex = compile_regex(glob_to_regex(name), True) if is_glob(name) else None

    def matches(self, tags: dict[str, Optional[str]]) -> bool:
        if self._regex is None:
            return self.name in tags
        return any(self._regex.match(tag) for tag in tags)

    def __repr__(self) -> str:
        return f"TagMatcher({self.name!r})"


def _strip_tag_token(token: str, prefixes: str = "") -> str:
    name = token.strip()
    if prefixes and name[:1] in prefixes:
        name = name[1:]
    return name[1:] if name.startswith("@") else name


@dataclass
class TagQuery:
    """Compiled tag tokens combined by a boolean strategy.

    With BoolOp.PATTERN, "+name" is required, "-name" is excluded and a bare
    "name" means at least one of the bare names must be present. The explicit
    strategies ignore those prefixes.
    """
    bool_op: BoolOp
    required: list[TagMatcher] = field(default_factory=list)
    excluded: list[TagMatcher] = field(default_factory=list)
    optional: list[TagMatcher] = field(default_factory=list)

    @classmethod
    def parse(cls, tokens: list[str], bool_op: BoolOp = BoolOp.PATTERN) -> "TagQuery":
        query = cls(bool_op=bool_op)
        for token in tokens:
            token = token.strip()
            if not token:
                continue
            if bool_op != BoolOp.PATTERN:
                query.optional.append(TagMatcher(_strip_tag_token(token, "+-")))
            elif token.startswith("+"):
                query.required.append(TagMatcher(_strip_tag_token(token, "+")))
            elif token.startswith("-"):
                query.excluded.append(TagMatcher(_strip_tag_token(token, "-")))
            else:
                query.optional.append(TagMatcher(_strip_tag_token(token)))
        return query

    def matches(self, tags: dict[str, Optional[str]]) -> bool:
        if self.bool_op == BoolOp.AND:
            return all(m.matches(tags) for m in self.optional)
        if self.bool_op == BoolOp.OR:
            return any(m.matches(tags) for m in self.optional)
        if self.bool_op == BoolOp.NOT:
            return not any(m.matches(tags) for m in self.optional)

        if not all(m.matches(tags) for m in self.required):
            return False
        if any(m.matches(tags) for m in self.excluded):
            return False
        return not self.optional or any(m.matches(tags) for m in self.optional)


_VALUE_QUERY_RE = re.compile(
    r"^\s*@?(?P<tag>\w+)\s*(?P<op>==|!=|>=|<=|=~|!~|>|<|=)\s*(?P<value>.*?)\s*$"
)
_COMPARISONS = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    ">=": lambda a, b: a >= b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    "<": lambda a, b: a < b,
}
_REGEX_OPS = ("=~", "!~", "=")


def _to_number(value: str) -> Optional[float]:
    try:
        return float(value)
    except ValueError:
        return None


@dataclass
class ValueQuery:
    """A comparison against a tag's value, e.g. "done > 2 hours ago".

    Comparison operators compare numerically when both sides are numbers,
    chronologically when the tag holds a timestamp and the query value is a
    date, and as strings otherwise. "=", "=~" and "!~" are regex searches.
    """
    tag: str
    op: str
    value: str
    regex: Optional[re.Pattern] = None
    number: Optional[float] = None
    when: Optional[DateBound] = None

    @classmethod
    def parse(cls, expression: str) -> "ValueQuery":
        match = _VALUE_QUERY_RE.match(expression)
        if not match or not match.group("value"):
            raise FilterError(f"Invalid tag value query: {expression!r}")

        query = cls(tag=match.group("tag"), op=match.group("op"), value=match.group("value"))
        if query.op in _REGEX_OPS:
            query.regex = compile_regex(query.value, True)
            return query

        query.number = _to_number(query.value)
        if query.number is None:
            try:
                query.when = parse_date_filter(query.value)
            except FilterError:
                query.when = None
        return query

    def matches(self, tags: dict[str, Optional[str]]) -> bool:
        actual = tags.get(self.tag)
        if actual is None:
            return False

        if self.op in _REGEX_OPS:
            found = self.regex.search(actual) is not None
            return not found if self.op == "!~" else found

        compare = _COMPARISONS[self.op]
        if self.number is not None:
            actual_number = _to_number(actual)
            if actual_number is not None:
                return compare(actual_number, self.number)

        if self.when is not None:
            actual_when = parse_tag_timestamp(actual)
            if actual_when is not None:
                return compare(actual_when, resolve_bound(self.when, actual_when))

        return compare(actual, self.value)
