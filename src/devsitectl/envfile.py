"""Structured editing of ``.env`` documents.

The document is parsed into an ordered list of entries: assignments
(``KEY=value``) and everything else (comments, blank lines) kept verbatim.
Setting a key rewrites the first assignment for that key in place. An absent
key takes the place of a commented-out ``# KEY=`` line when the template
ships one, and is appended otherwise, so repeated edits never duplicate keys
and the surrounding layout survives untouched.
"""
from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

_ASSIGNMENT = re.compile(r"^(?P<export>export\s+)?(?P<key>[A-Za-z_][A-Za-z0-9_]*)=(?P<value>.*)$")
_NEEDS_QUOTES = re.compile(r"[\s#\"'=$\\`]")


@dataclass(slots=True)
class Assignment:
    """A ``KEY=value`` line. ``raw_value`` is the text after ``=``."""

    key: str
    raw_value: str
    export: bool = False

    def render(self) -> str:
        """Return the line as written to disk."""
        prefix = "export " if self.export else ""
        return f"{prefix}{self.key}={self.raw_value}"


@dataclass(slots=True)
class Verbatim:
    """A comment, blank, or unparseable line preserved as-is."""

    text: str

    def render(self) -> str:
        """Return the line as written to disk."""
        return self.text


Entry = Assignment | Verbatim


def quote_value(value: str) -> str:
    """Return *value* in ``.env`` syntax, double-quoting it when required."""
    if value == "" or not _NEEDS_QUOTES.search(value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def unquote_value(raw: str) -> str:
    """Return the logical value of a raw ``.env`` value."""
    text = raw.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {'"', "'"}:
        inner = text[1:-1]
        if text[0] == '"':
            return inner.replace('\\"', '"').replace("\\\\", "\\")
        return inner
    # Unquoted values may carry a trailing inline comment.
    if " #" in text:
        text = text.split(" #", 1)[0].rstrip()
    return text


@dataclass(slots=True)
class EnvironmentDocument:
    """An ordered, editable ``.env`` document."""

    entries: list[Entry] = field(default_factory=list)
    trailing_newline: bool = True

    @classmethod
    def parse(cls, text: str) -> EnvironmentDocument:
        """Parse *text* into a document."""
        entries: list[Entry] = []
        for line in text.splitlines():
            match = _ASSIGNMENT.match(line)
            if match is None:
                entries.append(Verbatim(line))
                continue
            entries.append(
                Assignment(
                    key=match.group("key"),
                    raw_value=match.group("value"),
                    export=bool(match.group("export")),
                )
            )
        trailing = text.endswith("\n") or not text
        return cls(entries=entries, trailing_newline=trailing)

    def keys(self) -> list[str]:
        """Return assigned keys in document order (first occurrence only)."""
        seen: list[str] = []
        for entry in self.entries:
            if isinstance(entry, Assignment) and entry.key not in seen:
                seen.append(entry.key)
        return seen

    def get(self, key: str) -> str | None:
        """Return the logical value for *key*, or ``None`` when absent."""
        entry = self._find(key)
        return unquote_value(entry.raw_value) if entry is not None else None

    def __contains__(self, key: object) -> bool:
        """Return ``True`` when *key* is assigned in the document."""
        return isinstance(key, str) and self._find(key) is not None

    def set(self, key: str, value: str) -> bool:
        """Assign *value* to *key*; return ``True`` when the document changed."""
        rendered = quote_value(value)
        entry = self._find(key)
        if entry is None:
            position = self._find_commented(key)
            assignment = Assignment(key=key, raw_value=rendered)
            if position is None:
                self.entries.append(assignment)
            else:
                self.entries[position] = assignment
            return True
        if entry.raw_value == rendered:
            return False
        entry.raw_value = rendered
        return True

    def update(self, values: Mapping[str, str] | Iterable[tuple[str, str]]) -> list[str]:
        """Apply several assignments and return the keys that changed."""
        items = values.items() if isinstance(values, Mapping) else values
        return [key for key, value in items if self.set(key, value)]

    def render(self) -> str:
        """Return the document text."""
        text = "\n".join(entry.render() for entry in self.entries)
        if self.trailing_newline and self.entries:
            text += "\n"
        return text

    def _find(self, key: str) -> Assignment | None:
        for entry in self.entries:
            if isinstance(entry, Assignment) and entry.key == key:
                return entry
        return None

    def _find_commented(self, key: str) -> int | None:
        pattern = re.compile(rf"^#\s*{re.escape(key)}=")
        for index, entry in enumerate(self.entries):
            if isinstance(entry, Verbatim) and pattern.match(entry.text):
                return index
        return None


__all__ = [
    "Assignment",
    "EnvironmentDocument",
    "Verbatim",
    "quote_value",
    "unquote_value",
]
