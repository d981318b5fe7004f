"""Cached readers for documents produced outside the service.

The reflective texts shown on the wall and the history/report files that
record implemented work are written by an external process. They are cached in
memory keyed by the file modification time; a read or parse failure keeps the
last good value.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class CachedDocument(Generic[T]):
    """Parse a file on demand and reuse the result while its mtime is unchanged."""

    def __init__(self, path: Path, loader: Callable[[str], T], default: Callable[[], T]) -> None:
        self._path = path
        self._loader = loader
        self._default = default
        self._lock = threading.Lock()
        self._mtime_ns: Optional[int] = None
        self._value: Optional[T] = None

    @property
    def path(self) -> Path:
        return self._path

    def get(self) -> T:
        with self._lock:
            try:
                mtime_ns = self._path.stat().st_mtime_ns
            except OSError as error:
                if not isinstance(error, FileNotFoundError):
                    LOGGER.warning("Could not stat %s: %s", self._path, error)
                return self._fallback()

            if self._value is not None and self._mtime_ns == mtime_ns:
                return self._value

            try:
                raw = self._path.read_text(encoding="utf-8")
                value = self._loader(raw)
            except (OSError, UnicodeDecodeError, ValueError) as error:
                LOGGER.warning("Keeping previous contents of %s after load failure: %s", self._path, error)
                return self._fallback()

            self._value = value
            self._mtime_ns = mtime_ns
            return value

    def _fallback(self) -> T:
        return self._value if self._value is not None else self._default()


def parse_existential_texts(raw: str) -> List[str]:
    """Return the ``texts`` list of a reflective-text document."""

    payload = json.loads(raw)
    if not isinstance(payload, dict) or not isinstance(payload.get("texts"), list):
        raise ValueError("expected an object with a 'texts' list")
    return [text for text in payload["texts"] if isinstance(text, str) and text.strip()]


def _collect_strings(value: Any, sink: List[str]) -> None:
    if isinstance(value, str):
        sink.append(value)
    elif isinstance(value, dict):
        for item in value.values():
            _collect_strings(item, sink)
    elif isinstance(value, list):
        for item in value:
            _collect_strings(item, sink)


def parse_history_lines(raw: str) -> List[str]:
    """Split a JSON-lines history log into one searchable string per entry.

    Each entry is the newline-joined text of every string value in the line,
    so summaries and change descriptions are matched without JSON escaping.
    Lines that are not valid JSON are kept verbatim.
    """

    entries: List[str] = []
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        try:
            payload = json.loads(stripped)
        except json.JSONDecodeError:
            entries.append(stripped)
            continue
        strings: List[str] = []
        _collect_strings(payload, strings)
        entries.append("\n".join(strings))
    return entries


class ExistentialTexts:
    """Read-only view of the reflective texts shown between media items."""

    def __init__(self, path: Path) -> None:
        self._document: CachedDocument[List[str]] = CachedDocument(path, parse_existential_texts, list)

    @property
    def path(self) -> Path:
        return self._document.path

    def texts(self) -> List[str]:
        return list(self._document.get())


class ImplementedWorkCorpus:
    """History entries and the report document describing work already done.

    A text counts as implemented when it appears, ignoring case, inside any
    history entry or anywhere in the report.
    """

    def __init__(self, history_file: Path, report_file: Path) -> None:
        self._history: CachedDocument[List[str]] = CachedDocument(
            history_file, parse_history_lines, list
        )
        self._report: CachedDocument[str] = CachedDocument(report_file, str, str)

    def haystacks(self) -> Tuple[str, ...]:
        entries: Sequence[str] = self._history.get()
        report = self._report.get()
        combined = [entry.lower() for entry in entries]
        if report:
            combined.append(report.lower())
        return tuple(combined)

    def contains(self, text: str, haystacks: Optional[Sequence[str]] = None) -> bool:
        needle = text.lower()
        if not needle:
            return False
        pool = self.haystacks() if haystacks is None else haystacks
        return any(needle in haystack for haystack in pool)


__all__ = [
    "CachedDocument",
    "ExistentialTexts",
    "ImplementedWorkCorpus",
    "parse_existential_texts",
    "parse_history_lines",
]
