"""Visitor suggestion backlog and per-client submission cooldown."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence, Tuple

from .corpus import ImplementedWorkCorpus
from .events import emit_suggestion_event
from .ledger import Document, JsonLedger, utc_timestamp

LOGGER = logging.getLogger(__name__)

MAX_SUGGESTION_LENGTH = 512
DEFAULT_COOLDOWN_SECONDS = 60.0


class SuggestionError(Exception):
    """Base class for rejected suggestion submissions.

    ``suggestions`` holds the live backlog at the time of the rejection when
    it is known.
    """

    def __init__(self, message: str, *, suggestions: Optional[List["SuggestionEntry"]] = None) -> None:
        super().__init__(message)
        self.suggestions: List["SuggestionEntry"] = list(suggestions or [])


class InvalidSuggestionError(SuggestionError):
    """The submitted text is empty or not a string."""


class CooldownActiveError(SuggestionError):
    """The client submitted again before its cooldown expired."""

    def __init__(self, retry_after: float) -> None:
        super().__init__(f"Cooldown active for another {retry_after:.0f}s")
        self.retry_after = retry_after


class DuplicateSuggestionError(SuggestionError):
    """A live suggestion already carries the same text."""


class AlreadyImplementedError(SuggestionError):
    """The suggestion already appears in the record of implemented work."""


@dataclass(frozen=True)
class SuggestionEntry:
    text: str
    timestamp: str

    def to_dict(self) -> Dict[str, str]:
        return {"text": self.text, "timestamp": self.timestamp}

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["SuggestionEntry"]:
        if not isinstance(raw, dict):
            return None
        text = raw.get("text")
        if not isinstance(text, str) or not text.strip():
            return None
        timestamp = raw.get("timestamp")
        return cls(text=text, timestamp=timestamp if isinstance(timestamp, str) else "")


def sanitize_suggestion(value: Any) -> str:
    """Trim, collapse whitespace and cap the length of a submitted suggestion."""

    if not isinstance(value, str):
        raise InvalidSuggestionError("Suggestion must be a string")
    collapsed = " ".join(value.split())
    if not collapsed:
        raise InvalidSuggestionError("Suggestion is empty")
    return collapsed[:MAX_SUGGESTION_LENGTH].strip()


def _empty_suggestions() -> Document:
    return {"suggestions": []}


def _is_suggestions_document(payload: Any) -> bool:
    return isinstance(payload, dict) and isinstance(payload.get("suggestions"), list)


SubmissionOutcome = Literal["added", "duplicate", "implemented"]


class SuggestionBacklog:
    """Suggestions waiting to be picked up, minus those already implemented."""

    def __init__(
        self,
        path: Path,
        corpus: ImplementedWorkCorpus,
        *,
        now: Callable[[], str] = utc_timestamp,
    ) -> None:
        self._ledger = JsonLedger(
            path,
            name="suggestions",
            default=_empty_suggestions,
            validate=_is_suggestions_document,
        )
        self._corpus = corpus
        self._now = now

    @property
    def path(self) -> Path:
        return self._ledger.path

    def ensure(self) -> bool:
        return self._ledger.ensure()

    def _purge_implemented(self, document: Document, haystacks: Sequence[str]) -> List[SuggestionEntry]:
        live: List[SuggestionEntry] = []
        removed = 0
        for raw in document.get("suggestions") or []:
            entry = SuggestionEntry.from_raw(raw)
            if entry is None:
                continue
            if self._corpus.contains(entry.text, haystacks):
                removed += 1
                continue
            live.append(entry)
        if removed:
            LOGGER.info("Removed %s implemented suggestion(s) from the backlog", removed)
        document["suggestions"] = [entry.to_dict() for entry in live]
        return live

    def list(self) -> List[SuggestionEntry]:
        """Return live suggestions, dropping (and persisting the removal of) implemented ones."""

        haystacks = self._corpus.haystacks()
        return self._ledger.update(lambda document: self._purge_implemented(document, haystacks))

    def submit(self, text: str) -> List[SuggestionEntry]:
        """Append *text* to the backlog and return the live suggestions.

        Raises :class:`AlreadyImplementedError` or
        :class:`DuplicateSuggestionError` when the text is not added.
        """

        cleaned = sanitize_suggestion(text)
        needle = cleaned.lower()
        haystacks = self._corpus.haystacks()

        def _insert(document: Document) -> Tuple[SubmissionOutcome, List[SuggestionEntry]]:
            live = self._purge_implemented(document, haystacks)
            if self._corpus.contains(cleaned, haystacks):
                return "implemented", live
            if any(entry.text.lower() == needle for entry in live):
                return "duplicate", live
            entry = SuggestionEntry(text=cleaned, timestamp=self._now())
            live.append(entry)
            document["suggestions"].append(entry.to_dict())
            return "added", live

        outcome, live = self._ledger.update(_insert)
        emit_suggestion_event(outcome, payload={"length": len(cleaned), "live": len(live)})
        if outcome == "implemented":
            raise AlreadyImplementedError("This suggestion has already been implemented", suggestions=live)
        if outcome == "duplicate":
            raise DuplicateSuggestionError("This suggestion is already in the backlog", suggestions=live)
        return live


class CooldownTracker:
    """In-memory map of client identifiers to the instant their cooldown ends.

    Created once per application, never persisted; a restart clears it.
    """

    def __init__(
        self,
        window_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = float(window_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._expiries: Dict[str, float] = {}

    def reserve(self, client_id: str) -> None:
        """Start the cooldown window for *client_id* unless one is running.

        Checking and starting the window happen under one lock acquisition, so
        concurrent submissions from the same client cannot all get through.
        Raises :class:`CooldownActiveError` while the window is running.
        """

        now = self._clock()
        with self._lock:
            expiry = self._expiries.get(client_id)
            if expiry is not None and expiry > now:
                raise CooldownActiveError(expiry - now)
            self._expiries[client_id] = now + self._window
            if len(self._expiries) > 1024:
                self._prune_locked(now)

    def release(self, client_id: str) -> None:
        """Drop the window of *client_id*, e.g. when its submission failed to store."""

        with self._lock:
            self._expiries.pop(client_id, None)

    def _prune_locked(self, now: float) -> None:
        expired = [key for key, expiry in self._expiries.items() if expiry <= now]
        for key in expired:
            del self._expiries[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._expiries)


__all__ = [
    "AlreadyImplementedError",
    "CooldownActiveError",
    "CooldownTracker",
    "DEFAULT_COOLDOWN_SECONDS",
    "DuplicateSuggestionError",
    "InvalidSuggestionError",
    "MAX_SUGGESTION_LENGTH",
    "SuggestionBacklog",
    "SuggestionEntry",
    "SuggestionError",
    "sanitize_suggestion",
]
