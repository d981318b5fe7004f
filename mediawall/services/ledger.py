"""JSON documents used as the persisted record for likes and suggestions.

Each ledger is a single JSON file holding the full current state. Every
mutation reads the whole document, applies a change and rewrites the file.
Mutations on one ledger are serialised by a per-ledger lock, which keeps the
read-modify-write cycle atomic for every request handled by this process.
Several processes sharing the same files are not coordinated.
"""

from __future__ import annotations

import contextlib
import copy
import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, TypeVar

from pydantic import BaseModel, ValidationInfo, field_validator

from .events import emit_ledger_event

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

Document = Dict[str, Any]


class LedgerWriteError(RuntimeError):
    """Raised when a ledger document cannot be written back to disk."""


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    """Return an ISO-8601 UTC timestamp with millisecond precision."""

    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class JsonLedger:
    """Whole-document JSON store with a self-healing read path."""

    def __init__(
        self,
        path: Path,
        *,
        name: str,
        default: Callable[[], Document],
        validate: Callable[[Any], bool],
    ) -> None:
        self._path = path
        self._name = name
        self._default = default
        self._validate = validate
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def ensure(self, validate: Optional[Callable[[Any], bool]] = None) -> bool:
        """Reset the file to the empty default when missing or malformed.

        *validate* is applied on top of the read-time shape check so startup
        can be stricter than request handling. Returns ``True`` when the file was (re)written.
        """

        with self._lock:
            loaded, reason = self._load()
            if loaded is not None and validate is not None and not validate(loaded):
                loaded, reason = None, "unexpected shape"
            if loaded is not None:
                return False
            LOGGER.warning("Resetting %s ledger at %s (%s)", self._name, self._path, reason)
            self._write(self._default())
            return True

    def read(self) -> Document:
        """Return the current document, or the empty default if unreadable."""

        with self._lock:
            loaded, reason = self._load()
            if loaded is None:
                if reason != "missing":
                    LOGGER.warning(
                        "Ignoring unreadable %s ledger at %s (%s)", self._name, self._path, reason
                    )
                return self._default()
            return loaded

    def update(self, mutator: Callable[[Document], T]) -> T:
        """Apply *mutator* to the current document and persist any change.

        The document handed to *mutator* may be modified in place. The file is
        only rewritten when the document differs from what was read.
        """

        with self._lock:
            document = self.read()
            before = copy.deepcopy(document)
            result = mutator(document)
            if document != before:
                self._write(document)
            return result

    def _load(self) -> Tuple[Optional[Document], str]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None, "missing"
        except (OSError, UnicodeDecodeError) as error:
            return None, f"unreadable: {error}"
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as error:
            return None, f"invalid JSON: {error.msg}"
        if not self._validate(payload):
            return None, "unexpected shape"
        return payload, "ok"

    def _write(self, document: Document) -> None:
        started = time.perf_counter()
        encoded = json.dumps(document, indent=2, ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            handle, temp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
            )
            try:
                with os.fdopen(handle, "w", encoding="utf-8") as stream:
                    stream.write(encoded)
                os.replace(temp_name, self._path)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(temp_name)
                raise
        except OSError as error:
            LOGGER.error("Failed to write %s ledger at %s: %s", self._name, self._path, error)
            raise LedgerWriteError(f"Could not write {self._name} ledger") from error
        emit_ledger_event(
            "write",
            payload={"ledger": self._name, "bytes": len(encoded)},
            duration_ms=(time.perf_counter() - started) * 1000.0,
            level=logging.DEBUG,
        )


_TEXT_LIMITS: Mapping[str, int] = {
    "language": 35,
    "platform": 64,
    "timezone": 64,
    "referrer": 512,
}
_SCREEN_LIMIT = 100_000
_USER_AGENT_LIMIT = 512
_IP_LIMIT = 64


def clean_text(value: Any, limit: int) -> Optional[str]:
    """Return a trimmed, length-capped string or ``None`` when absent."""

    if not isinstance(value, str):
        return None
    trimmed = " ".join(value.split())
    if not trimmed:
        return None
    return trimmed[:limit]


class ScreenSize(BaseModel):
    """Viewport dimensions reported by the player."""

    width: Optional[int] = None
    height: Optional[int] = None

    @field_validator("width", "height", mode="before")
    @classmethod
    def _drop_invalid_dimension(cls, value: Any) -> Optional[int]:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        if isinstance(value, float) and not value.is_integer():
            return None
        if not 0 < value <= _SCREEN_LIMIT:
            return None
        return int(value)


class ClientMetadata(BaseModel):
    """Optional details a player reports alongside a like.

    Fields that are missing, mistyped or out of range are dropped instead of
    rejecting the like.
    """

    language: Optional[str] = None
    platform: Optional[str] = None
    timezone: Optional[str] = None
    screen: Optional[ScreenSize] = None
    referrer: Optional[str] = None

    @field_validator("language", "platform", "timezone", "referrer", mode="before")
    @classmethod
    def _clean_text_field(cls, value: Any, info: ValidationInfo) -> Optional[str]:
        return clean_text(value, _TEXT_LIMITS[info.field_name])

    @field_validator("screen", mode="before")
    @classmethod
    def _drop_non_object_screen(cls, value: Any) -> Any:
        return value if isinstance(value, Mapping) else None

    def is_empty(self) -> bool:
        return not self.to_dict()

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        if not data.get("screen"):
            data.pop("screen", None)
        return data


@dataclass
class LikeEntry:
    """A single recorded like."""

    timestamp: str = field(default_factory=utc_timestamp)
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: Optional[ClientMetadata] = None

    @classmethod
    def build(
        cls,
        *,
        ip: Optional[str],
        user_agent: Optional[str],
        metadata: Optional[ClientMetadata] = None,
        timestamp: Optional[str] = None,
    ) -> "LikeEntry":
        return cls(
            timestamp=timestamp or utc_timestamp(),
            ip=clean_text(ip, _IP_LIMIT),
            user_agent=clean_text(user_agent, _USER_AGENT_LIMIT),
            metadata=metadata if metadata is not None and not metadata.is_empty() else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"timestamp": self.timestamp}
        if self.ip:
            data["ip"] = self.ip
        if self.user_agent:
            data["userAgent"] = self.user_agent
        if self.metadata is not None and not self.metadata.is_empty():
            data["metadata"] = self.metadata.to_dict()
        return data


def _empty_likes() -> Document:
    return {"total": 0, "entries": []}


def _is_likes_document(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    total = payload.get("total")
    return (
        isinstance(payload.get("entries"), list)
        and isinstance(total, int)
        and not isinstance(total, bool)
    )


def _is_runtime_likes_document(payload: Any) -> bool:
    return isinstance(payload, dict) and isinstance(payload.get("entries"), list)


def _coerce_total(document: Document) -> int:
    total = document.get("total")
    entries = document.get("entries") or []
    if isinstance(total, int) and not isinstance(total, bool) and total >= 0:
        return total
    return len(entries)


class LikesLedger:
    """Append-only record of likes with a running total."""

    def __init__(self, path: Path) -> None:
        self._ledger = JsonLedger(
            path,
            name="likes",
            default=_empty_likes,
            validate=_is_runtime_likes_document,
        )

    @property
    def path(self) -> Path:
        return self._ledger.path

    def ensure(self) -> bool:
        """Reset the likes file when it is missing or lacks ``{total, entries}``."""

        return self._ledger.ensure(validate=_is_likes_document)

    def total(self) -> int:
        return _coerce_total(self._ledger.read())

    def record(self, entry: LikeEntry) -> int:
        """Append *entry* and return the new total."""

        def _append(document: Document) -> int:
            previous = _coerce_total(document)
            document.setdefault("entries", []).append(entry.to_dict())
            document["total"] = previous + 1
            return document["total"]

        total = self._ledger.update(_append)
        emit_ledger_event("like recorded", payload={"total": total})
        return total


__all__ = [
    "ClientMetadata",
    "JsonLedger",
    "LedgerWriteError",
    "LikeEntry",
    "LikesLedger",
    "ScreenSize",
    "clean_text",
    "utc_timestamp",
]
