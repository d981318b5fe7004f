"""Structured event helpers shared across the service."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional


DEFAULT_EVENT_LOGGER = logging.getLogger("mediawall.events")

_VALUE_LIMIT = 200


def normalize_context(values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Keep numbers as-is, trim text to a loggable length and drop empty values."""

    normalised: Dict[str, Any] = {}
    for key, value in (values or {}).items():
        if value is None:
            continue
        if not isinstance(value, (bool, int, float)):
            value = str(value).strip()[:_VALUE_LIMIT]
            if not value:
                continue
        normalised[key] = value
    return normalised


def emit_structured_event(
    event_type: str,
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Log ``[EVENT_TYPE] message (key=value, ...)`` and attach the details as extras."""

    details = {**normalize_context(context), **normalize_context(payload)}
    if duration_ms is not None:
        details["duration_ms"] = round(float(duration_ms), 2)
    text = f"[{event_type}] {message}"
    if details:
        text += " (" + ", ".join(f"{key}={value}" for key, value in details.items()) + ")"
    logger.log(level, text, extra={"event_type": event_type, "event_details": details})


def emit_ledger_event(
    action: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
) -> None:
    """Emit a structured ledger write event."""

    emit_structured_event("LEDGER", action, payload=payload, duration_ms=duration_ms, level=level)


def emit_suggestion_event(
    outcome: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
) -> None:
    """Emit the outcome of a suggestion submission."""

    emit_structured_event("SUGGESTION", outcome, payload=payload, context=context)


__all__ = [
    "DEFAULT_EVENT_LOGGER",
    "emit_ledger_event",
    "emit_structured_event",
    "emit_suggestion_event",
    "normalize_context",
]
