"""Configuration loading utilities for the media wall service."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".mediawall_write_check"

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000

ENV_HOST = "MEDIAWALL_HOST"
ENV_PORT = "MEDIAWALL_PORT"
ENV_MEDIA_ROOT = "MEDIAWALL_MEDIA_ROOT"
ENV_PUBLIC_ROOT = "MEDIAWALL_PUBLIC_ROOT"
ENV_DATA_ROOT = "MEDIAWALL_DATA_ROOT"

_DEFAULT_MAPPING: Dict[str, Any] = {
    "host": DEFAULT_HOST,
    "port": DEFAULT_PORT,
    "media_root": "videos",
    "public_root": "public",
    "data_root": "data",
    "likes_file": "data/likes.json",
    "suggestions_file": "data/suggestions.json",
    "existential_texts_file": "data/existential_texts.json",
    "history_file": "autoimprove/history.jsonl",
    "report_file": "autoimprove/reports.md",
}


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins and the flag tells whether a fallback was
    used. When nothing can be prepared the original ``preferred`` path is
    returned so callers fail later with a meaningful error.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _relocate(path: Path, old_root: Path, new_root: Path) -> Path:
    try:
        relative = path.relative_to(old_root)
    except ValueError:
        return path
    return (new_root / relative).resolve()


def _parse_port(value: Any, *, default: int) -> int:
    try:
        port = int(str(value).strip())
    except (TypeError, ValueError):
        LOGGER.warning("Ignoring invalid port value %r; using %s.", value, default)
        return default
    if not 0 < port < 65536:
        LOGGER.warning("Ignoring out-of-range port %s; using %s.", port, default)
        return default
    return port


@dataclass(frozen=True)
class AppConfig:
    """Runtime paths and bind address for the media wall."""

    media_root: Path
    public_root: Path
    data_root: Path
    likes_file: Path
    suggestions_file: Path
    existential_texts_file: Path
    history_file: Path
    report_file: Path
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], *, base_path: Path) -> "AppConfig":
        merged: Dict[str, Any] = {**_DEFAULT_MAPPING, **dict(mapping)}

        def _path(key: str) -> Path:
            return (base_path / str(merged[key])).resolve()

        preferred_data = _path("data_root")
        data_fallback = Path.home() / ".mediawall" / "data"
        data_root, data_fallback_used = _select_writable_directory(
            preferred_data,
            label="data",
            fallbacks=(data_fallback,),
        )

        ledger_paths = {
            key: _path(key) for key in ("likes_file", "suggestions_file", "existential_texts_file")
        }
        if data_fallback_used:
            ledger_paths = {
                key: _relocate(value, preferred_data, data_root)
                for key, value in ledger_paths.items()
            }

        return cls(
            media_root=_path("media_root"),
            public_root=_path("public_root"),
            data_root=data_root,
            likes_file=ledger_paths["likes_file"],
            suggestions_file=ledger_paths["suggestions_file"],
            existential_texts_file=ledger_paths["existential_texts_file"],
            history_file=_path("history_file"),
            report_file=_path("report_file"),
            host=str(merged.get("host") or DEFAULT_HOST),
            port=_parse_port(merged.get("port"), default=DEFAULT_PORT),
        )


def apply_environment(config: AppConfig, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Return *config* with ``MEDIAWALL_*`` environment overrides applied."""

    env = os.environ if environ is None else environ
    changes: Dict[str, Any] = {}

    host = (env.get(ENV_HOST) or "").strip()
    if host:
        changes["host"] = host
    port = (env.get(ENV_PORT) or "").strip()
    if port:
        changes["port"] = _parse_port(port, default=config.port)

    media_root = (env.get(ENV_MEDIA_ROOT) or "").strip()
    if media_root:
        changes["media_root"] = Path(media_root).expanduser().resolve()
    public_root = (env.get(ENV_PUBLIC_ROOT) or "").strip()
    if public_root:
        changes["public_root"] = Path(public_root).expanduser().resolve()

    data_root = (env.get(ENV_DATA_ROOT) or "").strip()
    if data_root:
        new_root = Path(data_root).expanduser().resolve()
        changes["data_root"] = new_root
        for key in ("likes_file", "suggestions_file", "existential_texts_file"):
            current: Path = getattr(config, key)
            relocated = _relocate(current, config.data_root, new_root)
            changes[key] = relocated if relocated != current else (new_root / current.name)

    if not changes:
        return config
    return replace(config, **changes)


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    raw_config: Dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as config_file:
            raw_config = json.load(config_file)
    else:
        LOGGER.warning("Configuration file '%s' not found; using defaults.", config_path)

    config = AppConfig.from_mapping(raw_config, base_path=base_path)
    return apply_environment(config)


__all__ = ["AppConfig", "DEFAULT_HOST", "DEFAULT_PORT", "apply_environment", "load_config"]
