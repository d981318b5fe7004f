"""Map request paths onto files below a fixed root and list playable media."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, FrozenSet, List, Literal, Optional

LOGGER = logging.getLogger(__name__)

MediaType = Literal["video", "image"]

VIDEO_EXTENSIONS: FrozenSet[str] = frozenset({".mp4", ".webm", ".ogv"})
IMAGE_EXTENSIONS: FrozenSet[str] = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp"})


class PathOutsideRootError(ValueError):
    """Raised when a requested path would escape its root directory."""


@dataclass(frozen=True)
class MediaEntry:
    """One playable item of the wall, derived from a file name."""

    name: str
    type: MediaType

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def classify_media(name: str) -> Optional[MediaType]:
    """Return ``"video"``/``"image"`` for recognised extensions, else ``None``."""

    suffix = Path(name).suffix.lower()
    if suffix in VIDEO_EXTENSIONS:
        return "video"
    if suffix in IMAGE_EXTENSIONS:
        return "image"
    return None


def resolve_within(root: Path, requested: str) -> Path:
    """Return the absolute path for *requested* below *root*.

    Leading slashes and backslashes are stripped so the request is always
    joined relative to the root. Results that do not stay under the root
    raise :class:`PathOutsideRootError`.
    """

    root_path = root.resolve()
    relative = requested.lstrip("/\\")
    if "\x00" in relative:
        raise PathOutsideRootError(requested)
    try:
        candidate = (root_path / relative).resolve()
    except (OSError, ValueError) as error:
        raise PathOutsideRootError(requested) from error
    try:
        candidate.relative_to(root_path)
    except ValueError as error:
        raise PathOutsideRootError(requested) from error
    return candidate


def list_media(media_root: Path) -> List[MediaEntry]:
    """Scan *media_root* and return recognised media sorted by file name.

    A missing root yields an empty list; warning operators is up to the caller.
    """

    try:
        scanner = os.scandir(media_root)
    except FileNotFoundError:
        return []
    except OSError as error:
        LOGGER.warning("Cannot list media root %s: %s", media_root, error)
        return []

    entries: List[MediaEntry] = []
    with scanner:
        for item in scanner:
            if item.name.startswith("."):
                continue
            media_type = classify_media(item.name)
            if media_type is None:
                continue
            try:
                if not item.is_file():
                    continue
            except OSError:
                continue
            entries.append(MediaEntry(name=item.name, type=media_type))
    entries.sort(key=lambda entry: entry.name)
    return entries


__all__ = [
    "IMAGE_EXTENSIONS",
    "MediaEntry",
    "MediaType",
    "PathOutsideRootError",
    "VIDEO_EXTENSIONS",
    "classify_media",
    "list_media",
    "resolve_within",
]
