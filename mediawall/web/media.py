"""File responses with validators, cache policies and byte-range support."""

from __future__ import annotations

import asyncio
import mimetypes
import os
import re
import stat
from dataclasses import dataclass
from email.utils import formatdate
from pathlib import Path
from typing import AsyncIterator, Dict, Literal, Mapping, Optional, Tuple

from fastapi import HTTPException, status
from fastapi.responses import Response, StreamingResponse

from ..services.resolver import classify_media

AssetClass = Literal["media", "static"]

_STREAM_CHUNK_SIZE = 64 * 1024
_RANGE_PATTERN = re.compile(r"^\s*bytes=(\d*)-(\d*)\s*$")

MEDIA_CACHE_CONTROL = "public, max-age=31536000, immutable"
STATIC_CACHE_CONTROL = "public, max-age=1800, must-revalidate"
HTML_CACHE_CONTROL = "public, max-age=0, must-revalidate"
NO_CACHE_CONTROL = "no-store, no-cache, must-revalidate"
SERVICE_WORKER_NAME = "sw.js"

_MIME_TYPES: Mapping[str, str] = {
    ".html": "text/html; charset=utf-8",
    ".js": "application/javascript; charset=utf-8",
    ".css": "text/css; charset=utf-8",
    ".json": "application/json; charset=utf-8",
    ".webmanifest": "application/manifest+json",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".ogv": "video/ogg",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


class RangeNotSatisfiableError(ValueError):
    """Raised when a ``Range`` header cannot be served for the file size."""


@dataclass(frozen=True)
class FileValidators:
    size: int
    etag: str
    last_modified: str

    @classmethod
    def from_stat(cls, info: os.stat_result) -> "FileValidators":
        return cls(
            size=info.st_size,
            etag=build_etag(info.st_size, info.st_mtime_ns),
            last_modified=formatdate(info.st_mtime, usegmt=True),
        )


def build_etag(size: int, mtime_ns: int) -> str:
    """Return the quoted ``"<size>-<mtimeMillis>"`` validator for a file."""

    return f'"{size}-{mtime_ns // 1_000_000}"'


def guess_content_type(path: Path) -> str:
    suffix = path.suffix.lower()
    known = _MIME_TYPES.get(suffix)
    if known is not None:
        return known
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


def cache_control_for(path: Path, asset_class: AssetClass) -> str:
    """Return the ``Cache-Control`` policy for *path*."""

    if asset_class == "media":
        return MEDIA_CACHE_CONTROL
    if path.name == SERVICE_WORKER_NAME:
        return NO_CACHE_CONTROL
    if path.suffix.lower() in {".html", ".htm"}:
        return HTML_CACHE_CONTROL
    return STATIC_CACHE_CONTROL


def parse_range_header(header: str, size: int) -> Tuple[int, int]:
    """Return the inclusive ``(start, end)`` window requested by *header*.

    Supports ``start-end``, ``start-`` and ``-suffix`` forms of a single
    ``bytes=`` range. ``end`` is clamped to the last byte of the file.
    """

    match = _RANGE_PATTERN.match(header or "")
    if match is None:
        raise RangeNotSatisfiableError("Malformed range")

    start_raw, end_raw = match.groups()
    if not start_raw and not end_raw:
        raise RangeNotSatisfiableError("Empty range")

    try:
        if not start_raw:
            suffix_length = int(end_raw)
            start = max(size - suffix_length, 0)
            end = size - 1
        else:
            start = int(start_raw)
            end = int(end_raw) if end_raw else size - 1
    except ValueError as error:
        raise RangeNotSatisfiableError("Invalid range bounds") from error

    if start < 0 or end < 0 or end < start or start >= size:
        raise RangeNotSatisfiableError("Range outside of file")

    if end >= size:
        end = size - 1
    return start, end


async def iter_file_window(
    path: Path,
    start: int,
    end: int,
    *,
    chunk_size: int = _STREAM_CHUNK_SIZE,
) -> AsyncIterator[bytes]:
    """Yield bytes ``start..end`` (inclusive) of *path* without blocking the loop."""

    loop = asyncio.get_running_loop()
    handle = await loop.run_in_executor(None, path.open, "rb")
    try:
        await loop.run_in_executor(None, handle.seek, start)
        remaining = end - start + 1
        while remaining > 0:
            chunk = await loop.run_in_executor(None, handle.read, min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk
    finally:
        handle.close()


def _base_headers(validators: FileValidators, cache_control: str) -> Dict[str, str]:
    return {
        "ETag": validators.etag,
        "Last-Modified": validators.last_modified,
        "Cache-Control": cache_control,
    }


async def stat_file(path: Path) -> os.stat_result:
    """Return ``stat`` for a regular file or raise a 404 ``HTTPException``."""

    loop = asyncio.get_running_loop()
    try:
        info = await loop.run_in_executor(None, path.stat)
    except (OSError, ValueError) as error:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found") from error
    if not stat.S_ISREG(info.st_mode):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    return info


async def serve_file(
    path: Path,
    *,
    request_headers: Mapping[str, str],
    asset_class: AssetClass,
    allow_ranges: bool = False,
    info: Optional[os.stat_result] = None,
) -> Response:
    """Build the response for *path* honouring ``If-None-Match`` and ``Range``."""

    if info is None:
        info = await stat_file(path)
    validators = FileValidators.from_stat(info)
    headers = _base_headers(validators, cache_control_for(path, asset_class))
    if allow_ranges:
        headers["Accept-Ranges"] = "bytes"

    if request_headers.get("if-none-match") == validators.etag:
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers=headers)

    content_type = guess_content_type(path)
    range_header = request_headers.get("range") if allow_ranges else None
    if range_header is None:
        headers["Content-Length"] = str(validators.size)
        if not validators.size:
            return Response(content=b"", headers=headers, media_type=content_type)
        return StreamingResponse(
            iter_file_window(path, 0, validators.size - 1),
            status_code=status.HTTP_200_OK,
            headers=headers,
            media_type=content_type,
        )

    try:
        start, end = parse_range_header(range_header, validators.size)
    except RangeNotSatisfiableError as error:
        raise HTTPException(
            status_code=416,
            detail="Range Not Satisfiable",
            headers={"Content-Range": f"bytes */{validators.size}"},
        ) from error

    headers["Content-Range"] = f"bytes {start}-{end}/{validators.size}"
    headers["Content-Length"] = str(end - start + 1)
    return StreamingResponse(
        iter_file_window(path, start, end),
        status_code=status.HTTP_206_PARTIAL_CONTENT,
        headers=headers,
        media_type=content_type,
    )


async def serve_media(
    path: Path,
    *,
    request_headers: Mapping[str, str],
) -> Response:
    """Serve a file from the media root: ranges for video, whole file for images."""

    info = await stat_file(path)
    media_type = classify_media(path.name)
    if media_type is None:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Unsupported media type",
        )
    return await serve_file(
        path,
        request_headers=request_headers,
        asset_class="media",
        allow_ranges=media_type == "video",
        info=info,
    )


__all__ = [
    "FileValidators",
    "RangeNotSatisfiableError",
    "build_etag",
    "cache_control_for",
    "guess_content_type",
    "iter_file_window",
    "parse_range_header",
    "serve_file",
    "serve_media",
    "stat_file",
]
