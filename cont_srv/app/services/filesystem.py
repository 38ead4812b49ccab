"""Static side of the server: directory listings and raw file streaming."""

from __future__ import annotations

import html
import logging
import os
from pathlib import Path
from typing import Generator, List, Optional, Tuple
from urllib.parse import quote

logger = logging.getLogger(__name__)

EPUB_SUFFIX = ".epub"

_CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".pdf": "application/pdf",
    ".md": "text/markdown",
    ".txt": "text/plain",
    ".json": "application/json",
    ".html": "text/html",
    ".htm": "text/html",
    ".xhtml": "application/xhtml+xml",
    ".xml": "application/xml",
    ".ncx": "application/x-dtbncx+xml",
    ".opf": "application/oebps-package+xml",
    ".epub": "application/epub+zip",
    ".css": "text/css",
    ".js": "application/javascript",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
}


def guess_content_type(name: str, default: Optional[str] = "application/octet-stream") -> Optional[str]:
    """Guess content type based on file extension."""
    suffix = os.path.splitext(name)[1].lower()
    return _CONTENT_TYPES.get(suffix, default)


def resolve_under_root(root: Path, relative: str) -> Optional[Path]:
    """Joins ``relative`` onto ``root``; ``None`` if the result escapes ``root``."""
    base = Path(root).resolve()
    candidate = (base / relative.lstrip("/")).resolve()
    if candidate != base and base not in candidate.parents:
        return None
    return candidate


def format_size(size: int) -> str:
    units = ("B", "KB", "MB", "GB", "TB", "PB")
    value = float(size)
    unit_index = 0
    while value >= 1024.0 and unit_index < len(units) - 1:
        value /= 1024.0
        unit_index += 1
    return f"{value:.2f} {units[unit_index]}"


def render_listing(directory: Path, request_path: str) -> str:
    """One ``<div>`` per entry, sorted by name, with a reader link for EPUBs."""
    base_url = request_path if request_path.endswith("/") else f"{request_path}/"
    with os.scandir(directory) as scanner:
        entries = sorted(scanner, key=lambda item: item.name)
    out: List[str] = []
    for entry in entries:
        try:
            is_dir = entry.is_dir()
            is_file = entry.is_file()
        except OSError:
            continue
        url = f"{base_url}{quote(entry.name, safe='')}"
        out.append("<div>")
        out.append("[+&nbsp;" if is_dir else "[-&nbsp;")
        out.append(f'<a href="{url}">{html.escape(entry.name)}</a>]')
        if is_file:
            try:
                out.append(f"&nbsp;[{format_size(entry.stat().st_size)}]")
            except OSError:
                logger.debug("Could not stat %s", entry.path)
        if entry.name.endswith(EPUB_SUFFIX):
            out.append(f'&nbsp;[<a href="/epub_toc{url}">Read</a>]')
        out.append("</div>")
    return "".join(out)


def iter_file(path: Path, start: int, end: int, chunk_size: int = 8192) -> Generator[bytes, None, None]:
    with path.open("rb") as handle:
        handle.seek(start)
        bytes_remaining = end - start + 1
        while bytes_remaining > 0:
            read_size = min(chunk_size, bytes_remaining)
            chunk = handle.read(read_size)
            if not chunk:
                break
            yield chunk
            bytes_remaining -= len(chunk)


def parse_range_header(range_header: str, file_size: int) -> Tuple[Optional[int], Optional[int]]:
    try:
        units, _, ranges = range_header.partition("=")
        if units.strip().lower() != "bytes":
            return None, None
        start_str, _, end_str = ranges.strip().partition("-")
        if not start_str:
            # "bytes=-N" asks for the last N bytes.
            suffix_length = int(end_str)
            if suffix_length <= 0 or file_size == 0:
                return None, None
            return max(0, file_size - suffix_length), file_size - 1
        start = int(start_str)
        end = min(int(end_str), file_size - 1) if end_str else file_size - 1
        if start > end or end >= file_size:
            return None, None
        return start, end
    except ValueError:
        logger.warning("Invalid Range header received: %s", range_header)
        return None, None


def file_etag(path: Path) -> Optional[str]:
    try:
        stat = path.stat()
    except FileNotFoundError:
        return None
    return f'W/"{stat.st_mtime_ns}-{stat.st_size}"'
