"""Resolves archive-internal resources and adds reading navigation to chapters."""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import List, Optional
from urllib.parse import quote

from .cache import ResolvedContent
from .epub import EpubArchive, Resource
from .filesystem import guess_content_type

HTML_MEDIA_TYPE = "text/html; charset=utf-8"

_BODY_OPEN_RE = re.compile(r"<body.*?>")
_BODY_CLOSE = "</body>"


def is_html_like(value: str) -> bool:
    return "htm" in value


def resolve_mime(resource: Resource, inner_path: str) -> str:
    """Declared mime, else a guess from the extension, else HTML for an ``.htm*`` extension.

    Returns an empty string when nothing applies.
    """
    if resource.mime:
        return resource.mime
    guessed = guess_content_type(inner_path, default=None)
    if guessed:
        return guessed
    if is_html_like(PurePosixPath(inner_path).suffix.lower()):
        return HTML_MEDIA_TYPE
    return ""


def _link_or_placeholder(href: Optional[str], text: str) -> str:
    if href is None:
        return f'<span style="color:grey">{text}</span>'
    return f'<a href="{href}">{text}</a>'


def build_nav_bar(archive: EpubArchive, resource: Resource, archive_path: str, token: str) -> Optional[str]:
    """Prev / Table of Contents / Next bar, or ``None`` if every part is disabled."""
    prev_href: Optional[str] = None
    next_href: Optional[str] = None
    index = archive.spine_index(resource.id)
    if index is not None:
        if index > 0:
            prev_href = f"/epub_cont/{token}/{quote(archive.spine_resource(index - 1).inner_path)}"
        if index < len(archive.spine) - 1:
            next_href = f"/epub_cont/{token}/{quote(archive.spine_resource(index + 1).inner_path)}"
    toc_href = f"/epub_toc/{quote(archive_path)}" if archive.toc else None

    if prev_href is None and next_href is None and toc_href is None:
        return None

    parts: List[str] = [
        '<div style="display: flex; justify-content: space-between; align-items: center;">',
        _link_or_placeholder(prev_href, "Prev"),
        _link_or_placeholder(toc_href, "Table of Contents"),
        _link_or_placeholder(next_href, "Next"),
        "</div>",
    ]
    return "".join(parts)


def inject_nav_bar(document: bytes, nav_bar: str) -> bytes:
    """Places ``nav_bar`` right after each opening body tag and before each closing one."""
    text = document.decode("utf-8", errors="replace")
    text = _BODY_OPEN_RE.sub(lambda match: match.group(0) + nav_bar, text)
    text = text.replace(_BODY_CLOSE, nav_bar + _BODY_CLOSE)
    return text.encode("utf-8")


def resolve_content(archive: EpubArchive, archive_path: str, token: str, inner_path: str) -> ResolvedContent:
    """Looks up ``inner_path`` and returns its mime and (possibly decorated) body.

    Raises:
        ResourceNotFound: no manifest entry has ``inner_path``.
    """
    resource, body = archive.lookup(inner_path)
    mime = resolve_mime(resource, inner_path)
    if is_html_like(mime):
        nav_bar = build_nav_bar(archive, resource, archive_path, token)
        if nav_bar is not None:
            body = inject_nav_bar(body, nav_bar)
    return ResolvedContent(mime=mime, body=body)
