"""Renders an archive's navigation forest as a clickable HTML document."""

from __future__ import annotations

import html
from typing import List, Sequence

from .codec import encode_path
from .epub import NavPoint

TOC_MEDIA_TYPE = "text/html; charset=utf-8"


class NoContent(LookupError):
    """Raised when an archive has neither a TOC nor a spine to fall back on."""

    def __init__(self, archive_path: str) -> None:
        self.archive_path = archive_path
        super().__init__("No contents found in the epub file")


def _render_point(out: List[str], depth: int, point: NavPoint) -> None:
    out.append("<div>")
    out.append("&emsp;" * depth)
    out.append(f'<a href="{html.escape(point.target, quote=True)}">{html.escape(point.label)}</a>')
    out.append("</div>")
    for child in point.children:
        _render_point(out, depth + 1, child)


def render_toc(toc: Sequence[NavPoint], archive_path: str) -> str:
    """Pre-order rendering, one indented line per node.

    Targets stay relative; the ``<base>`` element points them at the content
    endpoint of ``archive_path``.
    """
    out = [f'<head><base href="/epub_cont/{encode_path(archive_path)}/"/></head>', "<body>"]
    for point in toc:
        _render_point(out, 0, point)
    out.append("</body>")
    return "".join(out)
