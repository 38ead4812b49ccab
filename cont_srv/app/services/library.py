"""Cache-aware entry points for the TOC and content endpoints."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .cache import EpubCache, ResolvedContent
from .codec import decode_path, encode_path
from .content import resolve_content
from .epub import ArchiveOpenError, EpubArchive, open_archive
from .filesystem import resolve_under_root
from .toc import TOC_MEDIA_TYPE, NoContent, render_toc

logger = logging.getLogger(__name__)


class EpubLibrary:
    """Serves EPUBs found under ``root_dir``, memoising derived outputs.

    Archives are opened per request and closed before returning; only the
    rendered TOC and resolved resources are cached.
    """

    def __init__(self, root_dir: Path, cache: Optional[EpubCache] = None) -> None:
        self.root_dir = Path(root_dir)
        self.cache = cache or EpubCache()

    def _open(self, archive_path: str) -> EpubArchive:
        file_path = resolve_under_root(self.root_dir, archive_path)
        if file_path is None:
            raise ArchiveOpenError(archive_path, "path escapes the content root")
        return open_archive(file_path)

    def table_of_contents(self, archive_path: str) -> ResolvedContent:
        """Rendered TOC of ``archive_path``.

        A book without a TOC answers with its first spine resource, exactly as
        the content endpoint would.

        Raises:
            ArchiveOpenError: the archive cannot be read.
            NoContent: the archive has neither TOC nor spine.
        """
        cached = self.cache.toc.get(archive_path)
        if cached is not None:
            logger.debug("TOC cache hit for %s", archive_path)
            return ResolvedContent(mime=TOC_MEDIA_TYPE, body=cached.encode("utf-8"))

        first_inner = self.cache.first_spine.get(archive_path)
        if first_inner is not None:
            return self._content(archive_path, encode_path(archive_path), first_inner)

        logger.info("Building TOC for %s", archive_path)
        with self._open(archive_path) as archive:
            if not archive.toc:
                first = archive.first_spine_resource()
                if first is None:
                    raise NoContent(archive_path)
                resolved = self._content(archive_path, encode_path(archive_path), first.inner_path, archive)
                self.cache.first_spine.put(archive_path, first.inner_path)
                return resolved
            rendered = render_toc(archive.toc, archive_path)

        self.cache.toc.put(archive_path, rendered)
        return ResolvedContent(mime=TOC_MEDIA_TYPE, body=rendered.encode("utf-8"))

    def content(self, token: str, inner_path: str) -> ResolvedContent:
        """Resource ``inner_path`` of the archive encoded in ``token``.

        Raises:
            PathDecodeError: ``token`` is malformed.
            ArchiveOpenError: the archive cannot be read.
            ResourceNotFound: the archive has no such resource.
        """
        return self._content(decode_path(token), token, inner_path)

    def _content(
        self,
        archive_path: str,
        token: str,
        inner_path: str,
        archive: Optional[EpubArchive] = None,
    ) -> ResolvedContent:
        key = (archive_path, inner_path)
        cached = self.cache.content.get(key)
        if cached is not None:
            logger.debug("Content cache hit for %s!%s", archive_path, inner_path)
            return cached

        logger.info("Resolving %s!%s", archive_path, inner_path)
        if archive is not None:
            resolved = resolve_content(archive, archive_path, token, inner_path)
        else:
            with self._open(archive_path) as opened:
                resolved = resolve_content(opened, archive_path, token, inner_path)

        self.cache.content.put(key, resolved)
        return resolved
