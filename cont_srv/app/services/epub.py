"""Read-only access to EPUB packages straight out of the zip archive.

``open_archive`` validates the container, package document, manifest and
spine, and normalises the table of contents of both EPUB 2 (NCX) and EPUB 3
(navigation document) books into one tree of :class:`NavPoint` so that no
caller has to care which format a book uses.
"""

from __future__ import annotations

import logging
import posixpath
import zipfile
import zlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import unquote

from lxml import etree

logger = logging.getLogger(__name__)

CONTAINER_PATH = "META-INF/container.xml"
CONTAINER_NS = "urn:oasis:names:tc:opendocument:xmlns:container"
OPS_NS = "http://www.idpf.org/2007/ops"
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"

# Raised by ZipFile.read on damaged members.
_MEMBER_READ_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, OSError, NotImplementedError)


class ArchiveOpenError(Exception):
    """Raised when a file cannot be read as a well-formed EPUB package."""

    def __init__(self, path: str, cause: object) -> None:
        self.path = path
        self.cause = cause
        super().__init__(f"Reading/Parsing epub [{path}] failed: {cause}")


class ResourceNotFound(LookupError):
    """Raised when an inner path does not name a resource of the archive."""

    def __init__(self, inner_path: str) -> None:
        self.inner_path = inner_path
        super().__init__(f"Resource [{inner_path}] not found")


@dataclass(frozen=True)
class NavPoint:
    label: str
    target: str
    children: Tuple["NavPoint", ...] = ()


@dataclass(frozen=True)
class Resource:
    id: str
    inner_path: str
    mime: Optional[str] = None


@dataclass(frozen=True)
class _Package:
    """Parsed package document, handed to the TOC sources."""

    opf_path: str
    resources: Mapping[str, Resource]
    properties: Mapping[str, frozenset]
    spine: Tuple[str, ...]
    spine_toc_id: Optional[str]


# XML helpers ----------------------------------------------------------------


def _local_name(tag: object) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def _children(node: etree._Element, local_name: str) -> List[etree._Element]:
    return [child for child in node if _local_name(child.tag) == local_name]


def _first_child(node: etree._Element, local_name: str) -> Optional[etree._Element]:
    for child in node:
        if _local_name(child.tag) == local_name:
            return child
    return None


def _parse_xml(raw: bytes, *, recover: bool) -> etree._Element:
    parser = etree.XMLParser(resolve_entities=False, no_network=True, recover=recover)
    root = etree.fromstring(raw, parser=parser)
    if root is None:
        raise ValueError("empty XML document")
    return root


def _normalize_member(path: str) -> str:
    normalized = posixpath.normpath(path.replace("\\", "/")).lstrip("/")
    return "" if normalized == "." else normalized


def _resolve_href(base_member: str, href: str) -> str:
    """Resolves ``href`` (keeping any fragment) relative to ``base_member``."""
    raw, _, fragment = href.strip().partition("#")
    base_dir = PurePosixPath(base_member).parent.as_posix()
    if raw:
        resolved = _normalize_member(posixpath.join(base_dir, unquote(raw)))
    else:
        resolved = _normalize_member(base_member)
    return f"{resolved}#{fragment}" if fragment else resolved


def _text(node: etree._Element) -> str:
    return " ".join("".join(node.itertext()).split())


# Table of contents sources ----------------------------------------------------


class TocSource(ABC):
    """Produces the navigation forest from one kind of TOC document."""

    @abstractmethod
    def locate(self, package: _Package) -> Optional[Resource]:
        """Returns the manifest entry holding this kind of TOC, if any."""

    @abstractmethod
    def parse(self, root: etree._Element, document_path: str) -> Tuple[NavPoint, ...]:
        """Builds the forest from the parsed TOC document."""


class NcxTocSource(TocSource):
    """EPUB 2 ``toc.ncx`` navigation map."""

    def locate(self, package: _Package) -> Optional[Resource]:
        if package.spine_toc_id and package.spine_toc_id in package.resources:
            return package.resources[package.spine_toc_id]
        for resource in package.resources.values():
            if resource.mime == NCX_MEDIA_TYPE:
                return resource
        return None

    def parse(self, root: etree._Element, document_path: str) -> Tuple[NavPoint, ...]:
        nav_map = _first_child(root, "navMap")
        if nav_map is None:
            return ()
        return self._points(nav_map, document_path)

    def _points(self, parent: etree._Element, document_path: str) -> Tuple[NavPoint, ...]:
        points = []
        for node in _children(parent, "navPoint"):
            label = ""
            nav_label = _first_child(node, "navLabel")
            if nav_label is not None:
                text_node = _first_child(nav_label, "text")
                label = _text(text_node if text_node is not None else nav_label)
            content = _first_child(node, "content")
            src = content.get("src", "") if content is not None else ""
            points.append(
                NavPoint(
                    label=label,
                    target=_resolve_href(document_path, src) if src else "",
                    children=self._points(node, document_path),
                )
            )
        return tuple(points)


class NavDocumentTocSource(TocSource):
    """EPUB 3 XHTML navigation document (``<nav epub:type="toc">``)."""

    def locate(self, package: _Package) -> Optional[Resource]:
        for resource_id, properties in package.properties.items():
            if "nav" in properties:
                return package.resources[resource_id]
        return None

    def parse(self, root: etree._Element, document_path: str) -> Tuple[NavPoint, ...]:
        navs = [node for node in root.iter() if _local_name(node.tag) == "nav"]
        if not navs:
            return ()
        toc_nav = navs[0]
        for nav in navs:
            types = (nav.get(f"{{{OPS_NS}}}type") or nav.get("type") or "").split()
            if "toc" in types:
                toc_nav = nav
                break
        ol = next((node for node in toc_nav.iter() if _local_name(node.tag) == "ol"), None)
        if ol is None:
            return ()
        return self._items(ol, document_path)

    def _items(self, ol: etree._Element, document_path: str) -> Tuple[NavPoint, ...]:
        points = []
        for li in _children(ol, "li"):
            nested = _first_child(li, "ol")
            children = self._items(nested, document_path) if nested is not None else ()
            heading = _first_child(li, "a")
            if heading is None:
                heading = _first_child(li, "span")
            if heading is None:
                continue
            href = heading.get("href")
            if href is None:
                # Unlinked headings borrow the first link beneath them.
                link = next(
                    (node for node in li.iter() if _local_name(node.tag) == "a" and node.get("href")),
                    None,
                )
                if link is None:
                    continue
                href = link.get("href")
            points.append(
                NavPoint(
                    label=_text(heading),
                    target=_resolve_href(document_path, href),
                    children=children,
                )
            )
        return tuple(points)


TOC_SOURCES: Sequence[TocSource] = (NcxTocSource(), NavDocumentTocSource())


# Archive handle ---------------------------------------------------------------


class EpubArchive:
    """Immutable view of one opened EPUB: resources, spine and TOC forest."""

    def __init__(
        self,
        path: str,
        zf: zipfile.ZipFile,
        resources: Mapping[str, Resource],
        spine: Tuple[str, ...],
        toc: Tuple[NavPoint, ...],
    ) -> None:
        self.path = path
        self._zf = zf
        self.resources: Mapping[str, Resource] = MappingProxyType(dict(resources))
        self.spine = spine
        self.toc = toc
        self._by_path: Dict[str, Resource] = {}
        for resource in resources.values():
            self._by_path.setdefault(resource.inner_path, resource)

    def __enter__(self) -> "EpubArchive":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._zf.close()

    def lookup(self, inner_path: str) -> Tuple[Resource, bytes]:
        resource = self._by_path.get(inner_path)
        if resource is None:
            raise ResourceNotFound(inner_path)
        try:
            return resource, self._zf.read(resource.inner_path)
        except KeyError:
            raise ResourceNotFound(inner_path) from None
        except _MEMBER_READ_ERRORS as exc:
            raise ArchiveOpenError(self.path, exc) from exc

    def spine_index(self, resource_id: str) -> Optional[int]:
        try:
            return self.spine.index(resource_id)
        except ValueError:
            return None

    def spine_resource(self, index: int) -> Resource:
        return self.resources[self.spine[index]]

    def first_spine_resource(self) -> Optional[Resource]:
        if not self.spine:
            return None
        return self.spine_resource(0)


def _read_member(zf: zipfile.ZipFile, member: str, what: str) -> bytes:
    try:
        return zf.read(member)
    except KeyError:
        raise LookupError(f"missing {what} [{member}]") from None


def _opf_path(zf: zipfile.ZipFile) -> str:
    root = _parse_xml(_read_member(zf, CONTAINER_PATH, "container descriptor"), recover=False)
    for node in root.iter(f"{{{CONTAINER_NS}}}rootfile", "rootfile"):
        full_path = _normalize_member(node.get("full-path") or "")
        if full_path:
            return full_path
    raise LookupError("no rootfile in container descriptor")


def _read_package(zf: zipfile.ZipFile) -> _Package:
    opf_path = _opf_path(zf)
    root = _parse_xml(_read_member(zf, opf_path, "package document"), recover=False)

    manifest = _first_child(root, "manifest")
    if manifest is None:
        raise LookupError(f"missing manifest in [{opf_path}]")
    resources: Dict[str, Resource] = {}
    properties: Dict[str, frozenset] = {}
    for item in _children(manifest, "item"):
        item_id = (item.get("id") or "").strip()
        href = item.get("href") or ""
        if not item_id or not href:
            continue
        resources[item_id] = Resource(
            id=item_id,
            inner_path=_resolve_href(opf_path, href).partition("#")[0],
            mime=(item.get("media-type") or "").strip() or None,
        )
        properties[item_id] = frozenset((item.get("properties") or "").split())

    spine_ids: List[str] = []
    spine_toc_id: Optional[str] = None
    spine = _first_child(root, "spine")
    if spine is not None:
        spine_toc_id = spine.get("toc")
        for itemref in _children(spine, "itemref"):
            idref = (itemref.get("idref") or "").strip()
            if idref not in resources:
                raise LookupError(f"spine references unknown manifest item [{idref}]")
            spine_ids.append(idref)

    return _Package(
        opf_path=opf_path,
        resources=resources,
        properties=properties,
        spine=tuple(spine_ids),
        spine_toc_id=spine_toc_id,
    )


def _load_toc(zf: zipfile.ZipFile, package: _Package) -> Tuple[NavPoint, ...]:
    for source in TOC_SOURCES:
        document = source.locate(package)
        if document is None:
            continue
        try:
            raw = zf.read(document.inner_path)
        except KeyError:
            logger.warning("TOC document %s listed but missing from archive", document.inner_path)
            continue
        forest = source.parse(_parse_xml(raw, recover=True), document.inner_path)
        if forest:
            return forest
    return ()


def open_archive(path: Path | str) -> EpubArchive:
    """Opens and validates the EPUB at ``path``.

    Raises:
        ArchiveOpenError: the file is missing, not a zip, or not a valid package.
    """
    display = str(path)
    try:
        zf = zipfile.ZipFile(path, "r")
    except (OSError, zipfile.BadZipFile) as exc:
        raise ArchiveOpenError(display, exc) from exc
    try:
        package = _read_package(zf)
        toc = _load_toc(zf, package)
    except (LookupError, etree.XMLSyntaxError, ValueError) + _MEMBER_READ_ERRORS as exc:
        zf.close()
        raise ArchiveOpenError(display, exc) from exc
    return EpubArchive(display, zf, package.resources, package.spine, toc)
