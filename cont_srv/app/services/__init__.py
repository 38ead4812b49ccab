"""Service layer exports for the FastAPI application."""

from .auth import AuthCache, hash_password
from .cache import EpubCache, LRUCache, ResolvedContent
from .codec import PathDecodeError, decode_path, encode_path
from .epub import (
    ArchiveOpenError,
    EpubArchive,
    NavPoint,
    Resource,
    ResourceNotFound,
    open_archive,
)
from .library import EpubLibrary
from .toc import NoContent, render_toc

__all__ = [
    "ArchiveOpenError",
    "AuthCache",
    "EpubArchive",
    "EpubCache",
    "EpubLibrary",
    "LRUCache",
    "NavPoint",
    "NoContent",
    "PathDecodeError",
    "Resource",
    "ResolvedContent",
    "ResourceNotFound",
    "decode_path",
    "encode_path",
    "hash_password",
    "open_archive",
    "render_toc",
]
