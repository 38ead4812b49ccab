"""Opaque, reversible encoding of archive paths into a single URL segment."""

from __future__ import annotations

import base64
import binascii
import re

_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]*$")


class PathDecodeError(ValueError):
    """Raised when a token is not a valid encoded archive path."""


def encode_path(path: str) -> str:
    """Encodes ``path`` as unpadded URL-safe base64 (never contains ``/``)."""
    raw = base64.urlsafe_b64encode(path.encode("utf-8"))
    return raw.rstrip(b"=").decode("ascii")


def decode_path(token: str) -> str:
    if not _TOKEN_RE.match(token):
        raise PathDecodeError(f"Invalid file path [{token}]: unexpected character")
    # A single leftover character can never be produced by the encoder.
    if len(token) % 4 == 1:
        raise PathDecodeError(f"Invalid file path [{token}]: invalid length")
    padded = token + "=" * (-len(token) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as exc:
        raise PathDecodeError(f"Invalid file path [{token}]: base64 decoding failed: {exc}") from exc
    # Non-zero trailing bits decode fine but are not what the encoder emits.
    if base64.urlsafe_b64encode(raw).rstrip(b"=") != token.encode("ascii"):
        raise PathDecodeError(f"Invalid file path [{token}]: non-canonical encoding")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise PathDecodeError(f"Invalid file path [{token}]: not UTF-8") from exc
