"""
Configuration helpers for the content server.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from .schemas import FileConfig

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the configuration is incomplete or malformed."""


def _optional_path(raw: Optional[str]) -> Optional[Path]:
    if not raw:
        return None
    return Path(raw).expanduser()


def _check_pairs(
    cert_path: Optional[Path],
    key_path: Optional[Path],
    user_name: Optional[str],
    password_hash: Optional[str],
) -> None:
    if (cert_path is None) != (key_path is None):
        logger.warning("Both cert file and key file are needed for HTTPS support!")
        raise ConfigError("Missing cert file or key file")
    if (user_name is None) != (password_hash is None):
        logger.warning("Both user name and password hash are needed for user authentication!")
        raise ConfigError("Missing user name or password hash")


@dataclass
class ServerSettings:
    """Settings object populated from the CLI, a YAML file, or environment variables."""

    root_dir: Path = field(default_factory=lambda: Path("."))
    address: str = "0.0.0.0"
    port: int = 1131
    cert_path: Optional[Path] = None
    key_path: Optional[Path] = None
    user_name: Optional[str] = None
    password_hash: Optional[str] = None
    workers: int = 2
    gzip_min_size: int = 512
    toc_cache_size: int = 10
    content_cache_size: int = 200

    @property
    def auth_enabled(self) -> bool:
        return self.user_name is not None and self.password_hash is not None

    @property
    def tls_enabled(self) -> bool:
        return self.cert_path is not None and self.key_path is not None

    @classmethod
    def load(cls) -> "ServerSettings":
        load_dotenv()

        cert_path = _optional_path(os.getenv("CONT_SRV_CERT_PATH"))
        key_path = _optional_path(os.getenv("CONT_SRV_KEY_PATH"))
        user_name = os.getenv("CONT_SRV_USER_NAME") or None
        password_hash = os.getenv("CONT_SRV_PASSWORD_HASH") or None
        _check_pairs(cert_path, key_path, user_name, password_hash)

        return cls(
            root_dir=Path(os.getenv("CONT_SRV_ROOT_DIR", ".")).expanduser(),
            address=os.getenv("CONT_SRV_ADDRESS", "0.0.0.0"),
            port=int(os.getenv("CONT_SRV_PORT", "1131")),
            cert_path=cert_path,
            key_path=key_path,
            user_name=user_name,
            password_hash=password_hash,
            workers=max(1, int(os.getenv("CONT_SRV_WORKERS", "2"))),
            gzip_min_size=int(os.getenv("CONT_SRV_GZIP_MIN_SIZE", "512")),
            toc_cache_size=max(1, int(os.getenv("CONT_SRV_TOC_CACHE_SIZE", "10"))),
            content_cache_size=max(1, int(os.getenv("CONT_SRV_CONTENT_CACHE_SIZE", "200"))),
        )

    @classmethod
    def from_file(cls, path: Path, base: Optional["ServerSettings"] = None) -> "ServerSettings":
        """Overlays the keys present in the YAML file at ``path`` onto ``base``."""
        path = Path(path)
        try:
            with path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        try:
            parsed = FileConfig.model_validate(raw)
        except ValidationError as exc:
            raise ConfigError(f"Invalid config file {path}: {exc}") from exc

        _check_pairs(parsed.cert_path, parsed.key_path, parsed.user_name, parsed.password_hash)
        overrides = parsed.model_dump(exclude_none=True)
        return replace(base or cls(), **overrides)
