"""Pydantic schema for the YAML configuration file."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FileConfig(BaseModel):
    """Every key is optional; unknown keys are rejected."""

    address: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    root_dir: Optional[Path] = None
    cert_path: Optional[Path] = None
    key_path: Optional[Path] = None
    user_name: Optional[str] = None
    password_hash: Optional[str] = None
    workers: Optional[int] = Field(default=None, ge=1)
    gzip_min_size: Optional[int] = Field(default=None, ge=0)
    toc_cache_size: Optional[int] = Field(default=None, ge=1)
    content_cache_size: Optional[int] = Field(default=None, ge=1)
    model_config = ConfigDict(extra="forbid")
