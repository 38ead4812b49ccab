"""Application factory for the content server FastAPI service."""

from .config import ServerSettings
from .main import create_app

__all__ = ["ServerSettings", "create_app"]
