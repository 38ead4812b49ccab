from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


from cont_srv.app import ServerSettings, create_app
from epub_builders import make_empty_epub, make_no_toc_epub, make_v2_epub, make_v3_epub


@pytest.fixture
def content_root(tmp_path: Path) -> Path:
    res_dir = tmp_path / "res_dir"
    make_v2_epub(res_dir / "v2.epub")
    make_v3_epub(res_dir / "nav.epub")
    make_no_toc_epub(res_dir / "v3.epub")
    make_empty_epub(res_dir / "empty.epub")
    (res_dir / "broken.epub").write_bytes(b"this is not a zip archive")
    (res_dir / "dummy.pdf").write_bytes(b"%PDF-1.4\n" + b"0" * 1000)
    (res_dir / "sub dir").mkdir()
    (tmp_path / "readme.txt").write_text("hello content server", encoding="utf-8")
    return tmp_path


@pytest.fixture
def settings(content_root: Path) -> ServerSettings:
    return ServerSettings(root_dir=content_root, gzip_min_size=32)


@pytest.fixture
def test_client(settings: ServerSettings) -> TestClient:
    return TestClient(create_app(settings))
