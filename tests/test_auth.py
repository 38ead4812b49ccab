from __future__ import annotations

from pathlib import Path
from typing import List

import pytest
from fastapi.testclient import TestClient

from cont_srv.app import ServerSettings, create_app
from cont_srv.app.services import AuthCache, hash_password
from cont_srv.app.services import auth as auth_module

FAST_ROUNDS = 4


@pytest.fixture(scope="module")
def password_hash() -> str:
    return hash_password("s3cret", rounds=FAST_ROUNDS)


@pytest.fixture
def checkpw_calls(monkeypatch: pytest.MonkeyPatch) -> List[bytes]:
    calls: List[bytes] = []
    real_checkpw = auth_module.bcrypt.checkpw

    def counting_checkpw(password: bytes, hashed: bytes) -> bool:
        calls.append(password)
        return real_checkpw(password, hashed)

    monkeypatch.setattr(auth_module.bcrypt, "checkpw", counting_checkpw)
    return calls


def test_hash_password_produces_verifiable_bcrypt_hash(password_hash: str) -> None:
    assert password_hash.startswith("$2")
    assert auth_module.bcrypt.checkpw(b"s3cret", password_hash.encode("ascii"))


def test_verify_success_remembers_password(password_hash: str, checkpw_calls: List[bytes]) -> None:
    cache = AuthCache("reader", password_hash)
    assert not cache.has_cached_password

    assert cache.verify("reader", "s3cret")
    assert cache.has_cached_password
    assert cache.verify("reader", "s3cret")
    assert cache.verify("reader", "s3cret")

    assert checkpw_calls == [b"s3cret"]


def test_verify_failure_does_not_remember(password_hash: str, checkpw_calls: List[bytes]) -> None:
    cache = AuthCache("reader", password_hash)

    assert not cache.verify("reader", "wrong")
    assert not cache.has_cached_password
    assert not cache.verify("reader", "wrong")

    assert len(checkpw_calls) == 2


def test_wrong_password_after_success_skips_bcrypt(password_hash: str, checkpw_calls: List[bytes]) -> None:
    cache = AuthCache("reader", password_hash)
    assert cache.verify("reader", "s3cret")

    assert not cache.verify("reader", "wrong")
    assert checkpw_calls == [b"s3cret"]
    assert cache.verify("reader", "s3cret")


def test_non_ascii_password_is_remembered(checkpw_calls: List[bytes]) -> None:
    cache = AuthCache("reader", hash_password("pässwörd", rounds=FAST_ROUNDS))

    assert cache.verify("reader", "pässwörd")
    assert cache.verify("reader", "pässwörd")
    assert not cache.verify("reader", "passwort")
    assert len(checkpw_calls) == 1


def test_unknown_user_is_rejected_without_bcrypt(password_hash: str, checkpw_calls: List[bytes]) -> None:
    cache = AuthCache("reader", password_hash)

    assert not cache.verify("someone", "s3cret")
    assert not cache.verify("reader", None)
    assert checkpw_calls == []


def test_invalid_configured_hash_rejects_everyone() -> None:
    cache = AuthCache("reader", "not-a-bcrypt-hash")
    assert not cache.verify("reader", "s3cret")
    assert not cache.has_cached_password


@pytest.fixture
def auth_client(content_root: Path, password_hash: str) -> TestClient:
    settings = ServerSettings(
        root_dir=content_root,
        user_name="reader",
        password_hash=password_hash,
    )
    return TestClient(create_app(settings))


def test_missing_credentials_challenge(auth_client: TestClient) -> None:
    response = auth_client.get("/")
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == 'Basic realm="My-Content-Server"'


@pytest.mark.parametrize(
    "auth",
    [("reader", "wrong"), ("intruder", "s3cret")],
    ids=["wrong-password", "unknown-user"],
)
def test_bad_credentials_challenge(auth_client: TestClient, auth) -> None:
    response = auth_client.get("/res_dir/dummy.pdf", auth=auth)
    assert response.status_code == 401
    assert "www-authenticate" in response.headers


def test_every_route_is_protected(auth_client: TestClient) -> None:
    assert auth_client.get("/epub_toc/res_dir/v2.epub").status_code == 401
    assert auth_client.get("/epub_cont/cmVzX2Rpci92Mi5lcHVi/OEBPS/chap1.html").status_code == 401


def test_valid_credentials_verified_once(auth_client: TestClient, checkpw_calls: List[bytes]) -> None:
    for _ in range(3):
        response = auth_client.get("/res_dir/dummy.pdf", auth=("reader", "s3cret"))
        assert response.status_code == 200

    assert checkpw_calls == [b"s3cret"]
    assert auth_client.app.state.auth_cache.has_cached_password
