"""Tests for password hashing, access tokens and signed login links."""

from __future__ import annotations

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import HTTPException

from src.hrms.core.exceptions import InvalidLoginLinkError
from src.hrms.core.security import (
    create_access_token,
    create_login_link,
    generate_password,
    hash_password,
    verify_login_token,
    verify_password,
    verify_token,
)


def _signature(url: str) -> str:
    return parse_qs(urlparse(url).query)["signature"][0]


# ── Passwords ───────────────────────────────────────────────────────────────


def test_hash_and_verify_password():
    hashed = hash_password("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong", hashed)


def test_generate_password():
    password = generate_password()
    assert len(password) == 16
    assert password.isalnum()
    assert generate_password() != password


# ── Access Tokens ───────────────────────────────────────────────────────────


def test_access_token_round_trip():
    token = create_access_token({"sub": "user-1", "tenant_id": "tenant-1", "tenant_slug": "acme"})
    payload = verify_token(token)
    assert payload["sub"] == "user-1"
    assert payload["tenant_id"] == "tenant-1"
    assert payload["type"] == "access"


def test_expired_access_token():
    token = create_access_token({"sub": "user-1"}, expires_delta=timedelta(seconds=-1))
    with pytest.raises(HTTPException) as exc_info:
        verify_token(token)
    assert exc_info.value.status_code == 401


def test_login_link_is_not_an_access_token():
    url = create_login_link("user-1", "tenant-1", "acme.hrms.test")
    with pytest.raises(HTTPException):
        verify_token(_signature(url))


# ── Login Links ─────────────────────────────────────────────────────────────


def test_login_link_format():
    url = urlparse(create_login_link("user-1", "tenant-1", "acme.hrms.test"))
    assert url.scheme == "https"
    assert url.netloc == "acme.hrms.test"
    assert url.path == "/auth/login/user-1"


def test_verify_login_token():
    url = create_login_link("user-1", "tenant-1", "acme.hrms.test", scheme="http")
    payload = verify_login_token(_signature(url), "user-1")
    assert payload["tenant_id"] == "tenant-1"


def test_login_link_for_other_user_is_rejected():
    url = create_login_link("user-1", "tenant-1", "acme.hrms.test")
    with pytest.raises(InvalidLoginLinkError) as exc_info:
        verify_login_token(_signature(url), "user-2")
    assert exc_info.value.status_code == 403


def test_expired_login_link_is_rejected():
    url = create_login_link("user-1", "tenant-1", "acme.hrms.test", expires_delta=timedelta(minutes=-1))
    with pytest.raises(InvalidLoginLinkError):
        verify_login_token(_signature(url), "user-1")


def test_access_token_is_not_a_login_link():
    token = create_access_token({"sub": "user-1", "tenant_id": "tenant-1"})
    with pytest.raises(InvalidLoginLinkError):
        verify_login_token(token, "user-1")
