from __future__ import annotations

import hashlib

import pytest
import requests

from llu_follower.client import LibreLinkUpClient
from llu_follower.errors import ConfigurationError, NoConnectionError, ParseError, RateLimitedError, RedirectUnresolved
from llu_follower.session import LLU_SERVER_URL, SessionManager, resolve_regional_url, sha256_hex

from .conftest import (
    PATIENT_ID,
    RAW_ACCOUNT_ID,
    TOKEN,
    FakeHttp,
    FakeResponse,
    connections_body,
    login_body,
    ok,
    redirect_body,
)


@pytest.fixture
def manager(client: LibreLinkUpClient) -> SessionManager:
    return SessionManager(client)


def test_sha256_hex() -> None:
    assert sha256_hex("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_login_stores_token_and_hash_only(manager: SessionManager, http: FakeHttp) -> None:
    http.queue(ok(login_body()))

    session = manager.ensure_authenticated("me@example.com", "secret")

    assert session.auth_token == TOKEN
    assert session.account_id_hash == hashlib.sha256(RAW_ACCOUNT_ID.encode("utf-8")).hexdigest()
    assert session.account_id_hash == session.account_id_hash.lower()
    assert RAW_ACCOUNT_ID not in vars(session).values()
    assert session.connection_id is None

    call = http.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == LLU_SERVER_URL + "/auth/login"
    assert call["json"] == {"email": "me@example.com", "password": "secret"}
    assert call["headers"]["Accept"] == "application/json"
    assert "Authorization" not in call["headers"]


def test_login_is_skipped_with_existing_token(manager: SessionManager, http: FakeHttp) -> None:
    http.queue(ok(login_body()))
    first = manager.ensure_authenticated("me@example.com", "secret")
    assert manager.ensure_authenticated("me@example.com", "secret") is first
    assert len(http.calls) == 1


@pytest.mark.parametrize("username, password", [("", "secret"), ("me@example.com", ""), ("  ", "x"), (None, None)])
def test_blank_credentials(manager: SessionManager, http: FakeHttp, username, password) -> None:
    with pytest.raises(ConfigurationError):
        manager.ensure_authenticated(username, password)
    assert http.calls == []


def test_redirect_retries_once_against_region(manager: SessionManager, http: FakeHttp) -> None:
    http.queue(ok(redirect_body("eu")), ok(login_body()))

    session = manager.ensure_authenticated("me@example.com", "secret")

    assert session.auth_token == TOKEN
    assert manager.base_url == "https://api-eu.libreview.io"
    assert [c["url"] for c in http.calls] == [
        "https://api.libreview.io/auth/login",
        "https://api-eu.libreview.io/auth/login",
    ]


def test_second_redirect_fails(manager: SessionManager, http: FakeHttp) -> None:
    http.queue(ok(redirect_body("eu")), ok(redirect_body("us")))

    with pytest.raises(RedirectUnresolved, match="repeated redirect"):
        manager.ensure_authenticated("me@example.com", "secret")

    assert len(http.calls) == 2
    assert manager.session is None


@pytest.mark.parametrize("region", ["", "e", "abcde", "europe"])
def test_invalid_region_fails(manager: SessionManager, http: FakeHttp, region: str) -> None:
    http.queue(ok(redirect_body(region)))
    with pytest.raises(RedirectUnresolved):
        manager.ensure_authenticated("me@example.com", "secret")
    assert len(http.calls) == 1
    assert manager.base_url == LLU_SERVER_URL


@pytest.mark.parametrize("region", ["eu", "us", "ap", "ae", "eu2", "abcd"])
def test_resolve_regional_url(region: str) -> None:
    assert resolve_regional_url(region) == f"https://api-{region}.libreview.io"


@pytest.mark.parametrize("region", ["", "x", "abcde"])
def test_resolve_regional_url_rejects_length(region: str) -> None:
    with pytest.raises(RedirectUnresolved):
        resolve_regional_url(region)


def test_login_parse_failure(manager: SessionManager, http: FakeHttp) -> None:
    http.queue(ok({"status": 2, "error": {"message": "notAuthenticated"}}))
    with pytest.raises(ParseError):
        manager.ensure_authenticated("me@example.com", "wrong")
    assert manager.session is None


def test_terms_of_use_are_accepted(manager: SessionManager, http: FakeHttp) -> None:
    http.queue(ok(login_body(token="step-token", status=4)), ok(login_body(token="full-token")))

    session = manager.ensure_authenticated("me@example.com", "secret")

    assert session.auth_token == "full-token"
    tou = http.calls[1]
    assert tou["url"] == LLU_SERVER_URL + "/auth/continue/tou"
    assert tou["headers"]["Authorization"] == "Bearer step-token"


def test_terms_of_use_unusable_response_keeps_ticket(manager: SessionManager, http: FakeHttp) -> None:
    http.queue(ok(login_body(token="step-token", status=4)), ok({"status": 0}))
    assert manager.ensure_authenticated("me@example.com", "secret").auth_token == "step-token"


def test_terms_of_use_disabled(client: LibreLinkUpClient, http: FakeHttp) -> None:
    manager = SessionManager(client, tou_path="")
    http.queue(ok(login_body(token="step-token", status=4)))
    assert manager.ensure_authenticated("me@example.com", "secret").auth_token == "step-token"
    assert len(http.calls) == 1


def test_ensure_connection(manager: SessionManager, http: FakeHttp) -> None:
    http.queue(ok(login_body()), ok(connections_body()))
    session = manager.ensure_authenticated("me@example.com", "secret")

    assert manager.ensure_connection() == PATIENT_ID
    assert manager.ensure_connection() == PATIENT_ID
    assert session.connection_id == PATIENT_ID
    assert len(http.calls) == 2

    call = http.calls[1]
    assert call["method"] == "GET"
    assert call["url"] == LLU_SERVER_URL + "/llu/connections"
    assert call["headers"]["Authorization"] == f"Bearer {TOKEN}"
    assert call["headers"]["Account-Id"] == session.account_id_hash


def test_ensure_connection_not_paired(manager: SessionManager, http: FakeHttp) -> None:
    http.queue(ok(login_body()), ok({"status": 0, "data": []}))
    manager.ensure_authenticated("me@example.com", "secret")
    with pytest.raises(NoConnectionError):
        manager.ensure_connection()
    assert manager.session.connection_id is None


def test_graph_url_uses_connection(manager: SessionManager, http: FakeHttp) -> None:
    http.queue(ok(redirect_body("de")), ok(login_body()), ok(connections_body()), ok({"data": {}}))
    manager.ensure_authenticated("me@example.com", "secret")
    manager.ensure_connection()
    manager.fetch_graph()
    assert http.calls[-1]["url"] == f"https://api-de.libreview.io/llu/connections/{PATIENT_ID}/graph"


def test_invalidate_keeps_region(manager: SessionManager, http: FakeHttp) -> None:
    http.queue(ok(redirect_body("eu")), ok(login_body()), ok(connections_body()))
    manager.ensure_authenticated("me@example.com", "secret")
    manager.ensure_connection()

    manager.invalidate()

    assert manager.session is None
    assert not manager.has_token
    assert not manager.has_connection
    assert manager.base_url == "https://api-eu.libreview.io"

    manager.forget_region()
    assert manager.base_url == LLU_SERVER_URL


@pytest.mark.parametrize(
    "tou_response",
    [FakeResponse(404, "", reason="Not Found"), FakeResponse(500), requests.ConnectionError("reset by peer")],
)
def test_terms_of_use_failure_keeps_ticket(manager: SessionManager, http: FakeHttp, tou_response) -> None:
    http.queue(ok(login_body(token="step-token", status=4)), tou_response)

    session = manager.ensure_authenticated("me@example.com", "secret")

    assert session.auth_token == "step-token"
    assert manager.session is session


def test_terms_of_use_rate_limit_propagates(manager: SessionManager, http: FakeHttp) -> None:
    http.queue(ok(login_body(token="step-token", status=4)), FakeResponse(429, "", headers={"Retry-After": "30"}))

    with pytest.raises(RateLimitedError):
        manager.ensure_authenticated("me@example.com", "secret")
    assert manager.session is None
