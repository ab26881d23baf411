# -*- coding: utf-8 -*-

import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from .client import LibreLinkUpClient
from .errors import CommunicationError, ConfigurationError, ParseError, RedirectUnresolved
from .parser import (
    LOGIN_STATUS_TOU_REQUIRED,
    LoginTicket,
    RedirectInstruction,
    parse_connection_list,
    parse_login,
)

LLU_SERVER_URL = "https://api.libreview.io"
LLU_SERVER_URL_PATTERN = "https://api-{region}.libreview.io"

AUTH_PATH = "/auth/login"
TOU_PATH = "/auth/continue/tou"
CONNECTIONS_PATH = "/llu/connections"
GRAPH_TEMPLATE = "/llu/connections/{connection_id}/graph"


def sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def resolve_regional_url(region: str) -> str:
    """
    Map a redirect region ("eu", "de", "ap", ...) onto its API host.
    Only 2-4 character codes are accepted.
    """
    r = (region or "").strip()
    if not 2 <= len(r) <= 4:
        raise RedirectUnresolved(f"invalid redirect region {region!r}")
    return LLU_SERVER_URL_PATTERN.format(region=r.lower())


@dataclass
class Session:
    auth_token: str
    account_id_hash: str
    connection_id: Optional[str] = None

    @classmethod
    def from_ticket(cls, ticket: LoginTicket) -> "Session":
        # the raw account id is not kept, only its digest
        return cls(auth_token=ticket.token, account_id_hash=sha256_hex(ticket.raw_account_id))


class SessionManager:
    """
    Owns the auth token, account hash, connection id and the resolved
    regional base URL.

    Not thread safe: exactly one poll cycle may use it at a time.
    """

    def __init__(
        self,
        client: LibreLinkUpClient,
        base_url: str = LLU_SERVER_URL,
        tou_path: str = TOU_PATH,
        logger: Optional[logging.Logger] = None,
    ):
        self.client = client
        self.default_base_url = base_url.rstrip("/")
        self.base_url = self.default_base_url
        self.tou_path = tou_path
        self.session: Optional[Session] = None
        self.log = logger or logging.getLogger("llu_follower")

    @property
    def has_token(self) -> bool:
        return self.session is not None

    @property
    def has_connection(self) -> bool:
        return self.session is not None and bool(self.session.connection_id)

    def url(self, path: str) -> str:
        return self.base_url + path

    def graph_url(self, connection_id: str) -> str:
        return self.url(GRAPH_TEMPLATE.format(connection_id=connection_id))

    # -----------------------------
    # Authentication
    # -----------------------------

    def ensure_authenticated(self, username: Optional[str], password: Optional[str]) -> Session:
        """
        Login unless a token is already held.

        A redirect answer like
          {"status":0,"data":{"redirect":true,"region":"eu"}}
        switches the base URL to https://api-<region>.libreview.io and the
        login is retried exactly once against it. A second redirect fails.
        """
        if self.session is not None:
            return self.session

        username = (username or "").strip()
        password = (password or "").strip()
        if not username:
            raise ConfigurationError("Invalid Username")
        if not password:
            raise ConfigurationError("Invalid password")

        payload = {"email": username, "password": password}

        for attempt in (1, 2):
            self.log.info("[auth] login against %s (attempt %d)", self.base_url, attempt)
            result = parse_login(self.client.post(self.url(AUTH_PATH), payload))

            if isinstance(result, RedirectInstruction):
                if attempt > 1:
                    raise RedirectUnresolved(f"repeated redirect (region={result.region!r})")
                new_base = resolve_regional_url(result.region)
                self.log.info("[auth] redirect requested: region=%s -> api_base=%s", result.region, new_base)
                self.base_url = new_base
                continue

            ticket = self._accept_terms_if_needed(result)
            self.session = Session.from_ticket(ticket)
            self.log.debug("[auth] logged in, token of %d chars", len(self.session.auth_token))
            self.log.debug("[auth] account_id     : %s", self.session.account_id_hash)
            return self.session

        raise RedirectUnresolved("login failed after redirect retry")

    def _accept_terms_if_needed(self, ticket: LoginTicket) -> LoginTicket:
        if ticket.status != LOGIN_STATUS_TOU_REQUIRED or not self.tou_path:
            return ticket

        self.log.info("[auth] terms of use must be accepted -> %s", self.tou_path)
        try:
            accepted = parse_login(self.client.post(self.url(self.tou_path), None, token=ticket.token))
        except (ParseError, CommunicationError) as ex:
            # a 429 is not swallowed here
            self.log.warning("[auth] terms of use step failed, keeping login ticket: %s", ex)
            return ticket

        if isinstance(accepted, LoginTicket):
            return accepted
        self.log.warning("[auth] unexpected redirect while accepting terms of use")
        return ticket

    # -----------------------------
    # Connection
    # -----------------------------

    def ensure_connection(self) -> str:
        if self.session is None:
            raise RuntimeError("ensure_connection() without session")
        if self.session.connection_id:
            return self.session.connection_id

        self.log.info("[session] requesting connection list")
        body = self.client.get(
            self.url(CONNECTIONS_PATH),
            token=self.session.auth_token,
            account_id=self.session.account_id_hash,
        )
        self.session.connection_id = parse_connection_list(body)
        self.log.debug("[session] connection id: %s", self.session.connection_id)
        return self.session.connection_id

    def fetch_graph(self) -> str:
        if self.session is None or not self.session.connection_id:
            raise RuntimeError("fetch_graph() without connection")
        return self.client.get(
            self.graph_url(self.session.connection_id),
            token=self.session.auth_token,
            account_id=self.session.account_id_hash,
        )

    # -----------------------------
    # Reset
    # -----------------------------

    def invalidate(self) -> None:
        """Drop token and connection id. The regional base URL stays."""
        if self.session is not None:
            self.log.info("[session] reset (base url kept: %s)", self.base_url)
        self.session = None

    def forget_region(self) -> None:
        self.base_url = self.default_base_url
