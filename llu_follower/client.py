# -*- coding: utf-8 -*-

import logging
import time
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import requests

from .errors import CommunicationError, RateLimitedError

# -----------------------------
# LibreLinkUp HTTP transport
# -----------------------------

LLU_VERSION = "4.16.0"

DEFAULT_HEADERS = {
    "User-Agent": f"LibreLinkUp/{LLU_VERSION} CFNetwork/711.2.23 Darwin/14.0.0",
    "Content-Type": "application/json",
    "Accept": "application/json",
    "version": LLU_VERSION,
    "product": "llu.ios",
    "Pragma": "no-cache",
    "Cache-Control": "no-cache",
}


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After is either delta-seconds or an HTTP-date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if dt is None:
        return None
    return max(0.0, dt.timestamp() - time.time())


class LibreLinkUpClient:
    """
    Thin wrapper around requests.Session: fixed headers, one timeout and TLS
    policy for every call, and status classification (429 vs. the rest).
    Returns the response text; decoding is left to the parser.
    """

    def __init__(
        self,
        timeout_s: int = 15,
        verify_tls: bool = True,
        connection_close: bool = False,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.timeout_s = timeout_s
        self.verify_tls = verify_tls
        self.connection_close = connection_close
        self.session = session if session is not None else requests.Session()
        self.log = logger or logging.getLogger("llu_follower")

    def headers(self, token: Optional[str] = None, account_id: Optional[str] = None) -> Dict[str, str]:
        h = dict(DEFAULT_HEADERS)
        if self.connection_close:
            h["Connection"] = "close"
        if token:
            h["Authorization"] = f"Bearer {token}"
        if account_id:
            h["Account-Id"] = account_id
        return h

    def post(self, url: str, payload: Any, token: Optional[str] = None) -> str:
        self.log.debug("[http] POST %s", url)
        try:
            r = self.session.post(
                url,
                headers=self.headers(token),
                json=payload,
                timeout=self.timeout_s,
                verify=self.verify_tls,
            )
        except requests.RequestException as ex:
            raise CommunicationError(f"POST {url} failed: {ex}") from ex
        return self._check(r)

    def get(self, url: str, token: str, account_id: str) -> str:
        self.log.debug("[http] GET %s", url)
        try:
            r = self.session.get(
                url,
                headers=self.headers(token, account_id),
                timeout=self.timeout_s,
                verify=self.verify_tls,
            )
        except requests.RequestException as ex:
            raise CommunicationError(f"GET {url} failed: {ex}") from ex
        return self._check(r)

    def _check(self, r) -> str:
        self.log.debug("[http] status=%s len=%s", r.status_code, len(r.content or b""))

        if r.status_code == 429:
            raw = r.headers.get("Retry-After")
            raise RateLimitedError(parse_retry_after(raw), f"HTTP 429 - Retry-After: {raw}")

        if not 200 <= r.status_code < 300:
            raise CommunicationError(f"HTTP {r.status_code} - {r.reason or ''}".rstrip(" -"), r.status_code)

        return r.text

    def close(self) -> None:
        self.session.close()
