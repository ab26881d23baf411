# -*- coding: utf-8 -*-

from typing import Optional


class FollowerError(Exception):
    """Base class for everything a poll cycle can fail with."""


class ConfigurationError(FollowerError):
    """Missing or blank credentials. No request is made."""


class ParseError(FollowerError):
    """The cloud answered, but not in the shape we expect."""

    def __init__(self, stage: str, message: str, body: str = ""):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.body = body[:300]


class NoConnectionError(ParseError):
    """Connection list is empty: the account follows nobody yet."""

    def __init__(self, body: str = ""):
        super().__init__("connections", "no connection available (not paired?)", body)


class RedirectUnresolved(FollowerError):
    pass


class CommunicationError(FollowerError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(FollowerError):
    """HTTP 429. The caller must wait at least ``retry_after`` seconds."""

    def __init__(self, retry_after: Optional[float], message: str = ""):
        super().__init__(message or f"HTTP 429 - Retry-After: {retry_after}")
        self.retry_after = retry_after
