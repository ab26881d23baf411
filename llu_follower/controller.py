# -*- coding: utf-8 -*-

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .errors import (
    CommunicationError,
    ConfigurationError,
    FollowerError,
    ParseError,
    RateLimitedError,
    RedirectUnresolved,
)
from .normalizer import Reading, ReadingNormalizer
from .parser import parse_measurement
from .session import SessionManager

STATUS_OK = "ok"
STATUS_FAILED = "failed"


class CycleState(Enum):
    NEED_AUTH = "need_auth"
    NEED_CONNECTION = "need_connection"
    FETCHING = "fetching"
    DONE = "done"
    FAILED = "failed"


class OutcomeKind(Enum):
    READING = "reading"
    NO_NEW_DATA = "no_new_data"
    RECOVERABLE = "recoverable_failure"
    RATE_LIMITED = "rate_limited"
    FATAL = "fatal_failure"


@dataclass(frozen=True)
class PollOutcome:
    kind: OutcomeKind
    reading: Optional[Reading] = None
    retry_after: Optional[float] = None
    error: str = ""

    @classmethod
    def with_reading(cls, reading: Reading) -> "PollOutcome":
        return cls(OutcomeKind.READING, reading=reading)

    @classmethod
    def no_new_data(cls) -> "PollOutcome":
        return cls(OutcomeKind.NO_NEW_DATA)

    @classmethod
    def recoverable(cls, error: str = "") -> "PollOutcome":
        return cls(OutcomeKind.RECOVERABLE, error=error)

    @classmethod
    def rate_limited(cls, retry_after: Optional[float], error: str = "") -> "PollOutcome":
        return cls(OutcomeKind.RATE_LIMITED, retry_after=retry_after, error=error)

    @classmethod
    def fatal(cls, error: str) -> "PollOutcome":
        return cls(OutcomeKind.FATAL, error=error)

    @property
    def ok(self) -> bool:
        return self.kind in (OutcomeKind.READING, OutcomeKind.NO_NEW_DATA)

    @property
    def status(self) -> str:
        if self.ok:
            return STATUS_OK
        if not self.error:
            return STATUS_FAILED
        return f"error: {self.error}"


class PollCycleController:
    """
    One poll attempt: NEED_AUTH -> NEED_CONNECTION -> FETCHING -> DONE,
    any step may end in FAILED.

    Every failure except rate limiting wipes the session so the next cycle
    starts with a fresh login. A 429 keeps the session; the caller has to
    back off for ``retry_after`` seconds.

    Must not be called concurrently.
    """

    def __init__(
        self,
        sessions: SessionManager,
        normalizer: ReadingNormalizer,
        username: Optional[str],
        password: Optional[str],
        notify: Optional[Callable[[str], None]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.sessions = sessions
        self.normalizer = normalizer
        self.username = username
        self.password = password
        self.log = logger or logging.getLogger("llu_follower")
        self.notify = notify or (lambda msg: self.log.info("[poll] %s", msg))
        self.state = CycleState.DONE

    def poll(self) -> PollOutcome:
        outcome = self._run()
        self.notify(outcome.status)
        return outcome

    def _run(self) -> PollOutcome:
        self.state = CycleState.NEED_AUTH
        try:
            if not self.sessions.has_token:
                self.notify("authenticating")
                self.sessions.ensure_authenticated(self.username, self.password)
            self.state = CycleState.NEED_CONNECTION

            if not self.sessions.has_connection:
                self.notify("requesting session")
                self.sessions.ensure_connection()
            self.state = CycleState.FETCHING

            self.notify("requesting data")
            raw = parse_measurement(self.sessions.fetch_graph())
            reading = self.normalizer.normalize(raw)
            self.state = CycleState.DONE

        except RateLimitedError as ex:
            self.log.warning("[poll] rate limited in %s, retry after %s s", self.state.value, ex.retry_after)
            self.state = CycleState.FAILED
            return PollOutcome.rate_limited(ex.retry_after, str(ex))

        except ConfigurationError as ex:
            self.log.error("[poll] configuration error: %s", ex)
            self.state = CycleState.FAILED
            return PollOutcome.fatal(str(ex))

        except FollowerError as ex:
            return self._fail(ex)

        if reading is None:
            return PollOutcome.no_new_data()
        return PollOutcome.with_reading(reading)

    def _fail(self, ex: FollowerError) -> PollOutcome:
        failed_in = self.state.value
        self.state = CycleState.FAILED

        if isinstance(ex, ParseError):
            self.log.warning("[poll] unexpected %s response in %s: %s body=%s", ex.stage, failed_in, ex, ex.body)
        elif isinstance(ex, RedirectUnresolved):
            self.log.error("[poll] redirect not resolved in %s: %s", failed_in, ex)
        elif isinstance(ex, CommunicationError):
            self.log.error("[poll] communication failed in %s: %s", failed_in, ex)
        else:
            self.log.error("[poll] failed in %s: %s", failed_in, ex)

        self.sessions.invalidate()
        return PollOutcome.recoverable(str(ex))
