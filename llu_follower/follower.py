# -*- coding: utf-8 -*-

import logging
from typing import Callable, Optional, Protocol, runtime_checkable

from .client import LibreLinkUpClient
from .config import FollowerConfig
from .controller import PollCycleController, PollOutcome
from .normalizer import ReadingNormalizer
from .session import SessionManager

DEF_SAMPLE_PERIOD_MS = 60000


@runtime_checkable
class CloudFollower(Protocol):
    """What the scheduler needs from any cloud follower."""

    def is_enabled(self) -> bool:
        ...

    def init_last_sample_time(self) -> None:
        ...

    def sample_interval_ms(self) -> int:
        ...

    def fetch_latest(self) -> PollOutcome:
        ...

    def reset(self) -> None:
        ...


class LibreLinkUpFollower:
    """LibreLinkUp implementation of CloudFollower. One account, one connection."""

    label = "LibreLinkUp"

    def __init__(
        self,
        config: FollowerConfig,
        client: Optional[LibreLinkUpClient] = None,
        notify: Optional[Callable[[str], None]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.log = logger or logging.getLogger("llu_follower")
        self.client = client or LibreLinkUpClient(
            timeout_s=config.timeout_s,
            verify_tls=config.verify_tls,
            connection_close=config.connection_close,
            logger=self.log,
        )
        self.sessions = SessionManager(
            self.client,
            base_url=config.api_base,
            tou_path=config.tou_path,
            logger=self.log,
        )
        self.normalizer = ReadingNormalizer(tz=config.zone(), logger=self.log)
        self.controller = PollCycleController(
            self.sessions,
            self.normalizer,
            username=config.username,
            password=config.password,
            notify=notify,
            logger=self.log,
        )

    def reset(self) -> None:
        """Back to process-start state: no session, global endpoint, no last sample."""
        self.sessions.invalidate()
        self.sessions.forget_region()
        self.init_last_sample_time()

    def is_enabled(self) -> bool:
        return self.config.enabled

    def init_last_sample_time(self) -> None:
        self.normalizer.init_last_sample_time()

    def sample_interval_ms(self) -> int:
        return DEF_SAMPLE_PERIOD_MS

    def request_delay_ms(self) -> int:
        return self.config.sample_to_request_delay_ms

    def fetch_latest(self) -> PollOutcome:
        return self.controller.poll()

    def close(self) -> None:
        self.client.close()
