# -*- coding: utf-8 -*-
"""LibreLinkUp cloud follower: session handling, polling and reading normalization."""

from .controller import OutcomeKind, PollCycleController, PollOutcome
from .follower import CloudFollower, LibreLinkUpFollower
from .normalizer import Reading, ReadingNormalizer, Trend
from .session import Session, SessionManager

__version__ = "1.0.0"

__all__ = [
    "CloudFollower",
    "LibreLinkUpFollower",
    "OutcomeKind",
    "PollCycleController",
    "PollOutcome",
    "Reading",
    "ReadingNormalizer",
    "Session",
    "SessionManager",
    "Trend",
]
