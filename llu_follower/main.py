#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .config import config_from_args, parse_args
from .controller import OutcomeKind, PollOutcome
from .follower import CloudFollower, LibreLinkUpFollower
from .log import setup_logger
from .mqtt import MqttPublisher, Topics

# -----------------------------
# Scheduling helpers
# -----------------------------


def align_next_run(epoch_now: float, period_s: float, offset_s: float) -> float:
    base = (int(epoch_now) // int(period_s) + 1) * period_s
    return base + offset_s


def next_run_after(outcome: Optional[PollOutcome], epoch_now: float, period_s: float, offset_s: float) -> float:
    """Next aligned slot, but never earlier than a server-requested back-off."""
    next_run = align_next_run(epoch_now, period_s, offset_s)
    if outcome is not None and outcome.kind == OutcomeKind.RATE_LIMITED:
        retry_after = outcome.retry_after if outcome.retry_after is not None else period_s
        next_run = max(next_run, epoch_now + retry_after)
    return next_run


def iso_dt(dt: Optional[datetime]) -> str:
    return dt.isoformat() if dt else ""


# -----------------------------
# Health state
# -----------------------------

@dataclass
class HealthState:
    start_epoch: float = 0.0

    last_fetch_start: Optional[datetime] = None
    last_fetch_ok: Optional[datetime] = None
    last_fetch_fail: Optional[datetime] = None
    last_reading: Optional[datetime] = None

    fetch_ok_count: int = 0
    fetch_err_count: int = 0
    rate_limited_count: int = 0
    reset_count: int = 0
    last_error: str = ""
    last_fetch_duration_ms: Optional[int] = None

    def record(self, outcome: PollOutcome, tz) -> None:
        now = datetime.now(tz) if tz else datetime.now()
        if outcome.ok:
            self.last_fetch_ok = now
            self.fetch_ok_count += 1
            self.last_error = ""
            if outcome.reading is not None:
                self.last_reading = outcome.reading.timestamp
            return

        self.last_fetch_fail = now
        self.fetch_err_count += 1
        self.last_error = outcome.status[:300]
        if outcome.kind == OutcomeKind.RATE_LIMITED:
            self.rate_limited_count += 1
        elif outcome.kind == OutcomeKind.RECOVERABLE:
            self.reset_count += 1

    def as_payload(self, tz) -> Dict[str, Any]:
        return {
            "ts_local": iso_dt(datetime.now(tz) if tz else datetime.now()),
            "uptime_s": int(time.time() - self.start_epoch),
            "fetch": {
                "ok": (self.last_error == ""),
                "last_start": iso_dt(self.last_fetch_start),
                "last_ok": iso_dt(self.last_fetch_ok),
                "last_fail": iso_dt(self.last_fetch_fail),
                "duration_ms": self.last_fetch_duration_ms,
                "ok_count": self.fetch_ok_count,
                "err_count": self.fetch_err_count,
                "rate_limited_count": self.rate_limited_count,
                "reset_count": self.reset_count,
                "last_error": self.last_error,
            },
            "cloud": {
                "last_reading_ts": iso_dt(self.last_reading),
            },
        }


# -----------------------------
# Cycle / loop
# -----------------------------

def run_cycle(
    follower: CloudFollower,
    health: HealthState,
    tz=None,
    publisher: Optional[MqttPublisher] = None,
    publish_health: bool = False,
    logger: Optional[logging.Logger] = None,
) -> PollOutcome:
    log = logger or logging.getLogger("llu_follower")
    health.last_fetch_start = datetime.now(tz) if tz else datetime.now()
    t0 = time.time()

    outcome = follower.fetch_latest()
    health.last_fetch_duration_ms = int((time.time() - t0) * 1000)
    health.record(outcome, tz)

    if outcome.reading is not None:
        r = outcome.reading
        log.info("[poll] %s mg/dl (%.1f mmol/l) %s at %s", r.value, r.mmol_l, r.trend.value, r.timestamp.isoformat())
    elif outcome.kind == OutcomeKind.NO_NEW_DATA:
        log.info("[poll] no new data")

    if publisher is not None:
        try:
            publisher.publish_cycle(outcome, health.as_payload(tz) if publish_health else None)
        except (RuntimeError, OSError, ValueError) as ex:
            log.warning("[mqtt] publish failed: %s", ex)

    return outcome


def run_loop(
    follower: CloudFollower,
    cycle: Callable[[], PollOutcome],
    request_delay_ms: int = 0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.time,
    max_cycles: Optional[int] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Single-threaded scheduler: the only caller of the follower. One cycle per
    sample interval, shifted by the request latency; a rate limit pushes the
    next cycle out by at least Retry-After.
    """
    log = logger or logging.getLogger("llu_follower")
    period_s = follower.sample_interval_ms() / 1000.0
    offset_s = request_delay_ms / 1000.0

    log.info("[loop] interval=%ss latency=%.1fs", period_s, offset_s)
    follower.reset()
    was_enabled = True

    cycles = 0
    next_run = align_next_run(clock(), period_s, offset_s)
    while max_cycles is None or cycles < max_cycles:
        sleep_s = next_run - clock()
        if sleep_s > 0:
            sleep(sleep_s)

        outcome = None
        enabled = follower.is_enabled()
        if enabled and not was_enabled:
            log.info("[loop] follower enabled again, starting from scratch")
            follower.reset()
        was_enabled = enabled

        if enabled:
            try:
                outcome = cycle()
            except KeyboardInterrupt:
                raise
            except Exception as ex:
                log.error("[loop] cycle failed: %s", ex)
            if outcome is not None and outcome.kind == OutcomeKind.RATE_LIMITED:
                log.warning("[loop] backing off, retry after %s s", outcome.retry_after)
        else:
            log.debug("[loop] follower disabled")

        cycles += 1
        next_run = next_run_after(outcome, clock(), period_s, offset_s)


# -----------------------------
# Main
# -----------------------------

def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config = config_from_args(args)
    tz = config.zone()
    logger = setup_logger(args.log_level, tz)

    follower = LibreLinkUpFollower(config, logger=logger)
    health = HealthState(start_epoch=time.time())

    publisher: Optional[MqttPublisher] = None
    if args.mqtt_publish:
        publisher = MqttPublisher(
            host=args.mqtt_host,
            port=args.mqtt_port,
            topics=Topics.under(args.mqtt_base_topic, args.master_id),
            user=args.mqtt_user,
            password=args.mqtt_password,
            keepalive=args.mqtt_keepalive,
            retain_readings=args.mqtt_retain,
            qos=args.mqtt_qos,
            tz=tz,
            logger=logger,
        )
        publisher.connect()

    def cycle() -> PollOutcome:
        return run_cycle(
            follower,
            health,
            tz=tz,
            publisher=publisher,
            publish_health=args.mqtt_publish_health,
            logger=logger,
        )

    try:
        if not args.loop:
            if not follower.is_enabled():
                logger.info("follower disabled, nothing to do")
                return 0
            outcome = cycle()
            logger.info("done: %s", outcome.status)
            return 0 if outcome.ok else 1

        run_loop(follower, cycle, request_delay_ms=follower.request_delay_ms(), logger=logger)
        return 0
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 0
    finally:
        if publisher:
            publisher.close()
        follower.close()


if __name__ == "__main__":
    raise SystemExit(main())
