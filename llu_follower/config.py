# -*- coding: utf-8 -*-

import argparse
import os
from dataclasses import dataclass
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .session import LLU_SERVER_URL, TOU_PATH

DEF_LATENCY_S = 15


@dataclass
class FollowerConfig:
    username: str = ""
    password: str = ""
    enabled: bool = True
    latency_s: int = DEF_LATENCY_S
    api_base: str = LLU_SERVER_URL
    tou_path: str = TOU_PATH
    timeout_s: int = 15
    verify_tls: bool = True
    connection_close: bool = False
    tz: str = "Europe/Berlin"

    @property
    def sample_to_request_delay_ms(self) -> int:
        return max(0, self.latency_s) * 1000

    def zone(self):
        if not self.tz:
            return None
        try:
            return ZoneInfo(self.tz)
        except (ZoneInfoNotFoundError, ValueError):
            return None


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="LibreLinkUp follower: poll the latest glucose reading and publish it via MQTT."
    )

    # credentials (blank values are reported per cycle, not at startup)
    p.add_argument("--email", default=os.environ.get("LLU_EMAIL", ""), help="LibreLinkUp email (env LLU_EMAIL)")
    p.add_argument("--password", default=os.environ.get("LLU_PASSWORD", ""),
                   help="LibreLinkUp password (env LLU_PASSWORD, quote it in the shell!)")
    p.add_argument("--disabled", action="store_true", help="Keep the follower idle")
    p.add_argument("--latency", type=int, default=DEF_LATENCY_S,
                   help=f"Seconds to wait after the sample slot before requesting (default {DEF_LATENCY_S})")

    # output/debug/logging
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--log-level", default="INFO", help="Log level: DEBUG, INFO, WARNING, ERROR (default INFO)")
    p.add_argument("--tz", default="Europe/Berlin", help="Timezone of the cloud timestamps (default Europe/Berlin)")

    # API / transport
    p.add_argument("--api-base", default=LLU_SERVER_URL, help="API base URL")
    p.add_argument("--tou-path", default=TOU_PATH, help="Terms-of-use path (empty = never accept)")
    p.add_argument("--timeout", type=int, default=15, help="HTTP timeout seconds")
    p.add_argument("--no-verify-tls", action="store_true", help="Disable TLS verification (not recommended)")
    p.add_argument("--connection-close", action="store_true", help="Send Connection: close header")

    # loop
    p.add_argument("--loop", action="store_true", help="Run forever, polling every sample interval")

    # MQTT
    p.add_argument("--mqtt-publish", action="store_true", help="Publish readings to MQTT")
    p.add_argument("--mqtt-host", default="localhost", help="MQTT host")
    p.add_argument("--mqtt-port", type=int, default=1883, help="MQTT port")
    p.add_argument("--mqtt-user", default="", help="MQTT username")
    p.add_argument("--mqtt-password", default="", help="MQTT password")
    p.add_argument("--mqtt-keepalive", type=int, default=30, help="MQTT keepalive seconds (default 30)")
    p.add_argument("--mqtt-base-topic", default="librelinkup", help="Base topic (default librelinkup)")
    p.add_argument("--master-id", default="MASTER", help="Master id segment (default MASTER)")
    p.add_argument("--mqtt-retain", action="store_true", help="Retain reading messages")
    p.add_argument("--mqtt-qos", type=int, default=0, choices=[0, 1, 2], help="MQTT QoS (0/1/2)")
    p.add_argument("--mqtt-publish-health", action="store_true", help="Publish health JSON to .../health")

    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    args = build_arg_parser().parse_args(argv)
    if args.debug and (args.log_level or "").upper() == "INFO":
        args.log_level = "DEBUG"
    return args


def config_from_args(args: argparse.Namespace) -> FollowerConfig:
    return FollowerConfig(
        username=args.email,
        password=args.password,
        enabled=not args.disabled,
        latency_s=args.latency,
        api_base=args.api_base,
        tou_path=args.tou_path,
        timeout_s=args.timeout,
        verify_tls=not args.no_verify_tls,
        connection_close=args.connection_close,
        tz=args.tz,
    )
