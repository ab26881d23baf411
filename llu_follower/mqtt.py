# -*- coding: utf-8 -*-
"""
Downstream delivery of readings over MQTT.

Per follower prefix ``<base>/<master_id>``:
  reading  one compact JSON document per accepted reading
  status   retained: connection state plus the result of the last cycle
  health   retained, optional: counters from the scheduler
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

try:
    import paho.mqtt.client as mqtt
except ImportError:
    mqtt = None

from .controller import PollOutcome
from .normalizer import Reading

CONNECT_TIMEOUT_S = 5.0


def json_dumps_compact(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def iso_now(tz) -> str:
    return datetime.now(tz).isoformat()


def reading_payload(reading: Reading) -> Dict[str, Any]:
    return {
        "value": reading.value,
        "mmol_l": reading.mmol_l,
        "ts": reading.timestamp.isoformat(),
        "trend": reading.trend.value,
        "trend_code": reading.trend_code,
        "source": reading.source,
    }


def status_payload(outcome: PollOutcome, tz, last_reading: Optional[Reading] = None) -> Dict[str, Any]:
    payload = {
        "state": "online",
        "ts_local": iso_now(tz),
        "result": outcome.kind.value,
        "status": outcome.status,
    }
    if outcome.retry_after is not None:
        payload["retry_after_s"] = outcome.retry_after
    if last_reading is not None:
        payload["last_value"] = last_reading.value
        payload["last_ts"] = last_reading.timestamp.isoformat()
    return payload


@dataclass(frozen=True)
class Topics:
    reading: str
    status: str
    health: str

    @classmethod
    def under(cls, base_topic: str, master_id: str) -> "Topics":
        parts = [p for p in ((base_topic or "").strip("/"), (master_id or "").strip("/")) if p]
        prefix = "/".join(parts)
        return cls(reading=f"{prefix}/reading", status=f"{prefix}/status", health=f"{prefix}/health")


class MqttPublisher:
    """
    Keeps one broker connection for the lifetime of the scheduler. A dropped
    connection is re-established on the next publish; the broker clears the
    retained status to "offline" through the will if we vanish.
    """

    def __init__(
        self,
        host: str,
        port: int,
        topics: Topics,
        user: str = "",
        password: str = "",
        keepalive: int = 30,
        retain_readings: bool = False,
        qos: int = 0,
        tz=None,
        logger: Optional[logging.Logger] = None,
    ):
        if mqtt is None:
            raise RuntimeError("paho-mqtt not installed. Try: pip install paho-mqtt")

        self.host = host
        self.port = port
        self.keepalive = keepalive
        self.topics = topics
        self.retain_readings = retain_readings
        self.qos = qos
        self.tz = tz
        self.log = logger or logging.getLogger("llu_follower")

        self.last_reading: Optional[Reading] = None
        self.reconnects = 0
        self._connected = False

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION1)
        if user:
            self.client.username_pw_set(user, password=password)
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.will_set(self.topics.status, payload=self._presence("offline", "lwt"), qos=0, retain=True)

    @property
    def connected(self) -> bool:
        return self._connected

    def _presence(self, state: str, reason: str = "") -> str:
        payload = {"state": state, "ts_local": iso_now(self.tz)}
        if reason:
            payload["reason"] = reason
        return json_dumps_compact(payload)

    def _on_connect(self, client, userdata, flags, rc):
        self._connected = (rc == 0)
        self.log.debug("[mqtt] connected rc=%s", rc)
        if self._connected:
            # announce directly; going through _send would recurse into reconnect
            self.client.publish(self.topics.status, payload=self._presence("online"), qos=0, retain=True)

    def _on_disconnect(self, client, userdata, rc):
        self._connected = False
        self.log.debug("[mqtt] disconnected rc=%s", rc)

    def _await_connack(self, what: str) -> None:
        deadline = time.time() + CONNECT_TIMEOUT_S
        while not self._connected:
            if time.time() >= deadline:
                raise RuntimeError(f"MQTT {what} timeout (no CONNACK within {CONNECT_TIMEOUT_S:.0f}s)")
            time.sleep(0.05)

    def connect(self) -> None:
        self.log.info("[mqtt] connect %s:%s", self.host, self.port)
        self.client.connect(self.host, self.port, keepalive=self.keepalive)
        self.client.loop_start()
        self._await_connack("connect")

    def _send(self, topic: str, obj: Dict[str, Any], retain: bool, qos: int) -> None:
        if not self._connected:
            self.reconnects += 1
            self.log.warning("[mqtt] broker connection lost, reconnect #%s", self.reconnects)
            self.client.reconnect()
            self._await_connack("reconnect")

        payload = json_dumps_compact(obj)
        self.log.debug("[mqtt] -> %s (%s bytes)", topic, len(payload))
        self.client.publish(topic, payload=payload, qos=qos, retain=retain).wait_for_publish(timeout=10)

    def publish_reading(self, reading: Reading) -> None:
        self._send(self.topics.reading, reading_payload(reading), retain=self.retain_readings, qos=self.qos)
        self.last_reading = reading

    def publish_cycle(self, outcome: PollOutcome, health: Optional[Dict[str, Any]] = None) -> None:
        """Everything one poll cycle produced: the reading (if any), the status, optionally health."""
        if outcome.reading is not None:
            self.publish_reading(outcome.reading)
        self._send(self.topics.status, status_payload(outcome, self.tz, self.last_reading), retain=True, qos=0)
        if health is not None:
            self._send(self.topics.health, health, retain=True, qos=0)

    def close(self) -> None:
        if self._connected:
            info = self.client.publish(self.topics.status, payload=self._presence("offline", "shutdown"),
                                       qos=0, retain=True)
            info.wait_for_publish(timeout=2)
        self.client.loop_stop()
        self.client.disconnect()
        self._connected = False
