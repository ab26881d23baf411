from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any

import pytest

from llu_follower.client import LibreLinkUpClient

RAW_ACCOUNT_ID = "f1d2d2f9-24e2-4c1f-8b1e-3c6a2a6c9b10"
TOKEN = "eyJhbGciOiJIUzI1NiJ9.test-token"
PATIENT_ID = "7a1c9e3e-0b9a-11ee-b5a9-0242ac110004"


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, headers: dict | None = None, reason: str = "") -> None:
        self.status_code = status_code
        if body is None:
            self.text = ""
        elif isinstance(body, str):
            self.text = body
        else:
            self.text = json.dumps(body)
        self.content = self.text.encode("utf-8")
        self.headers = headers or {}
        self.reason = reason


class FakeHttp:
    """Stands in for requests.Session: replays queued responses, records calls."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: list[dict] = []
        self.closed = False

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    def _next(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"unexpected {method} {url}")
        r = self.responses.pop(0)
        if isinstance(r, BaseException):
            raise r
        return r

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next("POST", url, **kwargs)

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next("GET", url, **kwargs)

    def close(self) -> None:
        self.closed = True


def login_body(token: str = TOKEN, account_id: str = RAW_ACCOUNT_ID, status: int = 0) -> dict:
    return {
        "status": status,
        "data": {
            "user": {"id": account_id, "country": "DE"},
            "authTicket": {"token": token, "expires": 1767225600, "duration": 15552000000},
        },
    }


def redirect_body(region: str = "eu") -> dict:
    return {"status": 0, "data": {"redirect": True, "region": region, "country": "DE"}}


def connections_body(patient_id: str = PATIENT_ID) -> dict:
    return {"status": 0, "data": [{"patientId": patient_id, "firstName": "A", "lastName": "B"}]}


def graph_body(value: Any = 120, timestamp: str = "1/2/2024 8:30:00 AM", trend: Any = 3) -> dict:
    return {
        "status": 0,
        "data": {
            "connection": {
                "patientId": PATIENT_ID,
                "glucoseMeasurement": {
                    "FactoryTimestamp": timestamp,
                    "Timestamp": timestamp,
                    "ValueInMgPerDl": value,
                    "TrendArrow": trend,
                    "MeasurementColor": 1,
                },
            },
            "activeSensors": [],
            "graphData": [],
        },
    }


def ok(body: Any) -> FakeResponse:
    return FakeResponse(200, body)


@pytest.fixture
def http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def client(http: FakeHttp) -> LibreLinkUpClient:
    return LibreLinkUpClient(session=http)


class FakeMqttInfo:
    def wait_for_publish(self, timeout=None) -> None:
        pass


class FakeMqttClient:
    """Just enough of paho's Client; connect/reconnect answer with a CONNACK at once."""

    reconnect_error: BaseException | None = None

    def __init__(self, api_version) -> None:
        self.api_version = api_version
        self.published: list[tuple] = []
        self.will = None
        self.auth = None
        self.on_connect = None
        self.on_disconnect = None
        self.loop_running = False

    def username_pw_set(self, user, password=None) -> None:
        self.auth = (user, password)

    def will_set(self, topic, payload=None, qos=0, retain=False) -> None:
        self.will = (topic, payload, retain)

    def connect(self, host, port, keepalive=60) -> None:
        self.on_connect(self, None, {}, 0)

    def reconnect(self) -> None:
        if self.reconnect_error is not None:
            raise self.reconnect_error
        self.on_connect(self, None, {}, 0)

    def loop_start(self) -> None:
        self.loop_running = True

    def loop_stop(self) -> None:
        self.loop_running = False

    def disconnect(self) -> None:
        self.on_disconnect(self, None, 0)

    def publish(self, topic, payload=None, qos=0, retain=False) -> FakeMqttInfo:
        self.published.append((topic, payload, retain))
        return FakeMqttInfo()


@pytest.fixture
def fake_paho(monkeypatch: pytest.MonkeyPatch):
    from llu_follower import mqtt as mqtt_mod

    fake = SimpleNamespace(Client=FakeMqttClient, CallbackAPIVersion=SimpleNamespace(VERSION1=1))
    monkeypatch.setattr(mqtt_mod, "mqtt", fake)
    return fake
