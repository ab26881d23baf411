# -*- coding: utf-8 -*-
"""
Decoding of LibreLinkUp responses.

Pure functions: no I/O, no state. Every structural problem raises
``ParseError`` (with the stage it happened in) instead of leaking a
KeyError/TypeError, so a changed API contract is logged differently from
an outage.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .errors import NoConnectionError, ParseError

# login status meaning "terms of use must be accepted first"
LOGIN_STATUS_TOU_REQUIRED = 4


@dataclass(frozen=True)
class LoginTicket:
    token: str
    raw_account_id: str
    status: int = 0
    country: str = ""


@dataclass(frozen=True)
class RedirectInstruction:
    region: str
    country: str = ""


@dataclass(frozen=True)
class RawMeasurement:
    value: int
    timestamp: str
    trend: int


Body = Union[str, bytes, Dict[str, Any], list, None]


def _short(body: Any) -> str:
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if not isinstance(body, str):
        try:
            body = json.dumps(body, ensure_ascii=False)
        except (TypeError, ValueError):
            body = repr(body)
    return body[:300]


def _load(stage: str, body: Body) -> Any:
    if body is None:
        raise ParseError(stage, "empty response")
    if isinstance(body, (dict, list)):
        return body
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if not body.strip():
        raise ParseError(stage, "empty response")
    try:
        return json.loads(body)
    except ValueError:
        raise ParseError(stage, "response is not JSON", _short(body))


def _obj(parent: Any, key: str) -> Optional[Dict[str, Any]]:
    if not isinstance(parent, dict):
        return None
    v = parent.get(key)
    return v if isinstance(v, dict) else None


def _as_int(v: Any) -> Optional[int]:
    if isinstance(v, bool) or v is None:
        return None
    if isinstance(v, str):
        try:
            v = float(v.strip())
        except ValueError:
            return None
    if isinstance(v, int):
        return v
    if isinstance(v, float):
        # json.loads accepts 1e400 and NaN
        if not math.isfinite(v):
            return None
        return int(round(v))
    return None


def _as_flag(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return isinstance(v, str) and v.strip().lower() == "true"


def parse_redirect(body: Body) -> Optional[RedirectInstruction]:
    """
    Detect a regional redirect, e.g.
      {"status":0,"data":{"redirect":true,"region":"eu","country":"CA"}}
    Returns None if the response is not a redirect. The region is returned
    as sent; validating it is the session manager's job.
    """
    data = _obj(_load("redirect", body), "data")
    if data is None or not _as_flag(data.get("redirect")):
        return None
    region = str(data.get("region") or "").strip()
    return RedirectInstruction(region=region, country=str(data.get("country") or ""))


def parse_login(body: Body) -> Union[LoginTicket, RedirectInstruction]:
    obj = _load("login", body)

    redirect = parse_redirect(obj)
    if redirect is not None:
        return redirect

    data = _obj(obj, "data")
    ticket = _obj(data, "authTicket")
    user = _obj(data, "user")
    if ticket is None or user is None:
        err = ""
        if isinstance(obj, dict):
            err = obj.get("error") or obj.get("message") or obj.get("reason") or ""
        msg = "response has neither auth ticket nor redirect"
        if err:
            msg += f" (error={err!r})"
        raise ParseError("login", msg, _short(obj))

    token = str(ticket.get("token") or "")
    account_id = str(user.get("id") or "")
    if not token or not account_id:
        raise ParseError("login", "auth ticket without token or user id", _short(obj))

    status = _as_int(obj.get("status")) if isinstance(obj, dict) else None
    return LoginTicket(
        token=token,
        raw_account_id=account_id,
        status=status if status is not None else -1,
        country=str(user.get("country") or ""),
    )


def parse_connection_list(body: Body) -> str:
    """Return the patient id of the first connection."""
    obj = _load("connections", body)
    data = obj.get("data") if isinstance(obj, dict) else None
    if not isinstance(data, list):
        raise ParseError("connections", "missing connection list", _short(obj))
    if not data:
        raise NoConnectionError(_short(obj))

    first = data[0]
    patient_id = str(first.get("patientId") or "") if isinstance(first, dict) else ""
    if not patient_id:
        raise ParseError("connections", "first connection has no patientId", _short(obj))
    return patient_id


def parse_measurement(body: Body) -> RawMeasurement:
    """Extract data.connection.glucoseMeasurement from a graph response."""
    obj = _load("graph", body)
    data = _obj(obj, "data")
    if data is None:
        raise ParseError("graph", "missing 'data'", _short(obj))
    conn = _obj(data, "connection")
    if conn is None:
        raise ParseError("graph", "missing 'data.connection'", _short(obj))
    gm = _obj(conn, "glucoseMeasurement")
    if gm is None:
        raise ParseError("graph", "missing 'data.connection.glucoseMeasurement'", _short(obj))

    value = _as_int(gm.get("ValueInMgPerDl"))
    if value is None:
        raise ParseError("graph", "measurement without ValueInMgPerDl", _short(gm))

    trend = _as_int(gm.get("TrendArrow"))
    ts = gm.get("Timestamp")
    return RawMeasurement(
        value=value,
        timestamp=ts if isinstance(ts, str) else "",
        trend=trend if trend is not None else 0,
    )
