"""Inbound streaming message variants and their decoder."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union


class MalformedMessageError(Exception):
    """Raised when an inbound frame cannot be decoded into a known shape."""


@dataclass(frozen=True)
class CenterUpdate:
    center_id: int
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DemandUpdate:
    patch: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Alert:
    severity: str
    message: str


@dataclass(frozen=True)
class UnknownMessage:
    type: str
    payload: Any = None


InboundMessage = Union[CenterUpdate, DemandUpdate, Alert, UnknownMessage]


def subscribe_message(channels: list[str]) -> dict[str, Any]:
    return {"type": "subscribe", "channels": list(channels)}


def decode_message(raw: str | bytes) -> InboundMessage:
    """Decode one ``{type, payload}`` frame into a message variant."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedMessageError("frame is not valid JSON") from exc

    if not isinstance(data, dict):
        raise MalformedMessageError("frame must be a JSON object")
    message_type = data.get("type")
    if not isinstance(message_type, str):
        raise MalformedMessageError("frame is missing a string 'type'")

    payload = data.get("payload")
    if message_type == "center_update":
        return _decode_center_update(payload)
    if message_type == "demand_update":
        if not isinstance(payload, dict):
            raise MalformedMessageError("demand_update payload must be an object")
        return DemandUpdate(patch=dict(payload))
    if message_type == "alert":
        if not isinstance(payload, dict) or not isinstance(payload.get("message"), str):
            raise MalformedMessageError("alert payload must carry a message string")
        severity = payload.get("severity") or "info"
        return Alert(severity=str(severity), message=payload["message"])
    return UnknownMessage(type=message_type, payload=payload)


def _decode_center_update(payload: Any) -> CenterUpdate:
    if not isinstance(payload, dict):
        raise MalformedMessageError("center_update payload must be an object")
    center_id = payload.get("centerId", payload.get("id"))
    if isinstance(center_id, bool) or not isinstance(center_id, int):
        raise MalformedMessageError("center_update payload must carry an integer centerId")
    fields = payload.get("data", {})
    if not isinstance(fields, dict):
        raise MalformedMessageError("center_update data must be an object")
    return CenterUpdate(center_id=center_id, fields=dict(fields))
