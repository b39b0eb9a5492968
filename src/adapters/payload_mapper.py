"""Fans-service payload to core message mapping adapter.

This keeps the platform's push format out of the core router. The input is
an already-decoded JSON object as pushed to the webhook::

    {"type": "event", "sender_id": "...", "receiver_id": "...",
     "created_at": "...", "text": "...",
     "data": {"subtype": "click", "key": "MENU_1"}}
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional

from core.models import EventData, InboundMessage, LocationInfo, MessageType


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _data_section(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    data = payload.get("data") or {}
    # Some pushes carry ``data`` as an embedded JSON string.
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except ValueError as exc:
            raise ValueError(f"Malformed data section: {data!r}") from exc
    if not isinstance(data, Mapping):
        raise ValueError(f"Unsupported data section: {data!r}")
    return data


def _event_data(data: Mapping[str, Any]) -> Optional[EventData]:
    sub_type = _as_text(data.get("subtype"))
    key = _as_text(data.get("key"))
    if sub_type is None and key is None:
        return None
    return EventData(sub_type=sub_type, key=key)


def _location(data: Mapping[str, Any]) -> Optional[LocationInfo]:
    if "longitude" not in data and "latitude" not in data:
        return None
    return LocationInfo(
        longitude=_as_text(data.get("longitude")),
        latitude=_as_text(data.get("latitude")),
        scale=_as_text(data.get("scale")),
        label=_as_text(data.get("label")),
        poi_name=_as_text(data.get("poiname")),
    )


def _message_type(raw_type: Any) -> str:
    try:
        return MessageType(raw_type).value
    except ValueError:
        # Unknown types stay routable by their raw name.
        return str(raw_type)


def build_message(payload: Mapping[str, Any]) -> InboundMessage:
    """Build a core InboundMessage from a decoded push payload."""

    sender_id = _as_text(payload.get("sender_id"))
    if not sender_id:
        raise ValueError("Payload is missing sender_id")

    data = _data_section(payload)
    msg_type = _message_type(payload.get("type", ""))

    return InboundMessage(
        sender_id=sender_id,
        receiver_id=_as_text(payload.get("receiver_id")) or "",
        created_at=_as_text(payload.get("created_at")) or "",
        msg_type=msg_type,
        text=_as_text(payload.get("text")),
        event_data=_event_data(data),
        location=_location(data) if msg_type == MessageType.POSITION.value else None,
        raw=payload,
    )
