"""Decoding of queue message payloads into conversion events."""

import base64
import binascii
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from conversion_worker.models import ConversionAction, ConversionEvent, normalize_account_id

logger = logging.getLogger(__name__)

# camelCase field -> legacy snake_case alias
_CLICK_ID = ("clickId", "gclid")
_EVENT_TYPE = ("eventType", "event_type")
_ACTIONS = ("actions", "conversion_actions")
_ACCOUNT_ID = ("accountId", "customer_id")
_CONVERSION_ACTION_ID = ("conversionActionId", "conversion_action_id")
_OCCURRED_AT = ("occurredAt", "occurred_at")


class DecodeError(ValueError):
    """A payload that redelivery can never fix."""


class MalformedPayload(DecodeError):
    """Payload is not a well-formed event document."""


class MissingField(DecodeError):
    """A required field is absent or empty."""

    def __init__(self, field: str):
        super().__init__(f"Missing required field: {field}")
        self.field = field


def _parse_json(data: bytes) -> Any:
    try:
        return json.loads(data)
    except (ValueError, UnicodeDecodeError):
        pass

    # Push subscriptions and some publishers wrap the JSON in base64
    try:
        unwrapped = base64.b64decode(data, validate=True)
        return json.loads(unwrapped)
    except (binascii.Error, ValueError, UnicodeDecodeError) as e:
        raise MalformedPayload(f"Payload is neither JSON nor base64-wrapped JSON: {e}") from e


def _lookup(document: Dict[str, Any], names: tuple) -> Any:
    for name in names:
        value = document.get(name)
        if value is not None:
            return value
    return None


def _required_str(document: Dict[str, Any], names: tuple, field: str) -> str:
    value = _lookup(document, names)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MissingField(field)
    if not isinstance(value, str):
        raise MalformedPayload(f"{field} must be a string, got {type(value).__name__}")
    return value.strip()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise MalformedPayload(f"Invalid occurredAt timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _decode_action(item: Any, position: int, default_occurred_at: Optional[datetime]) -> ConversionAction:
    if not isinstance(item, dict):
        raise MalformedPayload(f"actions[{position}] is not an object")

    account_id = _required_str(item, _ACCOUNT_ID, f"actions[{position}].accountId")
    if not normalize_account_id(account_id):
        raise MissingField(f"actions[{position}].accountId")

    if default_occurred_at is not None and _lookup(item, _OCCURRED_AT) is None:
        occurred_at = default_occurred_at
    else:
        occurred_at = parse_timestamp(
            _required_str(item, _OCCURRED_AT, f"actions[{position}].occurredAt")
        )

    return ConversionAction(
        account_id=account_id,
        conversion_action_id=_required_str(
            item, _CONVERSION_ACTION_ID, f"actions[{position}].conversionActionId"
        ),
        occurred_at=occurred_at,
    )


def decode_event(data: Union[bytes, str], received_at: Optional[datetime] = None) -> ConversionEvent:
    """Decode one message body into a ConversionEvent.

    Accepts the camelCase document (clickId, eventType, actions[accountId,
    conversionActionId, occurredAt]) and its snake_case predecessor
    (gclid, conversion_actions[customer_id, conversion_action_id]). The
    predecessor carries no timestamps; its actions are stamped with
    received_at (the message publish time) or, failing that, the current time.

    Raises:
        MalformedPayload: the body is not a JSON object of the expected shape.
        MissingField: clickId or actions (or a required action field) is empty.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")

    document = _parse_json(data)
    if not isinstance(document, dict):
        raise MalformedPayload(f"Expected a JSON object, got {type(document).__name__}")

    click_id = _required_str(document, _CLICK_ID, "clickId")

    raw_actions = _lookup(document, _ACTIONS)
    if raw_actions is None or raw_actions == []:
        raise MissingField("actions")
    if not isinstance(raw_actions, list):
        raise MalformedPayload("actions is not a list")

    default_occurred_at = None
    if "actions" not in document and "conversion_actions" in document:
        stamp = received_at or datetime.now(timezone.utc)
        default_occurred_at = stamp if stamp.tzinfo else stamp.replace(tzinfo=timezone.utc)

    actions: List[ConversionAction] = [
        _decode_action(item, position, default_occurred_at) for position, item in enumerate(raw_actions)
    ]

    event_type = _lookup(document, _EVENT_TYPE)
    return ConversionEvent(
        click_id=click_id,
        actions=tuple(actions),
        event_type=str(event_type) if event_type is not None else None,
    )
