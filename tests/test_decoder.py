import base64
import json
from datetime import datetime, timedelta, timezone

import pytest

from conftest import action, event_payload
from conversion_worker.processors.decoder import DecodeError, MalformedPayload, MissingField, decode_event


def test_decodes_camel_case_event() -> None:
    event = decode_event(event_payload("C1", [action("111-222-3333", "A1")], eventType="purchase"))

    assert event.click_id == "C1"
    assert event.event_type == "purchase"
    assert len(event.actions) == 1
    assert event.actions[0].account_id == "111-222-3333"
    assert event.actions[0].conversion_action_id == "A1"
    assert event.actions[0].occurred_at == datetime(2025, 3, 1, 10, 15, 30, tzinfo=timezone.utc)


def test_decodes_legacy_snake_case_event() -> None:
    payload = json.dumps({
        "gclid": "legacy-gclid",
        "conversion_actions": [
            {"customer_id": 1112223333, "conversion_action_id": 987, "occurred_at": "2025-03-01T11:00:00+01:00"},
        ],
    })
    event = decode_event(payload)

    assert event.click_id == "legacy-gclid"
    assert event.event_type is None
    assert event.actions[0].account_id == "1112223333"
    assert event.actions[0].conversion_action_id == "987"
    assert event.actions[0].occurred_at.utcoffset() == timedelta(hours=1)


LEGACY_DOCUMENT = {
    "gclid": "G1",
    "conversion_actions": [{"customer_id": "111-222-3333", "conversion_action_id": "987"}],
}


def test_legacy_event_without_timestamps_uses_publish_time() -> None:
    published = datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc)

    event = decode_event(json.dumps(LEGACY_DOCUMENT), received_at=published)

    assert event.click_id == "G1"
    [item] = event.actions
    assert item.account_id == "111-222-3333"
    assert item.conversion_action_id == "987"
    assert item.occurred_at == published


def test_legacy_event_without_timestamps_falls_back_to_now() -> None:
    before = datetime.now(timezone.utc)
    event = decode_event(json.dumps(LEGACY_DOCUMENT))
    after = datetime.now(timezone.utc)

    assert before <= event.actions[0].occurred_at <= after


def test_naive_publish_time_is_taken_as_utc() -> None:
    event = decode_event(json.dumps(LEGACY_DOCUMENT), received_at=datetime(2025, 3, 1, 9, 0, 0))
    assert event.actions[0].occurred_at == datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


def test_publish_time_does_not_replace_camel_case_timestamps() -> None:
    item = action("111-222-3333")
    del item["occurredAt"]
    with pytest.raises(MissingField):
        decode_event(event_payload(actions=[item]), received_at=datetime.now(timezone.utc))


def test_decodes_base64_wrapped_payload() -> None:
    wrapped = base64.b64encode(event_payload("C9"))
    assert decode_event(wrapped).click_id == "C9"


def test_naive_timestamp_is_taken_as_utc() -> None:
    event = decode_event(event_payload(actions=[action("111", occurred_at="2025-03-01T10:00:00")]))
    assert event.actions[0].occurred_at.tzinfo == timezone.utc


@pytest.mark.parametrize("data", [b"not json at all", b"{\"clickId\": ", b"[1, 2, 3]", b"\xff\xfe\x00"])
def test_unparseable_payload_is_malformed(data) -> None:
    with pytest.raises(MalformedPayload):
        decode_event(data)


def test_missing_click_id() -> None:
    payload = json.dumps({"actions": [action("111-222-3333")]})
    with pytest.raises(MissingField) as excinfo:
        decode_event(payload)
    assert excinfo.value.field == "clickId"


@pytest.mark.parametrize("actions", [None, []])
def test_missing_or_empty_actions(actions) -> None:
    document = {"clickId": "C1"}
    if actions is not None:
        document["actions"] = actions
    with pytest.raises(MissingField) as excinfo:
        decode_event(json.dumps(document))
    assert excinfo.value.field == "actions"


@pytest.mark.parametrize("missing", ["accountId", "conversionActionId", "occurredAt"])
def test_action_missing_field(missing) -> None:
    item = action("111-222-3333")
    del item[missing]
    with pytest.raises(MissingField) as excinfo:
        decode_event(event_payload(actions=[item]))
    assert excinfo.value.field == f"actions[0].{missing}"


def test_account_id_of_only_separators_is_missing() -> None:
    with pytest.raises(MissingField):
        decode_event(event_payload(actions=[action("---")]))


def test_invalid_timestamp_is_malformed() -> None:
    with pytest.raises(MalformedPayload):
        decode_event(event_payload(actions=[action("111", occurred_at="yesterday")]))


def test_non_object_action_is_malformed() -> None:
    with pytest.raises(MalformedPayload):
        decode_event(json.dumps({"clickId": "C1", "actions": ["111-222-3333"]}))


def test_decode_errors_are_value_errors() -> None:
    assert issubclass(MalformedPayload, DecodeError)
    assert issubclass(MissingField, DecodeError)
    assert issubclass(DecodeError, ValueError)


@pytest.mark.parametrize("click_id", [["C1"], {"id": "C1"}, True])
def test_non_string_click_id_is_malformed(click_id) -> None:
    with pytest.raises(MalformedPayload):
        decode_event(json.dumps({"clickId": click_id, "actions": [action("111")]}))


def test_numeric_click_id_is_coerced() -> None:
    assert decode_event(json.dumps({"clickId": 12345, "actions": [action("111")]})).click_id == "12345"


def test_non_string_account_id_is_malformed() -> None:
    item = action("111")
    item["accountId"] = ["111"]
    with pytest.raises(MalformedPayload):
        decode_event(event_payload(actions=[item]))
