import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

from conversion_worker.models import ConversionAction, RawUploadResult
from conversion_worker.pubsub_queue import QueueMessage

OCCURRED_AT = "2025-03-01T10:15:30Z"


class FakeUploader:
    """Uploader double; behaviours maps normalized account id -> result, exception or callable."""

    def __init__(self, behaviours: Optional[Dict[str, Any]] = None):
        self.behaviours = behaviours or {}
        self.calls: List[Dict[str, Any]] = []

    async def submit(self, account_id: str, actions: Sequence[ConversionAction], click_id: str) -> RawUploadResult:
        self.calls.append({"account_id": account_id, "actions": list(actions), "click_id": click_id})
        behaviour = self.behaviours.get(account_id, accepted(len(actions)))
        if callable(behaviour):
            behaviour = await behaviour(account_id, actions, click_id)
        if isinstance(behaviour, BaseException):
            raise behaviour
        return behaviour


class FakeQueue:
    def __init__(self, messages: Optional[List[QueueMessage]] = None, ack_error: Optional[Exception] = None):
        self.messages = messages or []
        self.ack_error = ack_error
        self.acknowledged: List[str] = []
        self.pull_calls: List[int] = []

    async def pull(self, max_messages: int) -> List[QueueMessage]:
        self.pull_calls.append(max_messages)
        return self.messages[:max_messages]

    async def acknowledge(self, ack_ids: List[str]) -> None:
        if self.ack_error is not None:
            raise self.ack_error
        self.acknowledged.extend(ack_ids)


def accepted(count: int = 1) -> RawUploadResult:
    return RawUploadResult(accepted=[{"index": i} for i in range(count)])


def rejected(count: int = 1, accepted_count: int = 0) -> RawUploadResult:
    return RawUploadResult(
        accepted=[{"index": i} for i in range(accepted_count)],
        rejected=[{"index": accepted_count + i, "errors": ["The click was not found."]} for i in range(count)],
        partial_failure_message="The click was not found.",
    )


def slow(seconds: float, result: RawUploadResult) -> Callable:
    async def _behaviour(account_id, actions, click_id):
        await asyncio.sleep(seconds)
        return result
    return _behaviour


def action(account_id: str, conversion_action_id: str = "A1", occurred_at: str = OCCURRED_AT) -> Dict[str, str]:
    return {"accountId": account_id, "conversionActionId": conversion_action_id, "occurredAt": occurred_at}


def event_payload(click_id: str = "C1", actions: Optional[List[Dict[str, str]]] = None, **extra) -> bytes:
    document = {"clickId": click_id, "actions": actions if actions is not None else [action("111-222-3333")]}
    document.update(extra)
    return json.dumps(document).encode("utf-8")


def message(ack_id: str, data: bytes, publish_time: Optional[datetime] = None) -> QueueMessage:
    return QueueMessage(ack_id=ack_id, data=data, message_id=f"msg-{ack_id}", publish_time=publish_time)


def make_action(account_id: str, conversion_action_id: str, second: int = 0) -> ConversionAction:
    return ConversionAction(
        account_id=account_id,
        conversion_action_id=conversion_action_id,
        occurred_at=datetime(2025, 3, 1, 10, 15, second, tzinfo=timezone.utc),
    )


@pytest.fixture
def uploader() -> FakeUploader:
    return FakeUploader()
