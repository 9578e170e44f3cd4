"""Data models for the conversion worker."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

_NON_ALPHANUMERIC = re.compile(r"[^0-9A-Za-z]")


def normalize_account_id(account_id: str) -> str:
    """Strip separators so '111-222-3333' becomes '1112223333'."""
    return _NON_ALPHANUMERIC.sub("", account_id)


def format_conversion_date_time(value: datetime) -> str:
    """Render a timestamp the way the upload API expects: 'yyyy-mm-dd hh:mm:ss+00:00'."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(sep=" ", timespec="seconds")


@dataclass(frozen=True)
class ConversionAction:
    """One conversion to report for a click."""
    account_id: str  # As received, e.g. '111-222-3333'
    conversion_action_id: str
    occurred_at: datetime


@dataclass(frozen=True)
class ConversionEvent:
    """A decoded queue message."""
    click_id: str
    actions: Tuple[ConversionAction, ...]
    event_type: Optional[str] = None


@dataclass(frozen=True)
class AccountGroup:
    """The deduplicated actions of one event that target one account."""
    account_id: str  # Normalized, used for API calls
    display_account_id: str  # First-seen original form, used in logs
    click_id: str
    actions: Tuple[ConversionAction, ...]


class UploadStatus(str, Enum):
    SUCCEEDED = "Succeeded"
    PARTIAL_FAILURE = "PartialFailure"
    HARD_FAILURE = "HardFailure"


@dataclass(frozen=True)
class RawUploadResult:
    """What one upload call returned before classification."""
    accepted: List[Dict[str, Any]] = field(default_factory=list)
    rejected: List[Dict[str, Any]] = field(default_factory=list)
    partial_failure_message: Optional[str] = None


@dataclass(frozen=True)
class UploadOutcome:
    """Classified result of uploading one account group."""
    account_id: str
    status: UploadStatus
    accepted_count: int = 0
    rejected_count: int = 0
    diagnostic: Any = None

    @property
    def accepted_anything(self) -> bool:
        if self.status == UploadStatus.SUCCEEDED:
            return True
        return self.status == UploadStatus.PARTIAL_FAILURE and self.accepted_count > 0


class Decision(str, Enum):
    ALL_SUCCEEDED = "AllSucceeded"
    SOME_SUCCEEDED = "SomeSucceeded"
    ALL_FAILED = "AllFailed"


@dataclass(frozen=True)
class EventDecision:
    """Aggregate outcome of one event across all its accounts."""
    click_id: str
    overall: Decision
    outcomes: Tuple[UploadOutcome, ...]

    def summary(self) -> Dict[str, Any]:
        return {
            "click_id": self.click_id,
            "overall": self.overall.value,
            "accounts": [
                {
                    "account_id": outcome.account_id,
                    "status": outcome.status.value,
                    "accepted": outcome.accepted_count,
                    "rejected": outcome.rejected_count,
                    "diagnostic": outcome.diagnostic,
                }
                for outcome in self.outcomes
            ],
        }
