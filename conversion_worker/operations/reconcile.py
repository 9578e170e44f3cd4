"""Reduction of per-account upload outcomes to one decision per event."""

import logging
from typing import Sequence

from conversion_worker.models import Decision, EventDecision, UploadOutcome, UploadStatus

logger = logging.getLogger(__name__)


def reconcile(click_id: str, outcomes: Sequence[UploadOutcome]) -> EventDecision:
    """Decide the fate of one event.

    The owning account of a click is unknown up front, so a single account
    accepting anything means the click was routed; uploading again would
    double-report to that account. Nothing accepted anywhere means the click
    may still belong to an account whose call failed, so the event is retried.
    """
    if not outcomes:
        raise ValueError(f"No upload outcomes to reconcile for click {click_id}")

    if all(outcome.status == UploadStatus.SUCCEEDED for outcome in outcomes):
        overall = Decision.ALL_SUCCEEDED
    elif not any(outcome.accepted_anything for outcome in outcomes):
        overall = Decision.ALL_FAILED
    else:
        overall = Decision.SOME_SUCCEEDED

    return EventDecision(click_id=click_id, overall=overall, outcomes=tuple(outcomes))
