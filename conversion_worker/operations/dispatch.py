"""Concurrent per-account upload of one event's conversion groups."""

import asyncio
import logging
from typing import List, Optional, Protocol, Sequence

from conversion_worker.models import AccountGroup, ConversionAction, RawUploadResult, UploadOutcome, UploadStatus
from conversion_worker.processors.grouper import AccountGroups
from conversion_worker.utils.errors import describe_exception

logger = logging.getLogger(__name__)


class ConversionUploader(Protocol):
    async def submit(self, account_id: str, actions: Sequence[ConversionAction], click_id: str) -> RawUploadResult:
        ...


def classify_result(account_id: str, raw: RawUploadResult) -> UploadOutcome:
    """Map an upstream response to an UploadOutcome.

    Any rejection makes it a partial failure, even alongside accepted rows.
    A response with nothing accepted and nothing rejected says nothing about
    whether the click belongs to this account, so it counts as a hard failure.
    """
    accepted_count = len(raw.accepted)
    rejected_count = len(raw.rejected)

    if rejected_count > 0:
        return UploadOutcome(
            account_id=account_id,
            status=UploadStatus.PARTIAL_FAILURE,
            accepted_count=accepted_count,
            rejected_count=rejected_count,
            diagnostic={"partial_failure": raw.partial_failure_message, "rejected": raw.rejected},
        )

    if accepted_count > 0:
        return UploadOutcome(
            account_id=account_id,
            status=UploadStatus.SUCCEEDED,
            accepted_count=accepted_count,
        )

    return UploadOutcome(
        account_id=account_id,
        status=UploadStatus.HARD_FAILURE,
        diagnostic={"kind": "empty_response", "error": "No conversions accepted and no rejection details returned"},
    )


async def upload_group(
    group: AccountGroup,
    uploader: ConversionUploader,
    timeout: Optional[float] = None,
    semaphore: Optional[asyncio.Semaphore] = None
) -> UploadOutcome:
    """Upload one account group. Never raises; failures become HARD_FAILURE outcomes."""

    async def _submit():
        call = uploader.submit(group.account_id, group.actions, group.click_id)
        if timeout:
            return await asyncio.wait_for(call, timeout)
        return await call

    try:
        if semaphore is not None:
            async with semaphore:
                raw = await _submit()
        else:
            raw = await _submit()
    except Exception as e:
        diagnostic = describe_exception(e)
        logger.error(
            f"Upload failed for customer {group.display_account_id} (click {group.click_id}): {diagnostic}"
        )
        return UploadOutcome(
            account_id=group.display_account_id,
            status=UploadStatus.HARD_FAILURE,
            diagnostic=diagnostic,
        )

    outcome = classify_result(group.display_account_id, raw)

    if outcome.status == UploadStatus.SUCCEEDED:
        logger.info(
            f"Successfully uploaded {outcome.accepted_count} click conversion(s) "
            f"for customer {group.display_account_id} (click {group.click_id})"
        )
    elif outcome.status == UploadStatus.PARTIAL_FAILURE:
        # Expected when the click belongs to another candidate account
        logger.warning(
            f"Partial failure for customer {group.display_account_id} (click {group.click_id}): "
            f"{outcome.accepted_count} accepted, {outcome.rejected_count} rejected - {raw.partial_failure_message}"
        )
    else:
        logger.warning(
            f"No conversions accepted or rejected for customer {group.display_account_id} "
            f"(click {group.click_id}); treating as failure"
        )

    return outcome


async def dispatch_event(
    groups: AccountGroups,
    uploader: ConversionUploader,
    timeout: Optional[float] = None,
    semaphore: Optional[asyncio.Semaphore] = None
) -> List[UploadOutcome]:
    """Upload every account group of one event concurrently.

    Waits for all calls; one account failing or hanging never cancels or
    changes another account's outcome. Outcomes come back in group order.

    timeout is for uploaders without a deadline of their own. Expiry only
    abandons the wait, so a call already sent upstream may still commit.
    """
    tasks = [upload_group(group, uploader, timeout, semaphore) for group in groups]
    return list(await asyncio.gather(*tasks))
