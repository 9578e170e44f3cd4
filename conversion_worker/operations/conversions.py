"""Click conversion uploads through the Google Ads ConversionUploadService."""

import asyncio
import logging
from concurrent.futures import Executor
from typing import Any, Dict, List, Optional, Sequence
from google.ads.googleads.client import GoogleAdsClient
from conversion_worker.models import ConversionAction, RawUploadResult, format_conversion_date_time

logger = logging.getLogger(__name__)


def _rejected_index(error) -> Optional[int]:
    """Operation index an error points at, e.g. conversions[2] -> 2."""
    for element in error.location.field_path_elements:
        if element.field_name == "conversions":
            return element.index
    return None


def summarize_response(response, actions: Sequence[ConversionAction], failure_type) -> RawUploadResult:
    """Split an UploadClickConversionsResponse into accepted and rejected items.

    With partial_failure enabled, a rejected row comes back as an empty result
    and is described in partial_failure_error, whose details deserialize to
    GoogleAdsFailure messages pointing at the row index.
    """

    accepted: List[Dict[str, Any]] = []
    for index, result in enumerate(response.results):
        if result.gclid:
            accepted.append({
                "index": index,
                "conversion_action": result.conversion_action,
                "conversion_date_time": result.conversion_date_time,
            })

    partial_failure = getattr(response, "partial_failure_error", None)
    if partial_failure is None or not partial_failure.code:
        return RawUploadResult(accepted=accepted)

    rejected: Dict[int, Dict[str, Any]] = {}
    for detail in partial_failure.details:
        failure = failure_type.deserialize(detail.value)
        for error in failure.errors:
            index = _rejected_index(error)
            if index is None:
                continue
            entry = rejected.setdefault(index, {
                "index": index,
                "conversion_action_id": actions[index].conversion_action_id if index < len(actions) else None,
                "errors": [],
            })
            entry["errors"].append(error.message)

    if not rejected:
        # Failure without row locations: every row that did not come back is rejected
        accepted_indexes = {item["index"] for item in accepted}
        for index, action in enumerate(actions):
            if index not in accepted_indexes:
                rejected[index] = {
                    "index": index,
                    "conversion_action_id": action.conversion_action_id,
                    "errors": [partial_failure.message],
                }

    return RawUploadResult(
        accepted=accepted,
        rejected=[rejected[index] for index in sorted(rejected)],
        partial_failure_message=partial_failure.message,
    )


class GoogleAdsConversionUploader:
    """Submits one account's click conversions in a single request.

    timeout is the gRPC deadline of each call. It starts when the call is
    made on the worker thread, so time spent waiting for a free executor
    thread never counts against it. Pass an executor sized to the upload
    concurrency to keep uploads from queueing behind other blocking work.
    """

    def __init__(
        self,
        client: GoogleAdsClient,
        validate_only: bool = False,
        timeout: Optional[float] = None,
        executor: Optional[Executor] = None
    ):
        self.client = client
        self.validate_only = validate_only
        self.timeout = timeout
        self.executor = executor

    def build_request(self, account_id: str, actions: Sequence[ConversionAction], click_id: str):
        conversion_action_service = self.client.get_service("ConversionActionService")
        request = self.client.get_type("UploadClickConversionsRequest")
        request.customer_id = account_id
        request.partial_failure = True
        request.validate_only = self.validate_only

        for action in actions:
            conversion = self.client.get_type("ClickConversion")
            conversion.gclid = click_id
            conversion.conversion_action = conversion_action_service.conversion_action_path(
                account_id, action.conversion_action_id
            )
            conversion.conversion_date_time = format_conversion_date_time(action.occurred_at)
            request.conversions.append(conversion)

        return request

    async def submit(self, account_id: str, actions: Sequence[ConversionAction], click_id: str) -> RawUploadResult:
        """Upload actions for one account. Raises on transport, auth and request errors."""

        def _upload():
            service = self.client.get_service("ConversionUploadService")
            request = self.build_request(account_id, actions, click_id)

            # Single attempt: redelivery of the message is the retry mechanism
            response = service.upload_click_conversions(request=request, retry=None, timeout=self.timeout)

            failure_type = type(self.client.get_type("GoogleAdsFailure"))
            result = summarize_response(response, actions, failure_type)

            if self.validate_only and not result.rejected:
                # validate_only responses carry no results; a clean validation counts as accepted
                result = RawUploadResult(
                    accepted=[{"index": index, "validated_only": True} for index in range(len(actions))],
                )

            logger.debug(
                f"Upload response for customer {account_id} (click {click_id}): "
                f"{len(result.accepted)} accepted, {len(result.rejected)} rejected"
            )
            return result

        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self.executor, _upload)
