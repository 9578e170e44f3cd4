"""
Google Ads Conversion Worker

Pulls click-conversion events from Pub/Sub and uploads them to every
candidate Google Ads account:
- Decodes each message; malformed messages are dropped (acknowledged)
- Groups conversion actions per destination account, removing duplicates
- Uploads all accounts of an event concurrently, one attempt each
- Acknowledges an event once any account accepted its conversions;
  events nobody accepted are left for Pub/Sub to redeliver
"""

import asyncio
import logging
import sys
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from dotenv import load_dotenv
from google.cloud.pubsub_v1 import SubscriberClient

from conversion_worker.config import AppConfig, load_config_from_env
from conversion_worker.google_ads_client import initialize_client
from conversion_worker.models import Decision
from conversion_worker.operations.conversions import GoogleAdsConversionUploader
from conversion_worker.operations.acknowledge import MessageResult, acknowledge, select_ack_ids
from conversion_worker.operations.dispatch import ConversionUploader, dispatch_event
from conversion_worker.operations.reconcile import reconcile
from conversion_worker.processors.decoder import DecodeError, decode_event
from conversion_worker.processors.grouper import group_conversions
from conversion_worker.pubsub_queue import PubSubQueue, QueueMessage

logger = logging.getLogger(__name__)

MAX_MESSAGES = 50


class MessageQueue(Protocol):
    async def pull(self, max_messages: int) -> List[QueueMessage]:
        ...

    async def acknowledge(self, ack_ids: List[str]) -> None:
        ...


@dataclass
class BatchReport:
    """Outcome of one worker invocation."""
    pulled: int = 0
    results: List[MessageResult] = field(default_factory=list)
    acknowledged: List[str] = field(default_factory=list)
    ack_succeeded: bool = True

    @property
    def decisions(self) -> Counter:
        counts = Counter()
        for result in self.results:
            if result.error is not None:
                counts["error"] += 1
            elif result.decode_error is not None:
                counts["decode_error"] += 1
            elif result.decision is not None:
                counts[result.decision.overall.value] += 1
        return counts

    @property
    def retried(self) -> List[str]:
        acked = set(self.acknowledged)
        return [result.ack_id for result in self.results if result.ack_id not in acked]

    @property
    def status_code(self) -> int:
        """HTTP status for the trigger: 500 lets the trigger retry when events were left unacknowledged."""
        counts = self.decisions
        if counts[Decision.ALL_FAILED.value] or counts["error"]:
            return 500
        return 200


class ConversionWorker:
    """Processes one pulled batch of conversion events per invocation."""

    def __init__(
        self,
        queue: MessageQueue,
        uploader: ConversionUploader,
        max_messages: int = MAX_MESSAGES,
        upload_timeout: Optional[float] = 30.0,
        max_concurrent_uploads: int = 20
    ):
        self.queue = queue
        self.uploader = uploader
        self.max_messages = max_messages
        self.upload_timeout = upload_timeout
        self.max_concurrent_uploads = max_concurrent_uploads

    async def run_once(self) -> BatchReport:
        """Pull one batch and process it."""
        messages = await self.queue.pull(self.max_messages)
        if not messages:
            logger.info("No messages to process.")
            return BatchReport()
        return await self.process_batch(messages)

    async def process_batch(self, messages: List[QueueMessage]) -> BatchReport:
        """Process every message concurrently, then acknowledge the finished ones."""

        logger.info(f"Processing batch of {len(messages)} messages")
        start_time = time.time()

        # Shared across events so one invocation never floods the API
        semaphore = asyncio.Semaphore(self.max_concurrent_uploads)

        gathered = await asyncio.gather(
            *(self.process_message(message, semaphore) for message in messages),
            return_exceptions=True
        )

        results = []
        for message, result in zip(messages, gathered):
            if isinstance(result, BaseException):
                logger.error(f"Processing failed for message {message.message_id or message.ack_id}: {result}")
                result = MessageResult(ack_id=message.ack_id, error=result)
            results.append(result)

        ack_ids = select_ack_ids(results)
        ack_succeeded = await acknowledge(self.queue, ack_ids)

        report = BatchReport(
            pulled=len(messages),
            results=results,
            acknowledged=ack_ids,
            ack_succeeded=ack_succeeded
        )

        elapsed = time.time() - start_time
        logger.info(
            f"Batch processing finished in {elapsed:.2f}s: {dict(report.decisions)}, "
            f"{len(ack_ids)} acknowledged, {len(report.retried)} left for redelivery"
        )
        return report

    async def process_message(
        self,
        message: QueueMessage,
        semaphore: Optional[asyncio.Semaphore] = None
    ) -> MessageResult:
        """Decode, group, upload and reconcile a single message."""

        try:
            event = decode_event(message.data, received_at=message.publish_time)
        except DecodeError as e:
            logger.error(f"Invalid message format received ({message.message_id or message.ack_id}): {e}")
            return MessageResult(ack_id=message.ack_id, decode_error=e)

        groups = group_conversions(event)
        logger.info(
            f"Click {event.click_id}: uploading {len(event.actions)} action(s) "
            f"to {len(groups)} account(s) {groups.account_ids()}"
        )

        outcomes = await dispatch_event(groups, self.uploader, self.upload_timeout, semaphore)
        decision = reconcile(event.click_id, outcomes)

        if decision.overall == Decision.ALL_FAILED:
            logger.warning(f"No account accepted click {event.click_id}; leaving for redelivery: {decision.summary()}")
        elif decision.overall == Decision.SOME_SUCCEEDED:
            logger.info(f"Click {event.click_id} accepted by some accounts: {decision.summary()}")
        else:
            logger.info(f"Click {event.click_id} accepted by all {len(outcomes)} account(s)")

        return MessageResult(ack_id=message.ack_id, decision=decision)


def build_worker(config: AppConfig) -> ConversionWorker:
    """Construct the API client, uploader and queue once per process.

    The gRPC deadline (UPLOAD_TIMEOUT) is the only bound on an upload; the
    worker adds no asyncio timeout of its own.
    """
    client = initialize_client(config.google_ads)
    uploader = GoogleAdsConversionUploader(
        client,
        validate_only=config.dry_run,
        timeout=config.performance.upload_timeout,
        executor=ThreadPoolExecutor(
            max_workers=config.performance.max_concurrent_uploads,
            thread_name_prefix="gads-upload"
        )
    )
    queue = PubSubQueue(SubscriberClient(), config.pubsub.project_id, config.pubsub.subscription_id)

    logger.info(
        f"Initialized ConversionWorker for {queue.subscription_path} "
        f"(max_messages={config.pubsub.max_messages}, dry_run={config.dry_run})"
    )
    return ConversionWorker(
        queue,
        uploader,
        max_messages=config.pubsub.max_messages,
        upload_timeout=None,
        max_concurrent_uploads=config.performance.max_concurrent_uploads
    )


async def main() -> int:
    """Main entry point: process one batch and exit."""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    try:
        config = load_config_from_env()
        logging.getLogger().setLevel(config.log_level)
        worker = build_worker(config)
        report = await worker.run_once()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1

    logger.info("=" * 60)
    logger.info(f"SUMMARY: {report.pulled} pulled, {len(report.acknowledged)} acknowledged, "
                f"{len(report.retried)} left for redelivery")
    logger.info("=" * 60)
    return 0 if report.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
