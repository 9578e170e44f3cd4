"""Pub/Sub pull subscription adapter."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from google.api_core.exceptions import DeadlineExceeded
from google.cloud.pubsub_v1 import SubscriberClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueMessage:
    ack_id: str
    data: bytes
    message_id: Optional[str] = None
    publish_time: Optional[datetime] = None


class PubSubQueue:
    """Synchronous-pull access to one subscription, exposed as coroutines."""

    def __init__(self, subscriber: SubscriberClient, project_id: str, subscription_id: str, pull_timeout: float = 30.0):
        self.subscriber = subscriber
        self.subscription_path = subscriber.subscription_path(project_id, subscription_id)
        self.pull_timeout = pull_timeout

    async def pull(self, max_messages: int) -> List[QueueMessage]:
        def _pull():
            try:
                response = self.subscriber.pull(
                    request={"subscription": self.subscription_path, "max_messages": max_messages},
                    timeout=self.pull_timeout,
                )
            except DeadlineExceeded:
                # Nothing arrived before the deadline
                return []
            return [
                QueueMessage(
                    ack_id=received.ack_id,
                    data=received.message.data,
                    message_id=received.message.message_id,
                    publish_time=received.message.publish_time,
                )
                for received in response.received_messages
            ]

        loop = asyncio.get_event_loop()
        messages = await loop.run_in_executor(None, _pull)
        logger.info(f"Received {len(messages)} messages from {self.subscription_path}.")
        return messages

    async def acknowledge(self, ack_ids: List[str]) -> None:
        def _ack():
            self.subscriber.acknowledge(
                request={"subscription": self.subscription_path, "ack_ids": ack_ids}
            )

        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, _ack)
