"""Acknowledgment decisions for a pulled batch of messages."""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol

from conversion_worker.models import Decision, EventDecision
from conversion_worker.processors.decoder import DecodeError

logger = logging.getLogger(__name__)


class AcknowledgingQueue(Protocol):
    async def acknowledge(self, ack_ids: List[str]) -> None:
        ...


@dataclass
class MessageResult:
    """How processing of one pulled message ended."""
    ack_id: str
    decision: Optional[EventDecision] = None
    decode_error: Optional[DecodeError] = None
    error: Optional[BaseException] = None  # Unexpected failure while processing


def should_acknowledge(result: MessageResult) -> bool:
    if result.error is not None:
        return False
    if result.decode_error is not None:
        # Redelivery cannot fix a malformed payload
        return True
    if result.decision is None:
        return False
    return result.decision.overall in (Decision.ALL_SUCCEEDED, Decision.SOME_SUCCEEDED)


def select_ack_ids(results: Iterable[MessageResult]) -> List[str]:
    """Ack ids of every message that must not be redelivered."""
    return [result.ack_id for result in results if should_acknowledge(result)]


async def acknowledge(queue: AcknowledgingQueue, ack_ids: List[str]) -> bool:
    """Acknowledge messages, best effort.

    A failure is logged and reported, never raised; the subscription's ack
    deadline will redeliver the messages.
    """
    if not ack_ids:
        return True

    try:
        await queue.acknowledge(ack_ids)
    except Exception as e:
        logger.critical(f"Failed to acknowledge {len(ack_ids)} Pub/Sub messages: {e}", exc_info=True)
        return False

    logger.info(f"Acknowledged {len(ack_ids)} messages.")
    return True
