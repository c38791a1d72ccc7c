"""Keyframe requests for freshly created egress video consumers."""

from __future__ import annotations

import asyncio
import logging

from aioroomcast.engine import Consumer

logger = logging.getLogger(__name__)


async def retry_keyframe(consumer: Consumer, attempts: int, interval: float) -> int:
    """
    Request a keyframe ``attempts`` times, waiting ``interval`` seconds in between.

    A new consumer may not carry a decodable frame until the producer's next
    natural keyframe. The engine only acknowledges that a request was accepted,
    not that a keyframe was delivered, so every attempt is issued regardless of
    the outcome of the previous one. Failed requests are logged and skipped.

    Returns:
        The number of requests the engine accepted.
    """
    accepted = 0
    for attempt in range(1, attempts + 1):
        if attempt > 1:
            await asyncio.sleep(interval)
        try:
            await consumer.request_key_frame()
        except Exception as err:  # noqa: BLE001
            logger.warning(
                "Keyframe request %d/%d for consumer %s failed: %s",
                attempt,
                attempts,
                consumer.id,
                err,
            )
        else:
            accepted += 1
    logger.debug(
        "Keyframe requests for consumer %s: %d/%d accepted", consumer.id, accepted, attempts
    )
    return accepted
