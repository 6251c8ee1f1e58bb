"""In-process asynchronous event bus.

At-least-once delivery with optional scheduled delay. Each delivery runs as
its own asyncio task; a handler that raises or exceeds its timeout is
redelivered until ``max_attempts`` is reached, so handlers must be
idempotent.
"""

import asyncio
import copy
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from app.core.logging import get_logger, log_with_context

logger = get_logger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[None]]

DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_SECONDS = 5.0


@dataclass(frozen=True)
class Subscription:
    topic: str
    handler: Handler
    timeout_seconds: float


class EventBus:
    """Topic-based publish/subscribe over asyncio tasks."""

    def __init__(
        self,
        default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    ):
        """Initialize the bus.

        Args:
            default_timeout_seconds: Handler timeout when a subscription sets none
            max_attempts: Deliveries per (event, subscription) before it is dropped
            retry_delay_seconds: Delay before a failed delivery is retried
        """
        self.default_timeout_seconds = default_timeout_seconds
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._subscriptions: dict[str, list[Subscription]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()
        self._dropped_count = 0

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "topics": sorted(self._subscriptions),
            "pending": len(self._pending),
            "dropped_count": self._dropped_count,
        }

    def subscribe(
        self,
        topic: str,
        handler: Handler,
        timeout_seconds: float | None = None,
    ) -> Subscription:
        """Register ``handler`` for ``topic``."""
        subscription = Subscription(
            topic=topic,
            handler=handler,
            timeout_seconds=timeout_seconds or self.default_timeout_seconds,
        )
        self._subscriptions[topic].append(subscription)
        logger.debug(f"Subscribed {getattr(handler, '__qualname__', handler)} to {topic}")
        return subscription

    async def publish(self, topic: str, payload: dict[str, Any], after_ms: int = 0) -> None:
        """Schedule delivery of ``payload`` to every subscriber of ``topic``.

        Returns as soon as deliveries are scheduled; handlers run later.
        """
        subscriptions = self._subscriptions.get(topic, [])
        if not subscriptions:
            logger.warning(f"No subscribers for topic {topic}, event discarded")
            return

        for subscription in subscriptions:
            self._schedule(subscription, payload, delay_seconds=max(after_ms, 0) / 1000, attempt=1)

    def _schedule(
        self,
        subscription: Subscription,
        payload: dict[str, Any],
        delay_seconds: float,
        attempt: int,
    ) -> None:
        # Each delivery gets its own copy so handlers never share mutable state
        task = asyncio.create_task(
            self._deliver(subscription, copy.deepcopy(payload), delay_seconds, attempt)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(
        self,
        subscription: Subscription,
        payload: dict[str, Any],
        delay_seconds: float,
        attempt: int,
    ) -> None:
        if delay_seconds > 0:
            await asyncio.sleep(delay_seconds)

        try:
            await asyncio.wait_for(
                subscription.handler(payload), timeout=subscription.timeout_seconds
            )
            return
        except asyncio.TimeoutError:
            reason = f"timed out after {subscription.timeout_seconds}s"
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"

        if attempt < self.max_attempts:
            log_with_context(
                logger,
                logging.WARNING,
                f"Handler for {subscription.topic} failed ({reason}), "
                f"redelivering (attempt {attempt + 1}/{self.max_attempts})",
                topic=subscription.topic,
            )
            self._schedule(subscription, payload, self.retry_delay_seconds, attempt + 1)
        else:
            self._dropped_count += 1
            log_with_context(
                logger,
                logging.ERROR,
                f"Handler for {subscription.topic} failed ({reason}), "
                f"giving up after {attempt} attempts",
                topic=subscription.topic,
            )

    async def drain(self) -> None:
        """Wait until no deliveries are pending, including ones scheduled meanwhile."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        """Cancel every pending delivery."""
        for task in list(self._pending):
            task.cancel()
        await asyncio.gather(*list(self._pending), return_exceptions=True)
        self._pending.clear()
