"""
In-process broadcast transport for live poll updates.

Channels are named ``poll.<poll_id>``. Each subscriber owns a bounded asyncio
queue bound to the event loop it subscribed from; ``publish`` may be called
from any thread (request handlers, the sweep scheduler) and hands messages to
the subscriber's loop with ``call_soon_threadsafe``.

Delivery is at-most-once: a full queue drops the message and nothing is
persisted. Subscribers resynchronize by reading the tally again.
"""
import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_QUEUE_SIZE = 100


def poll_channel(poll_id: int) -> str:
    """Channel name for a poll."""
    return f"poll.{poll_id}"


@dataclass(eq=False)
class Subscription:
    channel: str
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue = field(repr=False)
    dropped: int = 0

    async def get(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Wait for the next message; None on timeout."""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None


class BroadcastHub:
    """Thread-safe publish/subscribe registry."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()
        self._queue_size = queue_size

    def subscribe(self, channel: str) -> Subscription:
        """Register a subscriber. Must be called from inside a running event loop."""
        loop = asyncio.get_running_loop()
        subscription = Subscription(
            channel=channel,
            loop=loop,
            queue=asyncio.Queue(maxsize=self._queue_size),
        )
        with self._lock:
            self._subscriptions.setdefault(channel, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscriptions.get(subscription.channel, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.channel, None)

    def subscriber_count(self, channel: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(channel, []))

    def publish(self, channel: str, payload: Dict[str, Any]) -> int:
        """
        Hand ``payload`` to every current subscriber of ``channel``.

        Returns:
            Number of subscribers the message was scheduled for
        """
        with self._lock:
            subscribers = list(self._subscriptions.get(channel, []))

        scheduled = 0
        for subscription in subscribers:
            try:
                subscription.loop.call_soon_threadsafe(_offer, subscription, payload)
                scheduled += 1
            except RuntimeError:
                # Loop already closed; the subscriber is gone
                self.unsubscribe(subscription)
        return scheduled


def _offer(subscription: Subscription, payload: Dict[str, Any]) -> None:
    try:
        subscription.queue.put_nowait(payload)
    except asyncio.QueueFull:
        subscription.dropped += 1
        logger.warning(
            "broadcast_message_dropped",
            channel=subscription.channel,
            dropped=subscription.dropped,
        )


# Global hub shared by the API and the scheduler
hub = BroadcastHub()
