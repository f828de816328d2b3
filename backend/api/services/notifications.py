"""Real-time fan-out of ledger changes to connected panel sessions.

Delivery is at-most-once: each subscriber owns a bounded queue and an event
is dropped for a subscriber whose queue is full. Clients recover by reading
the photo feed again, which is always authoritative.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable

from core.background import TaskRunner

from .session_verifier import SessionVerifier
from .twitch_api import TwitchAPIClient

logger = logging.getLogger(__name__)

Forwarder = Callable[[str, dict], Awaitable[None]]


class Subscription:
    """One live connection's view of a channel topic."""

    def __init__(self, channel_id: str, queue_size: int) -> None:
        self.channel_id = channel_id
        self.queue: asyncio.Queue[dict] = asyncio.Queue(maxsize=queue_size)
        self.dropped = 0

    async def next_event(self) -> dict:
        return await self.queue.get()


class NotificationHub:
    """Per-process registry of channel id -> live subscriptions."""

    def __init__(
        self,
        runner: TaskRunner,
        queue_size: int = 32,
        forwarder: Forwarder | None = None,
    ) -> None:
        self.runner = runner
        self.queue_size = queue_size
        self.forwarder = forwarder
        self._subscribers: dict[str, set[Subscription]] = defaultdict(set)

    def subscribe(self, channel_id: str) -> Subscription:
        subscription = Subscription(channel_id, self.queue_size)
        self._subscribers[channel_id].add(subscription)
        logger.debug(f"Subscribed to {channel_id} ({self.subscriber_count(channel_id)} live)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subs = self._subscribers.get(subscription.channel_id)
        if subs is None:
            return
        subs.discard(subscription)
        if not subs:
            del self._subscribers[subscription.channel_id]

    def subscriber_count(self, channel_id: str) -> int:
        return len(self._subscribers.get(channel_id, ()))

    def publish(self, channel_id: str, event: dict) -> int:
        """Queue *event* for every subscriber of the channel without waiting.

        Returns the number of local subscribers that accepted the event.
        """
        if "type" not in event:
            raise ValueError("event requires a 'type' field")

        delivered = 0
        for subscription in list(self._subscribers.get(channel_id, ())):
            try:
                subscription.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                subscription.dropped += 1
                logger.debug(f"Dropped {event['type']} event for a slow subscriber on {channel_id}")

        if self.forwarder is not None:
            self.runner.spawn(self.forwarder(channel_id, event), name=f"pubsub:{channel_id}")

        return delivered


class ExtensionPubSubForwarder:
    """Forward hub events to Twitch Extension PubSub (``broadcast`` target)."""

    def __init__(
        self, twitch_api: TwitchAPIClient, verifier: SessionVerifier, owner_user_id: str
    ) -> None:
        self.twitch_api = twitch_api
        self.verifier = verifier
        self.owner_user_id = owner_user_id

    async def __call__(self, channel_id: str, event: dict) -> None:
        token = self.verifier.sign_external_token(self.owner_user_id, channel_id=channel_id)
        await self.twitch_api.send_extension_pubsub(channel_id, event, token)
