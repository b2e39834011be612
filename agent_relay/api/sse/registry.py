"""
Topic Registry
==============

In-process publish/subscribe keyed by session id.

Detached agent exchanges publish their stream events here and SSE
connections subscribe to relay them. Delivery is synchronous and
at-most-once: nothing is buffered, so a subscriber joining after a publish
does not see it. The registry lives in a single process; it is constructed
explicitly and injected into the application.
"""

from typing import Any, Callable, Dict, List, Set
import threading

from agent_relay.config.logging import get_logger

from .events import StreamEvent

logger = get_logger(__name__)

Subscriber = Callable[[StreamEvent], Any]
Unsubscribe = Callable[[], None]


class _Subscription:
    """One registration of a callback on a topic."""

    __slots__ = ("topic", "callback", "active")

    def __init__(self, topic: str, callback: Subscriber) -> None:
        self.topic = topic
        self.callback = callback
        self.active = True


class TopicRegistry:
    """
    Maps topics (session ids) to their live subscribers.

    Handles:
    - Subscription bookkeeping, pruning topics whose last subscriber left
    - Synchronous fan-out that isolates failing callbacks
    """

    def __init__(self) -> None:
        self._topics: Dict[str, Set[_Subscription]] = {}
        self._lock = threading.RLock()
        self.logger: Any = logger.bind(component="topic_registry")

    def subscribe(self, topic: str, callback: Subscriber) -> Unsubscribe:
        """
        Register a callback for a topic.

        Args:
            topic: Session id to listen on
            callback: Called with every event published after this call

        Returns:
            Idempotent function removing the subscription
        """
        subscription = _Subscription(topic, callback)
        with self._lock:
            subscribers = self._topics.setdefault(topic, set())
            subscribers.add(subscription)
            count = len(subscribers)

        self.logger.debug("Subscribed to topic", topic=topic, subscribers=count)

        def unsubscribe() -> None:
            self._remove(subscription)

        return unsubscribe

    def _remove(self, subscription: _Subscription) -> None:
        with self._lock:
            if not subscription.active:
                return
            subscription.active = False
            subscribers = self._topics.get(subscription.topic)
            if subscribers is None:
                return
            subscribers.discard(subscription)
            remaining = len(subscribers)
            if not subscribers:
                del self._topics[subscription.topic]

        self.logger.debug(
            "Unsubscribed from topic", topic=subscription.topic, subscribers=remaining
        )

    def publish(self, topic: str, event: StreamEvent) -> int:
        """
        Deliver an event to every current subscriber of a topic.

        Args:
            topic: Session id
            event: Event to deliver

        Returns:
            Number of callbacks that accepted the event
        """
        with self._lock:
            subscribers = list(self._topics.get(topic, ()))

        if not subscribers:
            self.logger.debug("No subscribers for topic", topic=topic, event_type=event.event_type.value)
            return 0

        delivered = 0
        for subscription in subscribers:
            # A callback earlier in this loop may have unsubscribed a sibling
            if not subscription.active:
                continue
            try:
                subscription.callback(event)
                delivered += 1
            except Exception as e:
                self.logger.error(
                    "Subscriber callback failed",
                    topic=topic,
                    event_type=event.event_type.value,
                    error_type=type(e).__name__,
                    error=str(e),
                )
        return delivered

    def has_subscribers(self, topic: str) -> bool:
        """Whether a topic currently has at least one subscriber."""
        with self._lock:
            return bool(self._topics.get(topic))

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._topics.get(topic, ()))

    def topic_count(self) -> int:
        with self._lock:
            return len(self._topics)

    def topics(self) -> List[str]:
        with self._lock:
            return list(self._topics)

    def stats(self) -> Dict[str, int]:
        """Subscriber count per active topic."""
        with self._lock:
            return {topic: len(subscribers) for topic, subscribers in self._topics.items()}
