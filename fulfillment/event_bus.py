# fulfillment/event_bus.py
import inspect
from typing import Any, Awaitable, Callable, Dict, Union

from utils.logger import logger

Handler = Callable[[Any], Union[None, Awaitable[None]]]


class EventBus:
    """
    Lightweight async pub/sub for proposal lifecycle events.
    """

    def __init__(self) -> None:
        self._subs: Dict[str, list[Handler]] = {}

    def subscribe(self, topic: str, handler: Handler) -> None:
        """Register a sync or async callback for a topic."""
        self._subs.setdefault(topic, []).append(handler)

    async def publish(self, topic: str, payload: Any) -> None:
        """Deliver an event to subscribers in registration order; a failing handler does not stop the others."""
        for h in self._subs.get(topic, []):
            try:
                res = h(payload)
                if inspect.isawaitable(res):
                    await res
            except Exception as e:
                logger.opt(exception=e).error(f"[event_bus] handler {getattr(h, '__qualname__', h)} failed on {topic}: {e}")


# Common topics
TOPIC_PROPOSAL_RESOLVED = "proposal.resolved"
