# phase_engine/events/event_bus.py
"""
In-process async event bus.

Handlers are awaited in registration order; a failing handler is logged
and does not stop the others or the emitter.
"""
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[None]]


class PhaseEvents:
    """Event names."""
    SUBSCRIPTION_CHANGED = "subscription_changed"
    MEMBER_REGISTERED = "member_registered"
    REWARD_GRANTED = "reward_granted"
    WALLET_CREDITED = "wallet_credited"
    PAYOUT_COMPLETED = "payout_completed"


class EventBus:

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, event: str, handler: Handler):
        if handler not in self._handlers[event]:
            self._handlers[event].append(handler)

    def unsubscribe(self, event: str, handler: Handler):
        if handler in self._handlers[event]:
            self._handlers[event].remove(handler)

    def clear(self):
        self._handlers.clear()

    def handlerCount(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    async def emit(self, event: str, data: Dict[str, Any]):
        """
        Deliver an event to every subscribed handler.

        Args:
            event: Event name from PhaseEvents
            data: Event payload
        """
        handlers = list(self._handlers.get(event, []))
        if not handlers:
            logger.debug(f"No handlers for event {event}")
            return

        for handler in handlers:
            try:
                await handler(data)
            except Exception as e:
                logger.error(
                    f"Handler {getattr(handler, '__name__', handler)} failed for {event}: {e}",
                    exc_info=True
                )


eventBus = EventBus()
