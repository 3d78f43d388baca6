# mlm_engine/events/event_bus.py
"""
Event bus for decoupled communication between components.
Events are emitted only after the write they describe has been committed.
"""
from typing import Dict, List, Callable, Any
import logging
import asyncio

logger = logging.getLogger(__name__)


class EventBus:
    """
    Simple in-process event bus.
    Handler failures are logged and never reach the emitter.
    """

    _instance = None
    _handlers: Dict[str, List[Callable]] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._handlers = {}
        return cls._instance

    def subscribe(self, eventName: str, handler: Callable):
        """Subscribe handler to event."""
        self._handlers.setdefault(eventName, []).append(handler)
        logger.debug(f"Handler {handler.__name__} subscribed to {eventName}")

    def unsubscribe(self, eventName: str, handler: Callable):
        """Unsubscribe handler from event."""
        if handler in self._handlers.get(eventName, []):
            self._handlers[eventName].remove(handler)
            logger.debug(f"Handler {handler.__name__} unsubscribed from {eventName}")

    async def emit(self, eventName: str, data: Dict[str, Any]):
        """Emit event to all subscribers."""
        if eventName not in self._handlers:
            return

        logger.debug(f"Emitting event {eventName} with data: {data}")

        for handler in list(self._handlers[eventName]):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(data)
                else:
                    handler(data)
            except Exception as e:
                logger.error(f"Error in handler {handler.__name__} for event {eventName}: {e}")

    def clear(self):
        """Clear all event handlers."""
        self._handlers.clear()


# Global event bus instance
eventBus = EventBus()


class MLMEvents:
    """Standard MLM engine events."""

    MEMBER_SIGNED_UP = "member.signed_up"
    RANK_ACTIVATED = "rank.activated"

    REFERRAL_BONUS_PAID = "referral_bonus.paid"
    LEVEL_INCOME_PAID = "level_income.paid"
    POOL_INCOME_ACCUMULATED = "pool_income.accumulated"

    CLAIM_ELIGIBILITY_GRANTED = "claim_eligibility.granted"
    INCOME_CLAIMED = "income.claimed"
    LEDGER_ENTRY_REVERSED = "ledger_entry.reversed"
