# mlm_ledger/events/event_bus.py
"""
Event bus for decoupled communication between components.
Services get a bus injected; the module-level instance is the process default.
"""
from typing import Dict, List, Callable, Any
import logging
import asyncio

logger = logging.getLogger(__name__)


class EventBus:
    """
    Simple in-process event bus.
    Handler errors are logged and never reach the emitter.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {}

    def subscribe(self, eventName: str, handler: Callable):
        """Subscribe handler to event."""
        if eventName not in self._handlers:
            self._handlers[eventName] = []

        self._handlers[eventName].append(handler)
        logger.debug(f"Handler {getattr(handler, '__name__', handler)} subscribed to {eventName}")

    def unsubscribe(self, eventName: str, handler: Callable):
        """Unsubscribe handler from event."""
        if handler in self._handlers.get(eventName, []):
            self._handlers[eventName].remove(handler)
            logger.debug(f"Handler {getattr(handler, '__name__', handler)} unsubscribed from {eventName}")

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
                    result = handler(data)
                    if asyncio.iscoroutine(result):
                        await result
            except Exception as e:
                logger.error(f"Error in handler {getattr(handler, '__name__', handler)} for event {eventName}: {e}")

    def hasHandlers(self, eventName: str) -> bool:
        return bool(self._handlers.get(eventName))

    def clear(self):
        """Clear all event handlers."""
        self._handlers.clear()


# Global event bus instance
eventBus = EventBus()


# Predefined events
class MLMEvents:
    """Standard ledger events."""

    INCOME_CREDITED = "income.credited"

    FUND_TRANSFERRED = "fund.transferred"
    FUND_CONVERTED = "fund.converted"
    FUND_ADJUSTED = "fund.adjusted"
    TOPUP_COMPLETED = "topup.completed"

    WITHDRAWAL_REQUESTED = "withdrawal.requested"
    WITHDRAWAL_DEBITED = "withdrawal.debited"
    WITHDRAWAL_STATUS_CHANGED = "withdrawal.status_changed"
    WITHDRAWAL_RECONCILIATION_REQUIRED = "withdrawal.reconciliation_required"

    POOL_REGISTERED = "pool.registered"
    RANK_ACHIEVED = "rank.achieved"

    JOB_COMPLETED = "job.completed"
