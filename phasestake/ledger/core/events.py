"""
Event system for ledger lifecycle events.

Provides a simple pub/sub mechanism for committed operations and
settlement passes.

Event types:
    deposited            address, amount, balance, height
    withdrawn            address, amount_paid, amount_requested, unfunded, height
    partially_withdrawn  address, amount_paid, balance, height
    pot_funded           funder, amount, pot, height
    settled              from_block, to_block, total_rewarded, participants
    rewards_calculated   address, reward, height
    operation_failed     op, address, error
"""
from typing import Dict, List, Callable, Any
import logging

logger = logging.getLogger(__name__)


class EventBus:
    """
    Simple event bus for ledger events.

    Events are delivered synchronously in the same thread, after the
    operation that produced them has been committed.
    """

    def __init__(self):
        self.listeners: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """
        Subscribe to an event type.

        Args:
            event_type: Event name (e.g., 'deposited', 'settled')
            callback: Function to call when event is emitted
        """
        if event_type not in self.listeners:
            self.listeners[event_type] = []

        self.listeners[event_type].append(callback)
        logger.debug(f"Subscribed to event: {event_type}")

    def unsubscribe(self, event_type: str, callback: Callable) -> None:
        if event_type in self.listeners:
            try:
                self.listeners[event_type].remove(callback)
                logger.debug(f"Unsubscribed from event: {event_type}")
            except ValueError:
                logger.warning(f"Callback not found for event: {event_type}")

    def emit(self, event_type: str, **data: Any) -> None:
        """
        Emit an event to all subscribers.

        A failing subscriber is logged and skipped; it never affects the
        committed operation or the other subscribers.
        """
        listeners = list(self.listeners.get(event_type, []))

        if not listeners:
            logger.debug(f"No listeners for event: {event_type}")
            return

        logger.debug(f"Emitting event: {event_type} to {len(listeners)} listener(s)")

        for callback in listeners:
            try:
                callback(**data)
            except Exception as e:
                logger.error(f"Error in event callback for {event_type}: {e}", exc_info=True)

    def clear(self, event_type: str = None) -> None:
        """Clear listeners for one event type, or all listeners if no type given."""
        if event_type:
            self.listeners.pop(event_type, None)
            logger.debug(f"Cleared listeners for event: {event_type}")
        else:
            self.listeners.clear()
            logger.debug("Cleared all event listeners")


# Global event bus instance
event_bus = EventBus()
