"""
Event Bus - post-commit hand-offs for the case lifecycle.

Services publish after their unit of work is committed. Subscribers (the
notification dispatcher) run as background tasks, so publish returns as soon
as they are scheduled. A failing subscriber is logged and never affects the
operation that published the event.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from app.core.utc import utc_now

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Case lifecycle events"""
    CASE_REGISTERED = "case_registered"
    CASE_NOTIFIED = "case_notified"
    EVIDENCE_ATTACHED = "evidence_attached"
    DEFENSE_SUBMITTED = "defense_submitted"
    DECISION_RECORDED = "decision_recorded"
    NOTIFICATION_SEND_FAILED = "notification_send_failed"


@dataclass
class Event:
    """Event data structure"""
    type: EventType
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=utc_now)
    source: str = "system"
    actor_id: Optional[str] = None


class EventBus:
    """
    Process-wide event bus.
    Singleton pattern - one bus for entire application.
    """
    _instance: Optional["EventBus"] = None
    _initialized: bool = False

    def __new__(cls) -> "EventBus":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._async_subscribers: Dict[EventType, List[Callable]] = {}
        self._event_history: List[Event] = []
        self._pending: Set[asyncio.Task] = set()
        self._max_history = 1000
        self._initialized = True

    def subscribe_async(self, event_type: EventType, callback: Callable) -> None:
        """Subscribe an async callback to an event type"""
        self._async_subscribers.setdefault(event_type, []).append(callback)
        logger.debug("Async subscribed to %s: %s", event_type.value, callback.__name__)

    def unsubscribe(self, event_type: EventType, callback: Callable) -> None:
        """Unsubscribe a callback from an event type"""
        if event_type in self._async_subscribers:
            self._async_subscribers[event_type] = [
                cb for cb in self._async_subscribers[event_type] if cb != callback
            ]

    async def publish(
        self,
        event_type: EventType,
        data: Dict[str, Any],
        source: str = "system",
        actor_id: Optional[str] = None,
    ) -> Event:
        """
        Publish an event to all subscribers.
        Returns the created event.
        """
        event = Event(type=event_type, data=data, source=source, actor_id=actor_id)

        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history:]

        logger.info("Event: %s from %s", event_type.value, source)

        for callback in self._async_subscribers.get(event_type, []):
            task = asyncio.create_task(self._run_subscriber(callback, event))
            self._pending.add(task)
            task.add_done_callback(self._task_done)

        return event

    async def _run_subscriber(self, callback: Callable, event: Event) -> None:
        try:
            await callback(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Async subscriber %s failed on %s: %s", callback.__name__, event.type.value, e)

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Subscriber task crashed: %s", task.exception())

    @property
    def pending(self) -> int:
        """Subscriber tasks still running"""
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every scheduled subscriber to finish (shutdown, tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def get_history(
        self,
        event_type: Optional[EventType] = None,
        case_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[Event]:
        """Get recent events from history"""
        events = self._event_history
        if event_type:
            events = [e for e in events if e.type == event_type]
        if case_id:
            events = [e for e in events if e.data.get("case_id") == case_id]
        return events[-limit:]

    def clear_history(self) -> None:
        self._event_history = []


# Global singleton instance
event_bus = EventBus()


async def publish_event(
    event_type: EventType,
    data: Dict[str, Any],
    source: str = "system",
    actor_id: Optional[str] = None,
) -> Event:
    """Publish an event to the bus"""
    return await event_bus.publish(event_type, data, source, actor_id)


def subscribe_async_to_event(event_type: EventType, callback: Callable) -> None:
    """Subscribe async to an event type"""
    event_bus.subscribe_async(event_type, callback)
