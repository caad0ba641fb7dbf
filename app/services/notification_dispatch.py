"""
Notification Dispatcher
Hands lifecycle events to the external messaging service (WhatsApp / email).

The engine never delivers messages itself: it posts a JSON hand-off to
DISPATCH_WEBHOOK_URL and the messaging service reports delivery back through
the /api/notifications callbacks. Hand-offs run after the case change is
committed; a failed post is logged by the event bus and never undoes it.
"""

import logging
from typing import Any, Optional

import httpx

from app.core.config import get_settings
from app.core.event_bus import Event, EventType, event_bus, subscribe_async_to_event

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Posts hand-offs to the messaging service webhook."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.transport = transport
        self.webhook_url = webhook_url if webhook_url is not None else settings.dispatch_webhook_url
        self.timeout = timeout if timeout is not None else settings.dispatch_timeout_seconds

    @property
    def is_available(self) -> bool:
        """Check if a webhook is configured."""
        return bool(self.webhook_url)

    async def dispatch(self, kind: str, recipient: str, payload: dict[str, Any]) -> bool:
        """
        Send one hand-off. Returns False when no webhook is configured.
        Raises httpx.HTTPError when the messaging service refuses it.
        """
        body = {"kind": kind, "recipient": recipient, **payload}
        if not self.is_available:
            logger.info("No dispatch webhook configured, skipping %s for %s", kind, recipient)
            return False

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(self.webhook_url, json=body)
            response.raise_for_status()

        logger.info("Dispatched %s to %s (case %s)", kind, recipient, payload.get("case_id"))
        return True

    # =========================================================================
    # Event handlers
    # =========================================================================

    async def on_defense_submitted(self, event: Event) -> None:
        """Tell the adjudicating manager a defense awaits analysis."""
        await self.dispatch("defense_submitted", "manager", event.data)

    async def on_decision_recorded(self, event: Event) -> None:
        """Tell the resident how their case was decided."""
        await self.dispatch("decision_recorded", "resident", event.data)


_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher


def register_dispatch_handlers(dispatcher: Optional[NotificationDispatcher] = None) -> NotificationDispatcher:
    """Wire the dispatcher to the event bus. Safe to call more than once."""
    global _dispatcher
    dispatcher = dispatcher or get_dispatcher()
    if _dispatcher is not None and _dispatcher is not dispatcher:
        unregister_dispatch_handlers()
    _dispatcher = dispatcher

    event_bus.unsubscribe(EventType.DEFENSE_SUBMITTED, dispatcher.on_defense_submitted)
    event_bus.unsubscribe(EventType.DECISION_RECORDED, dispatcher.on_decision_recorded)
    subscribe_async_to_event(EventType.DEFENSE_SUBMITTED, dispatcher.on_defense_submitted)
    subscribe_async_to_event(EventType.DECISION_RECORDED, dispatcher.on_decision_recorded)
    logger.debug("Notification dispatcher registered")
    return dispatcher


def unregister_dispatch_handlers() -> None:
    global _dispatcher
    if _dispatcher is None:
        return
    event_bus.unsubscribe(EventType.DEFENSE_SUBMITTED, _dispatcher.on_defense_submitted)
    event_bus.unsubscribe(EventType.DECISION_RECORDED, _dispatcher.on_decision_recorded)
    _dispatcher = None
