"""
Domain event dispatch for the notification collaborator.

The core publishes an event after every committed status change and refund.
Delivery (push, SMS, in-app) is done by subscribers registered by the
notification collaborator; a failing subscriber is logged and never affects
the state that was already committed.
"""

import logging
import threading
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from utils.datetime_utils import clinic_now

logger = logging.getLogger(__name__)


class AppointmentEventType(str, Enum):
    STATUS_CHANGED = "status_changed"
    REFUND_ISSUED = "refund_issued"


class AppointmentEvent(BaseModel):
    """Event payload delivered to subscribers."""
    appointment_id: int
    type: AppointmentEventType
    payload: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=clinic_now)


EventHandler = Callable[[AppointmentEvent], None]


class EventDispatcher:
    """Synchronous in-process publish/subscribe hub."""

    def __init__(self) -> None:
        self._handlers: List[EventHandler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: EventHandler) -> None:
        with self._lock:
            if handler not in self._handlers:
                self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def publish(self, event: AppointmentEvent) -> None:
        """Deliver an event to every subscriber, isolating subscriber failures."""
        with self._lock:
            handlers = list(self._handlers)

        logger.info(f"Publishing {event.type.value} event for appointment {event.appointment_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # Log but don't fail - notification failure shouldn't undo committed state
                logger.exception(f"Event handler {handler!r} failed for appointment {event.appointment_id}: {e}")


def _json_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


class EventService:
    """Helpers that build and publish the core's events."""

    @staticmethod
    def status_changed(
        appointment_id: int,
        previous_status: Any,
        new_status: Any,
        schedule_id: int,
        token_number: int,
        patient_id: Optional[int],
        notes: Optional[str] = None,
        is_eligible_for_refund: bool = False,
    ) -> AppointmentEvent:
        event = AppointmentEvent(
            appointment_id=appointment_id,
            type=AppointmentEventType.STATUS_CHANGED,
            payload={
                "previous_status": _json_safe(previous_status),
                "new_status": _json_safe(new_status),
                "schedule_id": schedule_id,
                "token_number": token_number,
                "patient_id": patient_id,
                "notes": notes,
                "is_eligible_for_refund": is_eligible_for_refund,
            },
        )
        event_dispatcher.publish(event)
        return event

    @staticmethod
    def refund_issued(
        appointment_id: int,
        patient_id: int,
        amount: Decimal,
        wallet_transaction_id: int,
        new_balance: Decimal,
        reason: str,
    ) -> AppointmentEvent:
        event = AppointmentEvent(
            appointment_id=appointment_id,
            type=AppointmentEventType.REFUND_ISSUED,
            payload={
                "patient_id": patient_id,
                "amount": _json_safe(amount),
                "wallet_transaction_id": wallet_transaction_id,
                "new_balance": _json_safe(new_balance),
                "reason": reason,
            },
        )
        event_dispatcher.publish(event)
        return event


# Global instance
event_dispatcher = EventDispatcher()
