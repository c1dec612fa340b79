"""Domain events emitted by the ledger and the sinks that receive them."""

import logging
from datetime import datetime
from typing import Any, Dict, Protocol, runtime_checkable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

PERIOD_CREATED = "ledger.period.created"
PERIOD_CLOSED = "ledger.period.closed"
PERIOD_REOPENED = "ledger.period.reopened"
PERIOD_LOCKED = "ledger.period.locked"
REFUND_PROCESSED = "ledger.refund.processed"
REFUND_APPROVED = "ledger.refund.approved"
REFUND_REJECTED = "ledger.refund.rejected"


class DomainEvent(BaseModel):
    """A fact published after a ledger mutation has been persisted."""
    event_type: str = Field(..., description="Dotted event name")
    occurred_on: datetime = Field(default_factory=datetime.utcnow)
    attributes: Dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class EventSink(Protocol):
    """Anything that accepts published domain events."""

    async def publish(self, event: DomainEvent) -> None:
        ...


class LoggingEventSink:
    """Default sink that writes each event to the log."""

    async def publish(self, event: DomainEvent) -> None:
        logger.info(f"Event {event.event_type}: {event.attributes}")


async def publish_event(sink: EventSink, event: DomainEvent) -> bool:
    """Publish an event without letting sink failures reach the caller.

    Returns:
        True if the sink accepted the event, False if it raised.
    """
    try:
        await sink.publish(event)
    except Exception:
        logger.exception(f"Failed to publish {event.event_type}")
        return False
    return True
