"""
Shared fixtures for cancellation tests.
"""

from typing import List
from unittest.mock import AsyncMock

import pytest

from cancellation.domain import CancellationEvent, CancellationEventType
from cancellation.events import EventBus
from cancellation.repositories import DragonPassGateway


class EventRecorder:
    """Subscriber that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: List[CancellationEvent] = []

    async def __call__(self, event: CancellationEvent) -> None:
        self.events.append(event)

    def types(self) -> List[CancellationEventType]:
        return [e.type for e in self.events]

    def of_type(
        self, event_type: CancellationEventType
    ) -> List[CancellationEvent]:
        return [e for e in self.events if e.type is event_type]


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(event_bus: EventBus) -> EventRecorder:
    recorder = EventRecorder()
    for event_type in CancellationEventType:
        event_bus.subscribe(event_type, recorder)
    return recorder


@pytest.fixture
def dragonpass_gateway() -> AsyncMock:
    gateway = AsyncMock(spec=DragonPassGateway)
    gateway.cancel_booking.return_value = {
        "status": "success",
        "cancellation_id": "DP-CXL-1",
        "refund_amount": "100.00",
        "cancellation_fee": "0.00",
        "currency": "USD",
    }
    return gateway
