"""Test configuration and fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from workflow_engine.core.models import State, WorkflowAction, WorkflowDefinition
from workflow_engine.core.service import WorkflowService


class SteppingClock:
    """Deterministic clock: every call is one second after the previous one."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2025, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        value = self.current
        self.current = value + timedelta(seconds=1)
        return value


@pytest.fixture
def clock() -> SteppingClock:
    """Provide a deterministic clock."""
    return SteppingClock()


@pytest.fixture
def order_definition() -> WorkflowDefinition:
    """Provide the `order` workflow: new -> shipped -> closed."""
    return WorkflowDefinition(
        id="order",
        states=(
            State(id="new", is_initial=True, enabled=True),
            State(id="shipped", enabled=True),
            State(id="closed", is_final=True, enabled=True),
        ),
        actions=(
            WorkflowAction(id="ship", enabled=True, from_states=("new",), to_state="shipped"),
            WorkflowAction(id="close", enabled=True, from_states=("shipped",), to_state="closed"),
        ),
    )


@pytest.fixture
def order_payload() -> dict[str, object]:
    """Provide the `order` workflow as a camelCase wire payload."""
    return {
        "id": "order",
        "description": "Order fulfilment",
        "states": [
            {"id": "new", "isInitial": True, "isFinal": False, "enabled": True},
            {"id": "shipped", "isInitial": False, "isFinal": False, "enabled": True},
            {"id": "closed", "isInitial": False, "isFinal": True, "enabled": True},
        ],
        "actions": [
            {"id": "ship", "enabled": True, "fromStates": ["new"], "toState": "shipped"},
            {"id": "close", "enabled": True, "fromStates": ["shipped"], "toState": "closed"},
        ],
    }


@pytest.fixture
def service(clock: SteppingClock) -> WorkflowService:
    """Provide an in-memory service driven by the deterministic clock."""
    return WorkflowService.in_memory(clock=clock)
