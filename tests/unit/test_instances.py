"""Unit tests for instance creation and action application.

These tests assert that every gate fails loudly, in order, and that a failed
call leaves the stored instance untouched.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from workflow_engine.core.errors import (
    ActionDisabled,
    ActionNotAllowedFromState,
    ActionNotFound,
    CannotLeaveFinalState,
    DefinitionNotFound,
    InstanceNotFound,
    NoValidInitialState,
    TargetStateInvalidOrDisabled,
    WorkflowError,
)
from workflow_engine.core.instances import (
    InstanceEngine,
    available_actions,
    select_initial_state,
    transition,
)
from workflow_engine.core.models import (
    HistoryEntry,
    State,
    WorkflowAction,
    WorkflowDefinition,
    WorkflowInstance,
)
from workflow_engine.core.store import (
    InMemoryDefinitionStore,
    InMemoryInstanceStore,
    JsonDefinitionStore,
    JsonInstanceStore,
)

T0 = datetime(2025, 1, 1, tzinfo=UTC)


def _engine(
    *definitions: WorkflowDefinition, clock=None
) -> tuple[InstanceEngine, InMemoryInstanceStore]:
    definition_store = InMemoryDefinitionStore()
    for definition in definitions:
        definition_store.add(definition)
    instance_store = InMemoryInstanceStore()
    kwargs = {"clock": clock} if clock is not None else {}
    return InstanceEngine(definition_store, instance_store, **kwargs), instance_store


def _instance(state: str, definition_id: str = "order") -> WorkflowInstance:
    return WorkflowInstance(id="i-1", workflow_definition_id=definition_id, current_state=state)


def test_select_initial_state(order_definition: WorkflowDefinition) -> None:
    assert select_initial_state(order_definition).id == "new"


def test_disabled_initial_state_blocks_creation(order_definition: WorkflowDefinition) -> None:
    disabled = order_definition.model_copy(
        update={
            "states": (
                State(id="new", is_initial=True, enabled=False),
                *order_definition.states[1:],
            )
        }
    )
    engine, instances = _engine(disabled)
    with pytest.raises(NoValidInitialState):
        engine.create_instance("order")
    assert instances.list() == []

    # Re-enabled (as a separately registered definition) the same shape starts normally.
    engine, _ = _engine(order_definition)
    instance = engine.create_instance("order")
    assert instance.current_state == "new"
    assert instance.history == ()


def test_create_instance_requires_known_definition() -> None:
    engine, _ = _engine()
    with pytest.raises(DefinitionNotFound):
        engine.create_instance("missing")


def test_create_instance_generates_unique_ids(order_definition: WorkflowDefinition) -> None:
    engine, instances = _engine(order_definition)
    first = engine.create_instance("order")
    second = engine.create_instance("order")

    assert first.id != second.id
    assert instances.get(first.id) == first
    assert {i.id for i in instances.list(definition_id="order")} == {first.id, second.id}


def test_transition_is_pure(order_definition: WorkflowDefinition) -> None:
    before = _instance("new")
    after = transition(order_definition, before, "ship", at=T0)

    assert before.current_state == "new"
    assert before.history == ()
    assert after.current_state == "shipped"
    assert after.history == (HistoryEntry(action_id="ship", timestamp=T0),)


def test_unknown_action(order_definition: WorkflowDefinition) -> None:
    with pytest.raises(ActionNotFound):
        transition(order_definition, _instance("new"), "teleport", at=T0)


@pytest.mark.parametrize("state", ["new", "shipped", "closed"])
def test_disabled_action_fails_from_any_state(
    order_definition: WorkflowDefinition, state: str
) -> None:
    definition = order_definition.model_copy(
        update={
            "actions": (
                WorkflowAction(
                    id="ship",
                    enabled=False,
                    from_states=("new", "shipped", "closed"),
                    to_state="shipped",
                ),
            )
        }
    )
    with pytest.raises(ActionDisabled):
        transition(definition, _instance(state), "ship", at=T0)


def test_action_not_allowed_from_current_state(order_definition: WorkflowDefinition) -> None:
    with pytest.raises(ActionNotAllowedFromState) as exc:
        transition(order_definition, _instance("new"), "close", at=T0)
    assert exc.value.current_state == "new"


def test_action_with_no_source_states_is_never_allowed(
    order_definition: WorkflowDefinition,
) -> None:
    definition = order_definition.model_copy(
        update={"actions": (WorkflowAction(id="ship", enabled=True, to_state="shipped"),)}
    )
    with pytest.raises(ActionNotAllowedFromState):
        transition(definition, _instance("new"), "ship", at=T0)


@pytest.mark.parametrize(
    "target",
    [
        State(id="shipped", enabled=False),
        None,
    ],
)
def test_target_state_missing_or_disabled(
    order_definition: WorkflowDefinition, target: State | None
) -> None:
    states = [s for s in order_definition.states if s.id != "shipped"]
    if target is not None:
        states.append(target)
    definition = order_definition.model_copy(update={"states": tuple(states)})

    with pytest.raises(TargetStateInvalidOrDisabled) as exc:
        transition(definition, _instance("new"), "ship", at=T0)
    assert exc.value.target_state == "shipped"


def test_final_state_blocks_every_action() -> None:
    definition = WorkflowDefinition(
        id="loop",
        states=(
            State(id="open", is_initial=True, enabled=True),
            State(id="done", is_final=True, enabled=True),
        ),
        actions=(
            WorkflowAction(id="finish", enabled=True, from_states=("open",), to_state="done"),
            WorkflowAction(id="reopen", enabled=True, from_states=("done",), to_state="open"),
            WorkflowAction(id="stay", enabled=True, from_states=("done",), to_state="done"),
        ),
    )
    for action_id in ("reopen", "stay"):
        with pytest.raises(CannotLeaveFinalState):
            transition(definition, _instance("done", "loop"), action_id, at=T0)


def test_gates_are_checked_in_order() -> None:
    # The current state is final AND the target is disabled: the target gate comes first.
    definition = WorkflowDefinition(
        id="wf",
        states=(
            State(id="a", is_initial=True, is_final=True, enabled=True),
            State(id="b", enabled=False),
        ),
        actions=(WorkflowAction(id="go", enabled=True, from_states=("a",), to_state="b"),),
    )
    with pytest.raises(TargetStateInvalidOrDisabled):
        transition(definition, _instance("a", "wf"), "go", at=T0)


def test_available_actions(order_definition: WorkflowDefinition) -> None:
    assert [a.id for a in available_actions(order_definition, _instance("new"))] == ["ship"]
    assert [a.id for a in available_actions(order_definition, _instance("shipped"))] == ["close"]
    assert available_actions(order_definition, _instance("closed")) == []


def test_apply_action_lookups() -> None:
    engine, instances = _engine()
    with pytest.raises(InstanceNotFound):
        engine.apply_action("missing", "ship")

    instances.put(_instance("new", definition_id="gone"))
    with pytest.raises(DefinitionNotFound):
        engine.apply_action("i-1", "ship")


def test_failed_apply_leaves_instance_unchanged(order_definition: WorkflowDefinition) -> None:
    engine, instances = _engine(order_definition)
    created = engine.create_instance("order")

    with pytest.raises(WorkflowError):
        engine.apply_action(created.id, "close")

    assert instances.get(created.id) == created


def test_apply_action_appends_one_history_entry(order_definition: WorkflowDefinition) -> None:
    engine, instances = _engine(order_definition, clock=lambda: T0)
    created = engine.create_instance("order")

    updated = engine.apply_action(created.id, "ship")

    assert updated.current_state == "shipped"
    assert updated.history == (HistoryEntry(action_id="ship", timestamp=T0),)
    assert instances.get(created.id) == updated
    assert instances.get(created.id) == updated


def test_history_timestamps_never_decrease(order_definition: WorkflowDefinition) -> None:
    readings = iter([T0, T0 - timedelta(minutes=5)])
    engine, _ = _engine(order_definition, clock=lambda: next(readings))
    created = engine.create_instance("order")

    engine.apply_action(created.id, "ship")
    closed = engine.apply_action(created.id, "close")

    assert [e.timestamp for e in closed.history] == [T0, T0]


def test_concurrent_applies_on_one_instance_are_serialized(
    order_definition: WorkflowDefinition,
) -> None:
    engine, instances = _engine(order_definition)
    created = engine.create_instance("order")

    workers = 8
    barrier = threading.Barrier(workers)
    outcomes: list[object] = []
    outcomes_lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        try:
            result: object = engine.apply_action(created.id, "ship")
        except WorkflowError as e:
            result = e
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    successes = [o for o in outcomes if isinstance(o, WorkflowInstance)]
    failures = [o for o in outcomes if isinstance(o, WorkflowError)]
    assert len(successes) == 1
    assert len(failures) == workers - 1
    assert all(isinstance(f, ActionNotAllowedFromState) for f in failures)

    stored = instances.get(created.id)
    assert stored is not None
    assert [e.action_id for e in stored.history] == ["ship"]


def test_engines_sharing_json_state_apply_one_at_a_time(
    tmp_path: Path, order_definition: WorkflowDefinition
) -> None:
    definitions_path = tmp_path / "definitions.json"
    instances_path = tmp_path / "instances.json"
    JsonDefinitionStore(definitions_path).add(order_definition)

    def json_engine(clock) -> InstanceEngine:
        # Each engine gets its own stores and locks, as a separate CLI or server process would.
        return InstanceEngine(
            JsonDefinitionStore(definitions_path), JsonInstanceStore(instances_path), clock=clock
        )

    other = json_engine(lambda: T0)
    created = other.create_instance("order")
    other_outcome: list[object] = []

    def other_ships() -> None:
        try:
            other_outcome.append(other.apply_action(created.id, "ship"))
        except WorkflowError as e:
            other_outcome.append(e)

    racer = threading.Thread(target=other_ships)

    def clock_between_load_and_commit() -> datetime:
        racer.start()
        racer.join(timeout=0.2)
        assert racer.is_alive(), "second engine was not held back during the first commit"
        return T0

    shipped = json_engine(clock_between_load_and_commit).apply_action(created.id, "ship")
    racer.join(timeout=5)

    assert shipped.current_state == "shipped"
    assert len(other_outcome) == 1
    assert isinstance(other_outcome[0], ActionNotAllowedFromState)

    stored = JsonInstanceStore(instances_path).get(created.id)
    assert stored is not None
    assert stored.current_state == "shipped"
    assert [e.action_id for e in stored.history] == ["ship"]
