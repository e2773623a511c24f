"""Instance creation and action application.

The gate functions are pure: they take a definition and an instance and either
raise a named error or return a value. `InstanceEngine` adds lookups,
timestamps, persistence and per-instance serialization around them.

Gates for applying an action, in order (first failure wins):

1. instance exists
2. its definition exists
3. the action exists in the definition
4. the action is enabled
5. the current state is one of the action's source states
6. the target state exists and is enabled
7. the current state is not final
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from workflow_engine.core.errors import (
    ActionDisabled,
    ActionNotAllowedFromState,
    ActionNotFound,
    CannotLeaveFinalState,
    DefinitionNotFound,
    InstanceNotFound,
    InvalidTransition,
    NoValidInitialState,
    TargetStateInvalidOrDisabled,
)
from workflow_engine.core.models import (
    HistoryEntry,
    State,
    WorkflowAction,
    WorkflowDefinition,
    WorkflowInstance,
)
from workflow_engine.core.store import DefinitionStore, InstanceStore, KeyedLock

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _new_instance_id() -> str:
    return str(uuid.uuid4())


def select_initial_state(definition: WorkflowDefinition) -> State:
    """The enabled initial state instances start in.

    A disabled initial state blocks new instances without changing the
    definition's shape.
    """

    for state in definition.states:
        if state.is_initial and state.enabled:
            return state
    raise NoValidInitialState(definition.id)


def _check_action(
    definition: WorkflowDefinition, instance: WorkflowInstance, action: WorkflowAction
) -> None:
    if not action.enabled:
        raise ActionDisabled(action.id)

    if instance.current_state not in action.from_states:
        raise ActionNotAllowedFromState(action.id, instance.current_state)

    target = definition.get_state(action.to_state)
    if target is None or not target.enabled:
        raise TargetStateInvalidOrDisabled(action.to_state)

    # An unknown current state carries no metadata, so it is not treated as final.
    current = definition.get_state(instance.current_state)
    if current is not None and current.is_final:
        raise CannotLeaveFinalState(instance.current_state)


def resolve_action(
    definition: WorkflowDefinition, instance: WorkflowInstance, action_id: str
) -> WorkflowAction:
    """Run gates 3-7 and return the action that may fire."""

    action = definition.get_action(action_id)
    if action is None:
        raise ActionNotFound(action_id)
    _check_action(definition, instance, action)
    return action


def transition(
    definition: WorkflowDefinition,
    instance: WorkflowInstance,
    action_id: str,
    *,
    at: datetime,
) -> WorkflowInstance:
    action = resolve_action(definition, instance, action_id)
    return instance.advance(
        to_state=action.to_state,
        entry=HistoryEntry(action_id=action.id, timestamp=at),
    )


def available_actions(
    definition: WorkflowDefinition, instance: WorkflowInstance
) -> list[WorkflowAction]:
    """Actions that would currently pass every gate, in declaration order."""

    allowed: list[WorkflowAction] = []
    for action in definition.actions:
        try:
            _check_action(definition, instance, action)
        except InvalidTransition:
            continue
        allowed.append(action)
    return allowed


class InstanceEngine:
    """Creates instances and applies actions to them.

    Every load-check-commit sequence for one instance id runs under that id's
    lock and under the store's `exclusive()` guard, so concurrent calls on the
    same instance observe each other's result and never interleave history
    entries, even when they come from different engines or processes sharing
    one JSON state path.
    """

    def __init__(
        self,
        definitions: DefinitionStore,
        instances: InstanceStore,
        *,
        clock: Clock = utc_now,
        id_factory: Callable[[], str] = _new_instance_id,
    ) -> None:
        self._definitions = definitions
        self._instances = instances
        self._clock = clock
        self._id_factory = id_factory
        self._locks = KeyedLock()

    def create_instance(self, definition_id: str) -> WorkflowInstance:
        definition = self._definitions.get(definition_id)
        if definition is None:
            raise DefinitionNotFound(definition_id)

        initial = select_initial_state(definition)
        instance = WorkflowInstance(
            id=self._id_factory(),
            workflow_definition_id=definition.id,
            current_state=initial.id,
        )
        with self._locks.hold(instance.id):
            self._instances.put(instance)

        logger.info(
            "Workflow instance created",
            extra={
                "instance_id": instance.id,
                "definition_id": definition.id,
                "state": instance.current_state,
            },
        )
        return instance

    def apply_action(self, instance_id: str, action_id: str) -> WorkflowInstance:
        with self._locks.hold(instance_id), self._instances.exclusive(instance_id):
            instance = self._instances.get(instance_id)
            if instance is None:
                raise InstanceNotFound(instance_id)

            definition = self._definitions.get(instance.workflow_definition_id)
            if definition is None:
                raise DefinitionNotFound(instance.workflow_definition_id)

            updated = transition(
                definition, instance, action_id, at=self._timestamp_for(instance)
            )
            self._instances.put(updated)

        logger.info(
            "Workflow action applied",
            extra={
                "instance_id": instance_id,
                "action_id": action_id,
                "from_state": instance.current_state,
                "to_state": updated.current_state,
            },
        )
        return updated

    def available_actions(self, instance_id: str) -> list[WorkflowAction]:
        instance = self._instances.get(instance_id)
        if instance is None:
            raise InstanceNotFound(instance_id)
        definition = self._definitions.get(instance.workflow_definition_id)
        if definition is None:
            raise DefinitionNotFound(instance.workflow_definition_id)
        return available_actions(definition, instance)

    def _timestamp_for(self, instance: WorkflowInstance) -> datetime:
        now = self._clock()
        # History timestamps never go backwards, even if the wall clock does.
        if instance.history and now < instance.history[-1].timestamp:
            return instance.history[-1].timestamp
        return now
