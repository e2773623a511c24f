"""Entity models shared by the validator, the engine and the boundary layers.

Attributes are snake_case in Python. The wire format is camelCase
(`isInitial`, `fromStates`, `currentState`, ...); both spellings are accepted
on input.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Entity(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_json(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


class State(_Entity):
    """A named point in a workflow.

    Flags default to false when omitted. `description` is None when not
    supplied, which is distinct from an empty string.
    """

    id: str
    is_initial: bool = False
    is_final: bool = False
    enabled: bool = False
    description: str | None = None


class WorkflowAction(_Entity):
    """A directed transition rule: usable from `from_states`, lands on `to_state`.

    State references are not checked when the definition is accepted. An action
    with no `from_states` cannot be applied from anywhere.
    """

    id: str
    enabled: bool = False
    from_states: tuple[str, ...] = ()
    to_state: str
    label: str | None = None


class WorkflowDefinition(_Entity):
    """Blueprint of states and actions for one workflow type.

    Read-only once accepted: the model is frozen and its collections are tuples.
    """

    id: str
    states: tuple[State, ...] = ()
    actions: tuple[WorkflowAction, ...] = ()
    description: str | None = None

    def get_state(self, state_id: str) -> State | None:
        for state in self.states:
            if state.id == state_id:
                return state
        return None

    def get_action(self, action_id: str) -> WorkflowAction | None:
        for action in self.actions:
            if action.id == action_id:
                return action
        return None

    def initial_states(self) -> list[State]:
        return [s for s in self.states if s.is_initial]


class HistoryEntry(_Entity):
    action_id: str
    timestamp: datetime


class WorkflowInstance(_Entity):
    """One running execution of a definition.

    Instances are values: applying an action yields a new instance with the
    target state and one more history entry.
    """

    id: str
    workflow_definition_id: str
    current_state: str
    history: tuple[HistoryEntry, ...] = Field(default_factory=tuple)

    def advance(self, *, to_state: str, entry: HistoryEntry) -> WorkflowInstance:
        return self.model_copy(
            update={"current_state": to_state, "history": (*self.history, entry)}
        )
