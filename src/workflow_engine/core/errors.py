"""Named outcomes for every way a workflow operation can fail.

All failures are deterministic rule violations over caller-supplied data.
None of them is transient, so none of them should be retried.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum


class ErrorCategory(str, Enum):
    STRUCTURAL = "structural"
    LOOKUP = "lookup"
    TRANSITION = "transition"


class WorkflowError(Exception):
    """Base class for workflow rule violations."""

    category: ErrorCategory = ErrorCategory.TRANSITION

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__

    @property
    def ids(self) -> list[str]:
        """Offending ids, when the error reports any."""

        return []


# Structural


class DefinitionRejected(WorkflowError):
    category = ErrorCategory.STRUCTURAL


class DuplicateDefinitionId(DefinitionRejected):
    def __init__(self, definition_id: str) -> None:
        super().__init__("Workflow definition ID already exists.")
        self.definition_id = definition_id

    @property
    def ids(self) -> list[str]:
        return [self.definition_id]


class InvalidInitialStateCount(DefinitionRejected):
    def __init__(self, count: int) -> None:
        super().__init__("A workflow must have exactly one initial state.")
        self.count = count


class _DuplicateIds(DefinitionRejected):
    label = ""

    def __init__(self, duplicate_ids: Sequence[str]) -> None:
        self.duplicate_ids = list(duplicate_ids)
        super().__init__(f"Duplicate {self.label} IDs found: {', '.join(self.duplicate_ids)}")

    @property
    def ids(self) -> list[str]:
        return list(self.duplicate_ids)


class DuplicateStateId(_DuplicateIds):
    label = "state"


class DuplicateActionId(_DuplicateIds):
    label = "action"


# Lookup


class NotFoundError(WorkflowError):
    category = ErrorCategory.LOOKUP


class DefinitionNotFound(NotFoundError):
    def __init__(self, definition_id: str) -> None:
        super().__init__("Workflow definition not found.")
        self.definition_id = definition_id


class InstanceNotFound(NotFoundError):
    def __init__(self, instance_id: str) -> None:
        super().__init__("Workflow instance not found.")
        self.instance_id = instance_id


class ActionNotFound(NotFoundError):
    def __init__(self, action_id: str) -> None:
        super().__init__("Action does not exist in this workflow.")
        self.action_id = action_id


# Transition


class InvalidTransition(WorkflowError):
    category = ErrorCategory.TRANSITION


class NoValidInitialState(InvalidTransition):
    def __init__(self, definition_id: str) -> None:
        super().__init__("No enabled initial state found.")
        self.definition_id = definition_id


class ActionDisabled(InvalidTransition):
    def __init__(self, action_id: str) -> None:
        super().__init__("Action is disabled.")
        self.action_id = action_id


class ActionNotAllowedFromState(InvalidTransition):
    def __init__(self, action_id: str, current_state: str) -> None:
        super().__init__("Action not valid from current state.")
        self.action_id = action_id
        self.current_state = current_state


class TargetStateInvalidOrDisabled(InvalidTransition):
    def __init__(self, target_state: str) -> None:
        super().__init__("Target state is invalid or disabled.")
        self.target_state = target_state


class CannotLeaveFinalState(InvalidTransition):
    def __init__(self, current_state: str) -> None:
        super().__init__("Cannot transition from a final state.")
        self.current_state = current_state
