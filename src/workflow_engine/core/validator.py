"""Acceptance rules for workflow definitions.

Checks run in a fixed order and the first failure wins:

1. the definition id is not already stored
2. exactly one state is marked initial
3. state ids are unique
4. action ids are unique

State references inside actions are deliberately not checked here. A dangling
`to_state` surfaces later, when the action is applied.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable

from workflow_engine.core.errors import (
    DefinitionRejected,
    DuplicateActionId,
    DuplicateDefinitionId,
    DuplicateStateId,
    InvalidInitialStateCount,
)
from workflow_engine.core.models import WorkflowDefinition
from workflow_engine.core.store import DefinitionStore

logger = logging.getLogger(__name__)


def find_duplicates(ids: Iterable[str]) -> list[str]:
    """Ids occurring more than once, each reported once, in first-occurrence order."""

    return [item for item, count in Counter(ids).items() if count > 1]


def check_definition(definition: WorkflowDefinition) -> None:
    """Structural checks over the definition's own contents (rules 2-4)."""

    initial_count = len(definition.initial_states())
    if initial_count != 1:
        raise InvalidInitialStateCount(initial_count)

    duplicate_states = find_duplicates(s.id for s in definition.states)
    if duplicate_states:
        raise DuplicateStateId(duplicate_states)

    duplicate_actions = find_duplicates(a.id for a in definition.actions)
    if duplicate_actions:
        raise DuplicateActionId(duplicate_actions)


class DefinitionValidator:
    """Accept-or-reject gate in front of the definition store."""

    def __init__(self, store: DefinitionStore) -> None:
        self._store = store

    def accept(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        try:
            if self._store.contains(definition.id):
                raise DuplicateDefinitionId(definition.id)
            check_definition(definition)
            # Another caller may have stored the same id since the check above.
            if not self._store.add(definition):
                raise DuplicateDefinitionId(definition.id)
        except DefinitionRejected as e:
            logger.info(
                "Workflow definition rejected",
                extra={"definition_id": definition.id, "error": e.kind, "ids": e.ids},
            )
            raise

        logger.info(
            "Workflow definition accepted",
            extra={
                "definition_id": definition.id,
                "states": len(definition.states),
                "actions": len(definition.actions),
            },
        )
        return definition
