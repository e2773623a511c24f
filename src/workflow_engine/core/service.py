"""Boundary-facing operations over the workflow core.

Both the REST server and the CLI talk to the engine through this facade. It
owns no rules of its own: lookups that miss raise the matching NotFound error,
everything else is delegated to the validator and the instance engine.
"""

from __future__ import annotations

from workflow_engine.core.config import EngineSettings
from workflow_engine.core.errors import DefinitionNotFound, InstanceNotFound
from workflow_engine.core.instances import Clock, InstanceEngine, utc_now
from workflow_engine.core.models import WorkflowAction, WorkflowDefinition, WorkflowInstance
from workflow_engine.core.store import (
    DefinitionStore,
    InMemoryDefinitionStore,
    InMemoryInstanceStore,
    InstanceStore,
    build_stores,
)
from workflow_engine.core.validator import DefinitionValidator


class WorkflowService:
    """High-level, testable workflow operations."""

    def __init__(
        self,
        *,
        definitions: DefinitionStore,
        instances: InstanceStore,
        clock: Clock = utc_now,
    ) -> None:
        self.definitions = definitions
        self.instances = instances
        self._validator = DefinitionValidator(definitions)
        self._engine = InstanceEngine(definitions, instances, clock=clock)

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> WorkflowService:
        definitions, instances = build_stores(settings)
        return cls(definitions=definitions, instances=instances)

    @classmethod
    def in_memory(cls, *, clock: Clock = utc_now) -> WorkflowService:
        return cls(
            definitions=InMemoryDefinitionStore(),
            instances=InMemoryInstanceStore(),
            clock=clock,
        )

    def accept_definition(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        return self._validator.accept(definition)

    def get_definition(self, definition_id: str) -> WorkflowDefinition:
        definition = self.definitions.get(definition_id)
        if definition is None:
            raise DefinitionNotFound(definition_id)
        return definition

    def list_definitions(self) -> list[WorkflowDefinition]:
        return self.definitions.list()

    def create_instance(self, definition_id: str) -> WorkflowInstance:
        return self._engine.create_instance(definition_id)

    def apply_action(self, instance_id: str, action_id: str) -> WorkflowInstance:
        return self._engine.apply_action(instance_id, action_id)

    def get_instance(self, instance_id: str) -> WorkflowInstance:
        instance = self.instances.get(instance_id)
        if instance is None:
            raise InstanceNotFound(instance_id)
        return instance

    def list_instances(self, *, definition_id: str | None = None) -> list[WorkflowInstance]:
        return self.instances.list(definition_id=definition_id)

    def available_actions(self, instance_id: str) -> list[WorkflowAction]:
        return self._engine.available_actions(instance_id)
