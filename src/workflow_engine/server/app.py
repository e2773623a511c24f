"""FastAPI app factory.

Endpoints are intentionally thin wrappers over `WorkflowService`. Workflow
errors are translated to HTTP in one place (`_workflow_error_handler`):
missing definitions and instances are 404, every other rule violation is 400.
"""

from __future__ import annotations

import logging
from typing import Any, cast

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from workflow_engine import __version__
from workflow_engine.core.errors import DefinitionNotFound, InstanceNotFound, WorkflowError
from workflow_engine.core.models import WorkflowAction, WorkflowDefinition, WorkflowInstance
from workflow_engine.core.service import WorkflowService
from workflow_engine.server.config import ServerSettings
from workflow_engine.server.models import ErrorResponse, HealthResponse

logger = logging.getLogger(__name__)

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


def _status_for(error: WorkflowError) -> int:
    if isinstance(error, (DefinitionNotFound, InstanceNotFound)):
        return 404
    return 400


async def _workflow_error_handler(_request: Request, exc: WorkflowError) -> JSONResponse:
    status_code = _status_for(exc)
    logger.info(
        "Workflow request rejected",
        extra={"error": exc.kind, "status_code": status_code},
    )
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse.from_error(exc).model_dump(mode="json"),
    )


def create_app(service: WorkflowService | None = None) -> FastAPI:
    settings = ServerSettings()
    if service is None:
        service = WorkflowService.from_settings(settings)

    app = FastAPI(
        title="Workflow Engine",
        version=__version__,
        description="REST API for workflow definitions and their running instances.",
    )

    # Expose settings and service for request handlers that want to read them.
    app.state.settings = settings
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Starlette types the handler argument as Exception; it only ever gets WorkflowError here.
    app.add_exception_handler(WorkflowError, cast(Any, _workflow_error_handler))

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok", version=__version__)

    @app.post(
        "/workflow-definitions",
        response_model=WorkflowDefinition,
        responses=_ERROR_RESPONSES,
    )
    def create_definition(definition: WorkflowDefinition) -> WorkflowDefinition:
        return service.accept_definition(definition)

    @app.get("/workflow-definitions", response_model=list[WorkflowDefinition])
    def list_definitions() -> list[WorkflowDefinition]:
        return service.list_definitions()

    @app.get(
        "/workflow-definitions/{definition_id}",
        response_model=WorkflowDefinition,
        responses=_ERROR_RESPONSES,
    )
    def get_definition(definition_id: str) -> WorkflowDefinition:
        return service.get_definition(definition_id)

    @app.post(
        "/workflow-definitions/{definition_id}/instances",
        response_model=WorkflowInstance,
        responses=_ERROR_RESPONSES,
    )
    def create_instance(definition_id: str) -> WorkflowInstance:
        return service.create_instance(definition_id)

    @app.get("/instances", response_model=list[WorkflowInstance])
    def list_instances(
        definition_id: str | None = Query(default=None, alias="definitionId"),
    ) -> list[WorkflowInstance]:
        return service.list_instances(definition_id=definition_id)

    @app.get(
        "/instances/{instance_id}",
        response_model=WorkflowInstance,
        responses=_ERROR_RESPONSES,
    )
    def get_instance(instance_id: str) -> WorkflowInstance:
        return service.get_instance(instance_id)

    @app.get(
        "/instances/{instance_id}/actions",
        response_model=list[WorkflowAction],
        responses=_ERROR_RESPONSES,
    )
    def list_available_actions(instance_id: str) -> list[WorkflowAction]:
        return service.available_actions(instance_id)

    @app.post(
        "/instances/{instance_id}/actions/{action_id}",
        response_model=WorkflowInstance,
        responses=_ERROR_RESPONSES,
    )
    def apply_action(instance_id: str, action_id: str) -> WorkflowInstance:
        return service.apply_action(instance_id, action_id)

    return app
