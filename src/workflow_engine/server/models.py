"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from workflow_engine.core.errors import WorkflowError


class ErrorResponse(BaseModel):
    detail: str
    error: str
    category: Literal["structural", "lookup", "transition"]
    ids: list[str] = Field(default_factory=list)

    @classmethod
    def from_error(cls, error: WorkflowError) -> ErrorResponse:
        return cls(
            detail=error.message,
            error=error.kind,
            category=error.category.value,
            ids=error.ids,
        )


class HealthResponse(BaseModel):
    status: str
    version: str
