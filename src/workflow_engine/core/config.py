"""Configuration for the workflow engine.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

StorageBackend = Literal["json", "memory"]


class EngineSettings(BaseSettings):
    """Settings for the engine and its storage.

    Environment variables:
    - LOG_LEVEL            (optional)
    - WORKFLOW_STORAGE     (optional, `json` or `memory`)
    - WORKFLOW_STATE_PATH  (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `EngineSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    storage_backend: StorageBackend = Field(
        default="json",
        validation_alias="WORKFLOW_STORAGE",
        description=(
            "Where definitions and instances live. `memory` keeps them for the lifetime "
            "of the process only."
        ),
    )

    state_path: Path = Field(
        default=Path("workflow_state"),
        validation_alias="WORKFLOW_STATE_PATH",
        description="Directory where definitions and instances are persisted (json backend)",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @property
    def definitions_state_file(self) -> Path:
        """Path where accepted workflow definitions are persisted."""

        return self.state_path / "definitions.json"

    @property
    def instances_state_file(self) -> Path:
        """Path where workflow instances are persisted."""

        return self.state_path / "instances.json"
