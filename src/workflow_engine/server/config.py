"""Configuration for the REST server."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from workflow_engine.core.config import EngineSettings


class ServerSettings(EngineSettings):
    """Engine settings plus HTTP-specific options.

    Notes:
        - Storage defaults to JSON files, like the CLI, so both can share state.
          Writes to those files take a cross-process file lock, so CLI and
          server calls on one instance are applied one after the other.
          Set WORKFLOW_STORAGE=memory for a throwaway server.
    """

    # Dev-friendly CORS. Override via WORKFLOW_CORS_ORIGINS=...
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="WORKFLOW_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
