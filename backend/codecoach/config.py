import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    assignments_api_url: str = Field("http://localhost:4004", alias="CODECOACH_ASSIGNMENTS_API_URL")
    sessions_api_url: str = Field("http://localhost:4003", alias="CODECOACH_SESSIONS_API_URL")
    profiles_api_url: str = Field("http://localhost:4005", alias="CODECOACH_PROFILES_API_URL")
    starter_api_url: str = Field("http://localhost:3000/api", alias="CODECOACH_STARTER_API_URL")
    auth_token: Optional[str] = Field(None, alias="CODECOACH_AUTH_TOKEN")
    learner_id: str = Field("local-learner", alias="CODECOACH_LEARNER_ID")
    openai_api_key: Optional[str] = Field(None, alias="OPENAI_API_KEY")
    model: str = Field("gpt-4.1-mini", alias="CODECOACH_MODEL")
    temperature: float = Field(0.3, ge=0.0, le=2.0, alias="CODECOACH_TEMPERATURE")
    http_timeout: float = Field(30.0, gt=0, alias="CODECOACH_HTTP_TIMEOUT")
    trace_flush_threshold: int = Field(10, ge=1, alias="CODECOACH_TRACE_FLUSH_THRESHOLD")
    max_history_turns: int = Field(12, ge=1, alias="CODECOACH_MAX_HISTORY_TURNS")
    max_context_chars: int = Field(20_000, ge=1, alias="CODECOACH_MAX_CONTEXT_CHARS")
    starter_max_bytes: int = Field(50 * 1024 * 1024, ge=1, alias="CODECOACH_STARTER_MAX_BYTES")
    starter_max_extracted_bytes: int = Field(
        200 * 1024 * 1024, ge=1, alias="CODECOACH_STARTER_MAX_EXTRACTED_BYTES"
    )
    starter_max_open: int = Field(5, ge=0, alias="CODECOACH_STARTER_MAX_OPEN")
    workspace_dir: Optional[Path] = Field(None, alias="CODECOACH_WORKSPACE_DIR")
    default_starter_dir: Optional[Path] = Field(None, alias="CODECOACH_DEFAULT_STARTER_DIR")
    database_url: str = Field("sqlite:///codecoach.db", alias="CODECOACH_DATABASE_URL")
    database_echo: bool = Field(False, alias="CODECOACH_DATABASE_ECHO")
    state_mode: Literal["database", "file"] = Field("database", alias="CODECOACH_STATE_MODE")
    state_path: Path = Field(Path(".codecoach/state.json"), alias="CODECOACH_STATE_PATH")
    profile_backend: Literal["database", "remote"] = Field("database", alias="CODECOACH_PROFILE_BACKEND")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        settings = Settings()  # type: ignore[call-arg]
        if settings.openai_api_key and not os.getenv("OPENAI_API_KEY"):
            os.environ["OPENAI_API_KEY"] = settings.openai_api_key
        return settings
    except ValidationError as exc:
        raise RuntimeError(f"Invalid CodeCoach configuration: {exc}") from exc
