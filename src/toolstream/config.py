"""Runtime settings loaded from ``TOOLSTREAM_*`` environment variables."""

from typing import Annotated

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from toolstream.providers import Transport
from toolstream.streaming import DEFAULT_CLOSE_MARKER, DEFAULT_OPEN_MARKER


class Settings(BaseSettings):
    """Runtime configuration.

    Every field is read from ``TOOLSTREAM_<FIELD>`` (or a ``.env`` file).
    The API key also falls back to ``OPENAI_API_KEY``.
    """

    model_config = SettingsConfigDict(
        env_prefix="TOOLSTREAM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    model: str = Field(default="gpt-4o-mini", description="Chat model name")
    api_key: SecretStr | None = Field(
        default=None,
        description="Backend API key",
        validation_alias=AliasChoices("toolstream_api_key", "openai_api_key"),
    )
    base_url: str | None = Field(
        default=None, description="OpenAI-compatible endpoint, e.g. a vLLM server"
    )
    system_prompt: str | None = None
    mcp_servers: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="MCP server URLs connected per session (comma separated)",
    )
    mcp_transport: Transport = "sse"
    db_path: str | None = Field(
        default=None, description="SQLite file for history; in-memory when unset"
    )
    log_level: str = "INFO"
    max_turns: int | None = Field(default=None, ge=1)
    reasoning_open: str = DEFAULT_OPEN_MARKER
    reasoning_close: str = DEFAULT_CLOSE_MARKER

    @field_validator("mcp_servers", mode="before")
    @classmethod
    def split_servers(cls, value):
        if isinstance(value, str):
            return [s.strip() for s in value.split(",") if s.strip()]
        return value
