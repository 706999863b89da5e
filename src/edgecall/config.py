"""Configuration settings for the application."""

from pydantic_settings import (
    BaseSettings,
    SettingsConfigDict,
)


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Loaded from EDGECALL_* environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # Inference engine
    ENGINE: str = "stub"  # Options: stub, chatml, openai
    TGI_ENDPOINT: str = "http://localhost:8080/generate"
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    MAX_NEW_TOKENS: int = 512
    TEMPERATURE: float = 0.2

    # Tool calling
    TOOL_TIMEOUT_MS: int = 30_000
    MAX_TOOL_ROUNDS: int = 5
    TOOL_CALL_TAG: str = "tool_call"  # <tool_call>{...}</tool_call>

    model_config = SettingsConfigDict(
        env_prefix="EDGECALL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
