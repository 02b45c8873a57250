"""
Configuration module - Central access point for environment variables.

CRITICAL: Access ALL environment variables through this module.
NEVER use os.getenv() directly in application code.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis
    REDIS_URL: str = Field(
        default="redis://redis:6379/0",
        description="Redis connection string"
    )
    COMMAND_CHANNEL: str = Field(
        default="copilot:commands",
        description="Pub/sub channel carrying utterances and operator decisions"
    )
    EVENT_CHANNEL: str = Field(
        default="copilot:events",
        description="Pub/sub channel where consumer notifications are published"
    )

    # Inference Service (LLM)
    LLM_PROVIDER: str = Field(
        default="openrouter",
        description="Inference backend: openrouter or anthropic"
    )
    OPENROUTER_API_KEY: str = Field(default="sk-or-placeholder")
    LLM_MODEL: str = Field(
        default="anthropic/claude-3.5-haiku",
        description="Model used through OpenRouter (OpenRouter naming format)"
    )
    ANTHROPIC_API_KEY: str = Field(default="sk-ant-placeholder")
    ANTHROPIC_MODEL: str = Field(
        default="claude-3-5-haiku-20241022",
        description="Model used when LLM_PROVIDER=anthropic"
    )
    LLM_TEMPERATURE: float = Field(default=0.3)
    LLM_MAX_TOKENS: int = Field(default=1024)
    SITE_URL: str = Field(
        default="https://copilot.example.com",
        description="Site URL for OpenRouter rankings (optional)"
    )
    SITE_NAME: str = Field(
        default="Call Copilot",
        description="Site name for OpenRouter rankings (optional)"
    )
    INFERENCE_TIMEOUT_SECONDS: float = Field(
        default=15.0,
        description="Upper bound for a single analysis stage call"
    )

    # Tool Service
    TOOL_SERVICE_URL: str = Field(
        default="https://tools.example.com",
        description="Base URL of the business Tool Service"
    )
    TOOL_SERVICE_API_KEY: str = Field(default="")
    TOOL_TIMEOUT_SECONDS: float = Field(
        default=20.0,
        description="Upper bound for a single Tool Service invocation"
    )

    # Batch Scheduler (milliseconds)
    BATCH_URGENT_DELAY_MS: int = Field(default=500)
    BATCH_AFFIRMATION_DELAY_MS: int = Field(default=1000)
    BATCH_FAST_TRACK_DELAY_MS: int = Field(default=1500)
    BATCH_NORMAL_DELAY_MS: int = Field(default=2500)
    BATCH_EXTENDED_DELAY_MS: int = Field(default=4000)
    BATCH_MAX_WAIT_MS: int = Field(
        default=8000,
        description="Hard ceiling on deferral, measured from the first unprocessed fragment"
    )

    # Action lifecycle
    AUTO_EXECUTE_COUNTDOWN_MS: int = Field(
        default=3000,
        description="Visible, cancellable countdown before an auto-executable action runs"
    )
    COUNTDOWN_TICK_MS: int = Field(default=1000)

    # Langfuse (Observability & Monitoring)
    LANGFUSE_ENABLED: bool = Field(default=False)
    LANGFUSE_PUBLIC_KEY: str = Field(
        default="pk-lf-placeholder",
        description="Langfuse public key for tracing and monitoring"
    )
    LANGFUSE_SECRET_KEY: str = Field(
        default="sk-lf-placeholder",
        description="Langfuse secret key for authentication"
    )
    LANGFUSE_BASE_URL: str = Field(
        default="https://cloud.langfuse.com",
        description="Langfuse API base URL (EU: cloud.langfuse.com, US: us.cloud.langfuse.com)"
    )

    # Application Settings
    LOG_LEVEL: str = Field(default="INFO")
    CORS_ORIGINS: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    """
    return Settings()
