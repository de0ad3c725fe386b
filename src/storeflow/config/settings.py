"""Configuration and settings management using pydantic-settings."""
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_prefix="STOREFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Core service settings
    env: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Log level")

    # Persistence
    store_backend: str = Field(
        default="memory",
        description="Workflow store backend: memory or redis",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    broker_url: str = Field(
        default="redis://localhost:6379/1",
        description="Celery broker URL",
    )

    # Engine limits
    default_primitive_timeout_ms: int = Field(
        default=30000,
        description="Timeout applied to primitives that declare none",
    )
    default_max_steps: int = Field(
        default=1000,
        description="Node visit budget per execution",
    )
    strict_condition_branches: bool = Field(
        default=False,
        description="Treat a condition node with a missing branch as a validation error",
    )
    enforce_unique_workflow_names: bool = Field(
        default=True,
        description="Reject template installs that reuse an owner's workflow name",
    )
    schedule_timezone: str = Field(
        default="UTC",
        description="Timezone used to match cron schedules",
    )

    # Outbound integrations
    http_timeout_s: float = Field(
        default=30.0,
        description="Default timeout for outbound HTTP calls",
    )
    shippo_api_token: SecretStr | None = Field(
        default=None,
        description="Shippo API token for shipping primitives",
    )
    shippo_base_url: str = Field(
        default="https://api.goshippo.com",
        description="Shippo API base URL",
    )
    stripe_api_key: SecretStr | None = Field(
        default=None,
        description="Stripe secret key for payment primitives",
    )

    # Celery settings
    celery_task_time_limit: int = Field(
        default=300,
        description="Celery hard task time limit in seconds",
    )
    celery_task_soft_time_limit: int = Field(
        default=270,
        description="Celery soft task time limit in seconds",
    )

    @field_validator("default_primitive_timeout_ms", "default_max_steps")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate that engine limits are positive."""
        if v <= 0:
            raise ValueError("engine limits must be positive")
        return v

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        """Validate the store backend name."""
        v = v.lower()
        if v not in ("memory", "redis"):
            raise ValueError("store_backend must be 'memory' or 'redis'")
        return v


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (useful for testing)."""
    global _settings
    _settings = None
