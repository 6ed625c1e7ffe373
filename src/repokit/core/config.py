"""Core configuration management using pydantic-settings."""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = "development"

    # Database
    database_url: str = "sqlite+aiosqlite:///./repokit.db"
    database_pool_size: int = 20
    database_max_overflow: int = 10
    database_echo: bool = False

    # Query cache
    cache_backend: str = "memory"
    cache_max_entries: int = 10_000
    cache_default_ttl: int = 3600
    cache_key_prefix: str = "repokit:cache:"

    # Valkey/Redis (only used when cache_backend == "redis")
    valkey_url: str = ""

    # Localization
    default_locale: str = "en"

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = "http://localhost:3000"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # OpenTelemetry
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    otel_service_name: str = "repokit"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_sqlite(self) -> bool:
        """Check if the configured database is SQLite."""
        return self.database_url.startswith("sqlite")


# Global settings instance
settings = Settings()
