"""Environment-based configuration for the meter reader service."""

from pydantic_settings import BaseSettings

REQUIRED = ("SUPABASE_URL", "SUPABASE_KEY", "ANTHROPIC_API_KEY")


class Settings(BaseSettings):
    """Meter reader settings, loaded from environment variables."""

    # Server
    PORT: int = 3000
    API_PREFIX: str = ""  # e.g. "/api"
    CORS_ORIGINS: str = "*"

    # Uploads
    MAX_FILE_SIZE_MB: int = 5
    UPLOAD_DIR: str = "uploads"

    # Hosted database + identity provider
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""
    READINGS_TABLE: str = "meter_readings"
    STATS_VIEW: str = "meter_statistics"
    MAX_PAGE_LIMIT: int = 1000

    # Vision model
    ANTHROPIC_API_KEY: str = ""
    VISION_API_URL: str = "https://api.anthropic.com"
    VISION_MODEL: str = "claude-sonnet-4-5-20250929"
    VISION_MAX_TOKENS: int = 2048

    # Outbound timeouts
    VISION_TIMEOUT_SECONDS: int = 120
    DB_TIMEOUT_SECONDS: int = 30
    CONNECT_TIMEOUT_SECONDS: int = 10

    model_config = {"env_prefix": "", "case_sensitive": True, "env_file": ".env", "extra": "ignore"}

    @property
    def max_file_size_bytes(self) -> int:
        return self.MAX_FILE_SIZE_MB * 1024 * 1024

    def cors_origins(self) -> list[str]:
        return [o.strip().rstrip("/") for o in self.CORS_ORIGINS.split(",") if o.strip()]

    def missing_required(self) -> list[str]:
        """Names of required settings that are empty."""
        return [name for name in REQUIRED if not getattr(self, name).strip()]


settings = Settings()
