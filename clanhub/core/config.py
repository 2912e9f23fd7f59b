from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "postgresql://clanhub:clanhub@db:5432/clanhub"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Comma-separated allowed origins, or "*" to allow all.
    # Example: "https://hub.example.com,https://admin.example.com"
    CORS_ORIGINS: str = "*"

    # Raw faction-history rows written per transaction during an upload.
    HISTORY_BATCH_SIZE: int = 100
    HISTORY_MAX_UPLOAD_BYTES: int = 16 * 1024 * 1024

    @property
    def cors_origins_list(self) -> list[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
