from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    DEBUG: bool = False
    APP_NAME: str = "Rolodex"
    version: str = "0.1.0"
    APP_DOMAIN: str = "example.com"
    APP_DATA_PATH: str = "/tmp/rolodex"
    APP_DATABASE_DSN: str = "sqlite:////tmp/rolodex.db"
    REDIS_URL: str = "redis://localhost:6379"

    # Cache
    CACHE_BACKEND: str = "redis"  # "redis" or "memory"
    CACHE_PREFIX: str = "rolodex"
    CACHE_ENABLED: bool = True
    CACHE_TTL_CUSTOMERS: int = 3600
    CACHE_TTL_CUSTOMERS_RECENT: int = 900
    CACHE_TTL_CUSTOMERS_SEARCH: int = 1800
    CACHE_TTL_IMPORTS: int = 1800
    CACHE_TTL_IMPORTS_SHORT: int = 300
    CACHE_TTL_EXPORTS: int = 1800
    CACHE_TTL_EXPORTS_SHORT: int = 300
    CACHE_TTL_AUDIT: int = 900
    CACHE_TTL_AUDIT_SHORT: int = 300
    CACHE_TTL_AUDIT_HISTORICAL: int = 3600

    # Signed download links
    DOWNLOAD_TOKEN_SECRET: str = "download-secret-change-me"

    # Import / export
    EXPORT_EXPIRES_DAYS: int = 7
    IMPORT_MAX_FILE_SIZE: int = 10 * 1024 * 1024
    IMPORT_PROGRESS_BATCH_SIZE: int = 50
    EXPORT_BATCH_SIZE: int = 500

    # Background jobs
    JOB_MAX_TRIES: int = 3
    JOB_TIMEOUT_SECONDS: int = 300
    JOB_RETRY_DELAY_SECONDS: int = 10
    JOB_STALE_AFTER_SECONDS: int = 900
    JOB_QUEUE_NAME: str = "import-export"

    # Audit archives
    AUDIT_RETENTION_DAYS: int = 365

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    @property
    def download_base_url(self) -> str:
        return f"https://{self.APP_DOMAIN}"


settings = Settings()
