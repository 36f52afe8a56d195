from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FIRECACHE_", env_file=".env", extra="ignore")

    # Backend selection: "firestore" or "redis"
    cache_backend: str = "firestore"

    # Collection path (Firestore) or key prefix (Redis); may be nested
    collection_path: str = "responseCache"

    # Firestore
    firestore_project: str | None = Field(default=None, validation_alias="FIRESTORE_PROJECT")
    firestore_database: str | None = Field(default=None, validation_alias="FIRESTORE_DATABASE")
    firestore_emulator_host: str | None = Field(
        default=None, validation_alias="FIRESTORE_EMULATOR_HOST"
    )

    # Redis
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")

    # Store query limits
    invalidation_chunk_size: int = Field(default=10, ge=1)
    delete_page_size: int = Field(default=500, ge=1)

    # Observability
    enable_metrics: bool = True
    log_level: str = "INFO"
    log_json: bool = True


settings = Settings()
