from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "filedrop"
    app_env: str = "dev"
    base_url: str = "http://localhost:8080"
    storage_dir: str = "files"
    database_path: str = "filedrop.db"
    max_upload_size_bytes: int = 100 * 1024 * 1024
    db_pool_size: int = Field(default=10, ge=1)
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8080
    ssl_certfile: str | None = None
    ssl_keyfile: str | None = None

    model_config = SettingsConfigDict(env_file=".env", env_prefix="FILEDROP_", extra="ignore")

    @property
    def public_base_url(self) -> str:
        return self.base_url.rstrip("/")

    @property
    def use_https(self) -> bool:
        return bool(self.ssl_certfile and self.ssl_keyfile)


@lru_cache
def get_settings() -> Settings:
    return Settings()
