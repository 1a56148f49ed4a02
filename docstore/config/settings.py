from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    # Backend selection, read once at startup.
    storage_provider: str = "local"
    record_store: str = "memory"

    local_storage_path: str = ".storage"
    storage_folder_prefix: str = ""

    minio_endpoint: str = ""
    minio_access_key: str = ""
    minio_secret_key: str = ""
    minio_bucket: str = "nda-documents"
    minio_secure: bool = True
    blob_timeout_seconds: float = Field(default=30.0, gt=0)

    db_host: str = "host.docker.internal"
    db_port: int = 5432
    db_database: str = "docstore"
    db_username: str = "docstore"
    db_password: str = "secret"
    db_pool_max_size: int = Field(default=10, ge=1)
    db_connect_timeout_seconds: int = Field(default=10, ge=1)
    db_statement_timeout_ms: int = Field(default=30000, ge=0)

    max_task_attempts: int = Field(default=3, ge=1)
    task_base_delay_seconds: float = Field(default=5.0, ge=0)
    task_max_delay_seconds: float = Field(default=300.0, ge=0)
    stale_claim_timeout_seconds: int = Field(default=600, ge=1)
    reap_interval_seconds: int = Field(default=60, ge=1)
    task_poll_interval_seconds: int = 5
    worker_count: int = Field(default=2, ge=1)
    default_task_priority: int = 5

    max_file_size_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    facade_max_retries: int = Field(default=2, ge=0)

    pdf_engine: str = "pdfplumber"

    @property
    def has_object_store_credentials(self) -> bool:
        return bool(
            self.minio_endpoint and self.minio_access_key and self.minio_secret_key
        )
