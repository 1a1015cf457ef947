from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Publication Pipeline"
    app_env: str = "development"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "publication_pipeline"
    postgres_user: str = "publication_pipeline"
    postgres_password: str = "publication_pipeline"

    redis_host: str = "localhost"
    redis_port: int = 6379

    database_url: str | None = None
    redis_url: str | None = None
    frontend_origin: str = "http://localhost:3000"
    additional_frontend_origins: str = ""
    worker_heartbeat_key: str = "worker:heartbeat"
    worker_heartbeat_ttl_seconds: int = 45
    job_status_channel_prefix: str = "publication_jobs"

    jwt_secret_key: str = "change_this_in_production"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60
    token_encryption_key: str | None = None

    publication_queue_name: str = "publication_jobs"
    dispatch_concurrency_limit: int = 5
    dispatch_visibility_timeout_seconds: int = 300
    dispatch_interval_seconds: float = 10.0
    job_execution_timeout_seconds: float = 300.0
    job_staleness_minutes: int = 30
    retry_cooldown_minutes: int = 5
    job_retention_days: int = 7
    default_max_retries: int = 3
    sweep_interval_seconds: float = 60.0
    purge_interval_seconds: float = 86400.0

    adapter_poll_max_attempts: int = 10
    adapter_poll_delay_seconds: float = 10.0
    adapter_http_timeout_seconds: float = 20.0
    adapter_upload_timeout_seconds: float = 120.0
    tiktok_chunk_size_bytes: int = 10 * 1024 * 1024
    youtube_chunk_size_bytes: int = 8 * 1024 * 1024
    media_upload_dir: str = "/tmp/publication_uploads"

    meta_graph_api_base_url: str = "https://graph.facebook.com/v21.0"
    threads_api_base_url: str = "https://graph.threads.net/v1.0"
    tiktok_api_base_url: str = "https://open.tiktokapis.com/v2"
    youtube_api_base_url: str = "https://www.googleapis.com/youtube/v3"
    youtube_upload_base_url: str = "https://www.googleapis.com/upload/youtube/v3"
    x_api_base_url: str = "https://api.x.com/2"
    linkedin_api_base_url: str = "https://api.linkedin.com/v2"

    @property
    def cors_allowed_origins(self) -> list[str]:
        origins = [self.frontend_origin.strip()]
        if self.additional_frontend_origins.strip():
            origins.extend(
                [value.strip() for value in self.additional_frontend_origins.split(",") if value.strip()]
            )
        unique: list[str] = []
        for origin in origins:
            if origin and origin not in unique:
                unique.append(origin)
        return unique

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def sqlalchemy_database_uri(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def cache_redis_url(self) -> str:
        if self.redis_url:
            return self.redis_url
        return f"redis://{self.redis_host}:{self.redis_port}/0"


settings = Settings()
