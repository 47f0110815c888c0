from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    database_host: str = Field("localhost", validation_alias="DATABASE_HOST")
    database_port: int = Field(27017, validation_alias="DATABASE_PORT")
    database_user: str = Field("", validation_alias="DATABASE_USER")
    database_password: str = Field("", validation_alias="DATABASE_PASSWORD")
    database_name: str = Field("sender_db", validation_alias="DATABASE_NAME")
    database_collection: str = Field("messages", validation_alias="DATABASE_COLLECTION")
    database_connection_timeout_ms: int = Field(5000, validation_alias="DATABASE_CONNECTION_TIMEOUT_MS")

    repository_backend: str = Field("mongo", validation_alias="REPOSITORY_BACKEND")
    sender_backend: str = Field("webhook", validation_alias="SENDER_BACKEND")

    initial_backoff_seconds: float = Field(1.0, validation_alias="INITIAL_BACKOFF_SECONDS")
    max_backoff_seconds: float = Field(30.0, validation_alias="MAX_BACKOFF_SECONDS")
    max_connection_attempts: int = Field(10, validation_alias="MAX_CONNECTION_ATTEMPTS")
    backoff_multiplier: float = Field(2.0, validation_alias="BACKOFF_MULTIPLIER")

    sender_url: str = Field("", validation_alias="SENDER_URL")
    sender_auth_key: str = Field("", validation_alias="SENDER_AUTH_KEY")
    sender_auth_header: str = Field("x-ins-auth-key", validation_alias="SENDER_AUTH_HEADER")
    sender_connect_timeout_seconds: float = Field(5.0, validation_alias="SENDER_CONNECT_TIMEOUT_SECONDS")
    sender_read_timeout_seconds: float = Field(30.0, validation_alias="SENDER_READ_TIMEOUT_SECONDS")

    poll_interval_seconds: float = Field(120.0, validation_alias="POLL_INTERVAL_SECONDS")
    batch_size: int = Field(2, validation_alias="BATCH_SIZE")
    # A failed message is retried while attempt_count <= max_retries; past that it stays FAILED.
    max_retries: int = Field(3, validation_alias="MAX_RETRIES")
    claim_ttl_seconds: float = Field(300.0, validation_alias="CLAIM_TTL_SECONDS")
    max_content_length: int = Field(1000, validation_alias="MAX_CONTENT_LENGTH")
    status_update_attempts: int = Field(3, validation_alias="STATUS_UPDATE_ATTEMPTS")
    shutdown_timeout_seconds: float = Field(30.0, validation_alias="SHUTDOWN_TIMEOUT_SECONDS")
    worker_id: str = Field("", validation_alias="WORKER_ID")

    seed_message_count: int = Field(0, validation_alias="SEED_MESSAGE_COUNT")
    seed_recipient: str = Field("+905551111111", validation_alias="SEED_RECIPIENT")

    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")
    log_serialize: bool = Field(False, validation_alias="LOG_SERIALIZE")
