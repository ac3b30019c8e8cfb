from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Application configuration loaded from environment or .env."""

    app_name: str = Field(default="MindCheck API", alias="APP_NAME")
    app_env: str = Field(default="dev", alias="APP_ENV")
    debug: bool = Field(default=False, alias="APP_DEBUG")
    api_host: str = Field(default="127.0.0.1", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"], alias="CORS_ALLOW_ORIGINS"
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: Optional[str] = Field(default=None, alias="DATABASE_URL")
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")
    database_auto_migrate: bool = Field(default=True, alias="DATABASE_AUTO_MIGRATE")

    openai_api_key: Optional[SecretStr] = Field(default=None, alias="OPENAI_API_KEY")
    openai_analysis_model: str = Field(default="gpt-4o-mini", alias="OPENAI_ANALYSIS_MODEL")
    azure_openai_endpoint: Optional[str] = Field(default=None, alias="AZURE_OPENAI_ENDPOINT")
    azure_openai_api_key: Optional[SecretStr] = Field(default=None, alias="AZURE_OPENAI_API_KEY")
    azure_openai_deployment: Optional[str] = Field(default=None, alias="AZURE_OPENAI_DEPLOYMENT")
    azure_openai_api_version: Optional[str] = Field(default=None, alias="AZURE_OPENAI_API_VERSION")
    bedrock_region: Optional[str] = Field(default=None, alias="BEDROCK_REGION")
    bedrock_model_id: Optional[str] = Field(default=None, alias="BEDROCK_MODEL_ID")
    aws_region: Optional[str] = Field(default=None, alias="AWS_REGION")
    aws_access_key_id: Optional[SecretStr] = Field(default=None, alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: Optional[SecretStr] = Field(default=None, alias="AWS_SECRET_ACCESS_KEY")

    analysis_timeout_seconds: float = Field(default=30.0, alias="ANALYSIS_TIMEOUT_SECONDS")
    capture_stop_grace_seconds: float = Field(default=3.0, alias="CAPTURE_STOP_GRACE_SECONDS")
    report_driver_limit: int = Field(default=10, alias="REPORT_DRIVER_LIMIT")
    report_summary_limit: int = Field(default=15, alias="REPORT_SUMMARY_LIMIT")
    agent_display_name: str = Field(default="Assistant", alias="AGENT_DISPLAY_NAME")

    s3_session_archive_bucket: Optional[str] = Field(
        default=None, alias="S3_SESSION_ARCHIVE_BUCKET"
    )
    s3_session_archive_prefix: Optional[str] = Field(
        default="sessions/", alias="S3_SESSION_ARCHIVE_PREFIX"
    )
    enrichment_webhook_url: Optional[SecretStr] = Field(
        default=None, alias="ENRICHMENT_WEBHOOK_URL"
    )
    ses_sender_email: Optional[str] = Field(default=None, alias="SES_SENDER_EMAIL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )


@lru_cache
def get_settings() -> AppSettings:
    """Return cached application settings."""
    return AppSettings()  # type: ignore[call-arg]
