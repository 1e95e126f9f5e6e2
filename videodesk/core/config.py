"""Application configuration."""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Session provider ("loopback" or "twilio")
    session_provider: str = "loopback"

    # Twilio Video
    twilio_account_sid: Optional[str] = None
    twilio_api_key_sid: Optional[str] = None
    twilio_api_key_secret: Optional[str] = None

    # Tokens
    token_ttl_seconds: int = 7 * 24 * 60 * 60

    # Uploads
    upload_dir: str = "uploads"
    public_base_url: Optional[str] = None
    max_upload_bytes: int = 25 * 1024 * 1024

    # Client side
    backend_url: str = "http://localhost:8000"
    wait_for_agent_timeout_seconds: float = 15.0
    view_ready_timeout_seconds: float = 10.0
    agent_enable_video: bool = False
    agent_enable_audio: bool = False

    # Co-browse
    cobrowse_api_url: Optional[str] = None
    cobrowse_api_key: Optional[str] = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


settings = Settings()
