"""Configuration management for Reel Studio."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_level: str = "INFO"

    # Storage
    database_url: str = "sqlite:///./reelstudio.db"
    artifact_dir: Path = Path("./artifacts")
    upload_dir: Path = Path("./uploads")

    # Analysis provider (Anthropic)
    anthropic_api_key: str | None = None
    analysis_model: str = "claude-sonnet-4-20250514"

    # Dubbing provider (ElevenLabs)
    elevenlabs_api_key: str | None = None
    elevenlabs_base_url: str = "https://api.elevenlabs.io/v1"

    # Avatar provider (HeyGen)
    heygen_api_key: str | None = None
    heygen_base_url: str = "https://api.heygen.com"

    # Provider calls
    provider_timeout: float = 30.0
    provider_max_retries: int = 2
    provider_retry_delay: float = 1.0

    # Polling
    poll_interval: float = 3.0
    poll_max_attempts: int = 60
    poll_max_consecutive_errors: int = 3
    max_concurrent_polls: int = 8

    # Input limits
    max_upload_mb: int = 100
    max_voice_sample_mb: int = 10
    max_photo_mb: int = 5
    max_tts_chars: int = 5000
    max_transcript_chars: int = 20000
    max_avatar_text_chars: int = 1500

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        self.artifact_dir.mkdir(parents=True, exist_ok=True)
        self.upload_dir.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
