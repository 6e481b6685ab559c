"""Application configuration using Pydantic Settings"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Security
    ENCRYPTION_KEY: str  # Required - no default for security

    # Application
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None  # Defaults to backend/data/logs

    # API
    API_V1_PREFIX: str = "/api/v1"

    # ONVIF discovery
    ONVIF_TIMEOUT_MS: int = 5000  # Per-RPC wait bound
    ONVIF_CONCURRENCY: int = 4  # Max in-flight GetStreamUri calls per NVR

    # NVR health probing
    NVR_HEALTH_TIMEOUT_MS: int = 3000

    # WebRTC playback (WHEP)
    WEBRTC_BASE_URL: Optional[str] = None  # e.g. http://media.local:8889

    # MediaMTX config generation and deploy
    MEDIAMTX_DEPLOY_ENABLED: bool = False
    MEDIAMTX_DEPLOY_ALLOW_RESTART_COMMANDS: bool = False
    MEDIAMTX_RTSP_ADDRESS: str = ":8554"
    MEDIAMTX_HLS_ADDRESS: str = ":8888"
    MEDIAMTX_WEBRTC_ADDRESS: str = ":8889"
    MEDIAMTX_SOURCE_CLOSE_AFTER: str = "10s"
    MEDIAMTX_DIR: Optional[str] = None  # Local MediaMTX install for the autogen runner

    # Stream info
    FFPROBE_TIMEOUT_SEC: int = 5

    @field_validator('ONVIF_CONCURRENCY', mode='after')
    @classmethod
    def validate_onvif_concurrency(cls, v: int) -> int:
        """ONVIF devices need at least one worker."""
        if v < 1:
            raise ValueError("ONVIF_CONCURRENCY must be >= 1")
        return v

    @field_validator('ONVIF_TIMEOUT_MS', 'NVR_HEALTH_TIMEOUT_MS', mode='after')
    @classmethod
    def validate_positive_timeout(cls, v: int) -> int:
        """Timeouts are in milliseconds and must be positive."""
        if v <= 0:
            raise ValueError("timeout must be a positive number of milliseconds")
        return v

    @property
    def webrtc_base_url(self) -> Optional[str]:
        """WEBRTC_BASE_URL without trailing slashes, or None when unset"""
        if not self.WEBRTC_BASE_URL or not self.WEBRTC_BASE_URL.strip():
            return None
        return self.WEBRTC_BASE_URL.strip().rstrip("/")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


# Global settings instance
settings = Settings()
