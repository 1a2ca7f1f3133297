from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_EXTENSIONS = [".aac", ".mp3", ".wav", ".flac", ".ogg", ".m4a", ".wma"]


class GeneralConfig(BaseModel):
    audio_root: str
    playlist_root: str
    max_streams: int = Field(default=20, gt=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    log_path: Optional[str] = "/tmp/radiocast/radiocast.log"
    log_max_bytes: int = Field(default=10 * 1024 * 1024, ge=0)  # 0 disables rotation
    log_backup_count: int = Field(default=5, ge=0)
    debug: bool = False

    @field_validator("audio_root", "playlist_root")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Path must not be empty")
        return v

    @model_validator(mode="after")
    def validate_window(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be >= start_date")
        return self


class CatalogConfig(BaseModel):
    """Directory naming convention for the audio archive."""
    source_prefix: str = "RAI"
    source_formats: List[str] = Field(default_factory=lambda: ["AAC", "WMA"])
    root_marker: str = "Rai"
    extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        return [(ext if ext.startswith(".") else f".{ext}").lower() for ext in v]

    @field_validator("source_formats")
    @classmethod
    def validate_formats(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("source_formats must not be empty")
        return v


class RelayConfig(BaseModel):
    """Icecast relay the encoder publishes to."""
    host: str = "localhost"
    port: int = Field(default=8083, ge=1, le=65535)  # base port, one per stream
    username: str = "source"
    password: str = "hackme"
    mount_prefix: str = "rai_"
    check_host: str = "localhost"
    check_port: int = Field(default=8200, ge=1, le=65535)
    check_timeout_s: float = Field(default=3.0, gt=0)
    bitrate: str = "128k"
    channels: int = Field(default=2, ge=1, le=2)
    realtime: bool = True


class RetryConfig(BaseModel):
    max_retries: int = Field(default=3, ge=0)
    backoff_base: float = Field(default=2.0, ge=0.0)


class AppConfig(BaseModel):
    general: GeneralConfig
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
