"""
Configuration management for ReelStream
"""

import os
import tempfile
import yaml
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TranscodingConfig(BaseModel):
    ffmpeg_path: str = "auto"
    ffprobe_path: str = "auto"
    temp_directory: str = Field(default_factory=tempfile.gettempdir)
    max_concurrent_tiers: int = 2  # 1 = encode tiers strictly one after another
    segment_duration: int = 1
    preset: str = "fast"
    crf: int = 23
    # Wall-clock limits per subprocess, in seconds
    probe_timeout: float = 60
    encode_timeout: float = 1800
    segment_timeout: float = 600
    thumbnail_timeout: float = 60
    preview_timeout: float = 300
    thumbnail_timestamp: float = 1.0


class PreviewConfig(BaseModel):
    max_seconds: float = 3
    max_dimension: int = 720
    min_dimension: int = 480
    size_budget_kb: int = 400
    bitrate: str = "400k"
    crf: int = 28
    fps: int = 24
    reduced_bitrate: str = "300k"
    reduced_crf: int = 32
    reduced_fps: int = 20
    reduction_scale: float = 0.75


class FetchConfig(BaseModel):
    connect_timeout: float = 30
    read_timeout: float = 60
    max_retries: int = 3
    backoff_base: float = 1.0  # delay before retry n is backoff_base * 2**n
    chunk_size: int = 1024 * 1024


class LimitsConfig(BaseModel):
    max_source_bytes: int = 1024 * 1024 * 1024
    max_duration_seconds: Optional[float] = None


class StorageConfig(BaseModel):
    bucket: str = ""
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None  # e.g. "http://127.0.0.1:9000" for MinIO
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    public_base_url: Optional[str] = None
    upload_concurrency: int = 4
    upload_retries: int = 3
    retry_delay: float = 1.0
    multipart_threshold_mb: int = 8
    multipart_chunksize_mb: int = 5


class NotifyConfig(BaseModel):
    status_url: Optional[str] = None  # e.g. "https://api.example.com/reels/internal/update"
    timeout: float = 10


class WorkerConfig(BaseModel):
    concurrency: int = 2


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "json"
    file: Optional[str] = None


class ReelStreamConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="REELSTREAM_",
        env_nested_delimiter="__",
    )

    transcoding: TranscodingConfig = Field(default_factory=TranscodingConfig)
    preview: PreviewConfig = Field(default_factory=PreviewConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    notify: NotifyConfig = Field(default_factory=NotifyConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def find_config_file() -> Optional[Path]:
    """Find the configuration file in standard locations."""
    search_paths = [
        Path.cwd() / "reelstream.yaml",
        Path.cwd() / "reelstream.yml",
        Path.cwd() / "config" / "reelstream.yaml",
        Path.home() / ".config" / "reelstream" / "reelstream.yaml",
        Path("/etc/reelstream/reelstream.yaml"),
    ]
    
    for path in search_paths:
        if path.exists():
            return path
    
    return None


def load_config(config_path: Optional[str] = None) -> ReelStreamConfig:
    """Load configuration from YAML file, environment, or defaults."""
    config_file = Path(config_path) if config_path else find_config_file()
    
    if config_file and config_file.exists():
        with open(config_file, "r") as f:
            yaml_data = yaml.safe_load(f) or {}
        return ReelStreamConfig(**yaml_data)
    
    return ReelStreamConfig()


# Global config instance
_config: Optional[ReelStreamConfig] = None


def get_config() -> ReelStreamConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config(os.environ.get("REELSTREAM_CONFIG"))
    return _config


def set_config(config: ReelStreamConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
