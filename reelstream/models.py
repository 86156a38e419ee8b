"""
Public data models for ReelStream
"""

from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class TranscodeJob(BaseModel):
    """One pipeline run. Supplied by the caller, never persisted here."""
    model_config = ConfigDict(frozen=True)

    job_id: str = Field(..., min_length=1)
    source_url: str = Field(..., min_length=1)
    destination_prefix: str = Field(..., min_length=1)
    existing_thumbnail_url: Optional[str] = None

    @field_validator("destination_prefix")
    @classmethod
    def normalize_prefix(cls, v: str) -> str:
        v = v.replace("\\", "/").strip("/")
        if not v:
            raise ValueError("destination_prefix must not be empty")
        return v

    @field_validator("existing_thumbnail_url")
    @classmethod
    def blank_thumbnail_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class TierPlaylist(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    playlist_url: str


class PublishedManifest(BaseModel):
    """Externally visible result of a successful run."""
    model_config = ConfigDict(frozen=True)

    master_manifest_url: str
    thumbnail_url: str
    preview_url: Optional[str] = None
    duration_seconds: int = 0
    tiers: List[TierPlaylist] = Field(default_factory=list)
