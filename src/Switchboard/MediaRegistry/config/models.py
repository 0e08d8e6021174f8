"""
Settings for one media registry instance.

``MediaRegistryConfig`` is the only object the rest of the package reads
settings from; :func:`Switchboard.MediaRegistry.config.loader.load_config`
assembles it. Unknown keys are rejected at every level so a misspelled
option fails loudly instead of silently falling back to a default.
"""

from __future__ import annotations

import hashlib
import json
from datetime import timedelta
from typing import ClassVar, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class HttpClientConfig(BaseModel):
    """Download client settings. The redirect bound is fixed and not listed here."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    user_agent: str = Field(
        default="Switchboard/MediaRegistry",
        description="Value of the User-Agent header sent on every hop",
    )
    timeout_connect_s: float = Field(
        default=10.0, gt=0, description="Seconds allowed for establishing a connection"
    )
    timeout_read_s: float = Field(
        default=60.0, gt=0, description="Seconds allowed between two received chunks"
    )
    verify_tls: bool = Field(default=True, description="Reject invalid TLS certificates")


class StorageConfig(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    root_dir: str = Field(
        default="data/media",
        description="Directory holding one sub-directory per registered entry",
    )


class StoragePolicyConfig(BaseModel):
    """Which media types are kept, and for how long."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    max_lifetime_s: float = Field(
        default=3600.0,
        gt=0,
        description="Entries older than this are evicted by the cleanup sweep",
    )
    cleanup_period_s: float = Field(
        default=60.0,
        gt=0,
        description="Pause between two cleanup sweeps",
    )
    allowed_media_types: List[str] = Field(
        default_factory=list,
        description="Accepted primary media types (empty = accept any)",
    )
    denied_media_types: List[str] = Field(
        default_factory=list,
        description="Rejected primary media types, checked before allowed_media_types",
    )

    @field_validator("allowed_media_types", "denied_media_types")
    @classmethod
    def lowercase_media_types(cls, value: List[str]) -> List[str]:
        return [item.strip().lower() for item in value if item and item.strip()]

    @property
    def max_lifetime(self) -> timedelta:
        return timedelta(seconds=self.max_lifetime_s)

    @property
    def cleanup_period(self) -> timedelta:
        return timedelta(seconds=self.cleanup_period_s)


class MediaRegistryConfig(BaseModel):
    """Complete configuration of a registry: client, blob store and policy."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", validate_assignment=True)

    instance_id: Optional[str] = Field(
        default=None, description="Free-form name of this registry, used in logs"
    )
    http: HttpClientConfig = Field(default_factory=HttpClientConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    policy: StoragePolicyConfig = Field(default_factory=StoragePolicyConfig)

    def config_hash(self) -> str:
        """SHA-256 of the canonical JSON form; equal settings give equal hashes."""
        canonical = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
