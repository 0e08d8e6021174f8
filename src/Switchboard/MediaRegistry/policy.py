# === NAVMAP v1 ===
# {
#   "module": "Switchboard.MediaRegistry.policy",
#   "purpose": "Acceptance and lifetime rules for registered media.",
#   "sections": [
#     {
#       "id": "storagepolicy",
#       "name": "StoragePolicy",
#       "anchor": "class-storagepolicy",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Acceptance and lifetime rules for registered media.

Provides:
  - Media-type acceptance (deny list, then allow list)
  - Maximum entry lifetime used by the eviction sweep
  - Cleanup period driving the sweep schedule
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import FrozenSet, Iterable

from Switchboard.MediaRegistry.config.models import StoragePolicyConfig
from Switchboard.MediaRegistry.errors import PolicyRejectedError
from Switchboard.MediaRegistry.models import Profile

logger = logging.getLogger(__name__)


def _normalize(media_types: Iterable[str]) -> FrozenSet[str]:
    return frozenset(m.strip().lower() for m in media_types if m and m.strip())


@dataclass
class StoragePolicy:
    """Storage policy of the registry.

    Attributes:
        max_allowed_lifetime: Age after which entries are evicted
        cleanup_period: Interval between eviction sweeps
        allowed_media_types: Accepted primary media types (empty = any)
        denied_media_types: Rejected primary media types, checked first
    """

    max_allowed_lifetime: timedelta = timedelta(hours=1)
    cleanup_period: timedelta = timedelta(minutes=1)
    allowed_media_types: FrozenSet[str] = field(default_factory=frozenset)
    denied_media_types: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        """Validate policy."""
        if self.max_allowed_lifetime <= timedelta(0):
            raise ValueError("max_allowed_lifetime must be > 0")
        if self.cleanup_period <= timedelta(0):
            raise ValueError("cleanup_period must be > 0")
        self.allowed_media_types = _normalize(self.allowed_media_types)
        self.denied_media_types = _normalize(self.denied_media_types)

    @classmethod
    def from_config(cls, config: StoragePolicyConfig) -> "StoragePolicy":
        return cls(
            max_allowed_lifetime=config.max_lifetime,
            cleanup_period=config.cleanup_period,
            allowed_media_types=frozenset(config.allowed_media_types),
            denied_media_types=frozenset(config.denied_media_types),
        )

    def accept_profile(self, profile: Profile) -> None:
        """Accept ``profile`` or raise :class:`PolicyRejectedError`."""
        media_type = profile.media_type
        if media_type in self.denied_media_types:
            logger.debug(f"Media type {media_type} is denied")
            raise PolicyRejectedError(f"Media type {media_type} is not allowed")
        if self.allowed_media_types and media_type not in self.allowed_media_types:
            logger.debug(f"Media type {media_type} not in allowed list")
            raise PolicyRejectedError(f"Media type {media_type} is not supported")


__all__ = ("StoragePolicy",)
