"""Configuration models and loading for the media registry.

Typical use::

    from Switchboard.MediaRegistry.config import load_config

    config = load_config("media-registry.yaml", cli_overrides={"policy": {"max_lifetime_s": 600}})
    registry = MediaRegistry.from_config(config)
"""

from .loader import DEFAULT_ENV_PREFIX, export_config_schema, load_config, validate_config_file
from .models import HttpClientConfig, MediaRegistryConfig, StorageConfig, StoragePolicyConfig

__all__ = [
    "DEFAULT_ENV_PREFIX",
    "HttpClientConfig",
    "MediaRegistryConfig",
    "StorageConfig",
    "StoragePolicyConfig",
    "export_config_schema",
    "load_config",
    "validate_config_file",
]
