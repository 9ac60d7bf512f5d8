"""
Configuration Management for filebacked
=======================================

Configuration is split into focused sub-configurations: storage layout and
write behaviour, and compression for the object codec.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from .error_handling import PersistenceConfigurationError

logger = logging.getLogger(__name__)

_SAFE_COMPONENT = re.compile(r"^[A-Za-z0-9._-]+$")

VALID_CODECS = ("lz4", "lz4hc", "zstd", "zlib", "blosclz")


@dataclass
class StorageConfig:
    """Configuration for on-disk layout and write behaviour."""

    # Fixed segment separating our directories from unrelated data in a shared base
    namespace: str = "filebacked.KeyedPersistenceDirectories"
    private_directories: bool = True
    fsync_writes: bool = True
    temp_suffix: str = ".tmp"

    def __post_init__(self):
        """Validate storage configuration."""
        if not _SAFE_COMPONENT.match(self.namespace) or self.namespace in (".", ".."):
            raise PersistenceConfigurationError(
                f"namespace must be a single safe path component, got {self.namespace!r}",
                {"namespace": self.namespace},
            )
        if not self.temp_suffix.startswith(".") or not _SAFE_COMPONENT.match(
            self.temp_suffix
        ):
            raise PersistenceConfigurationError(
                f"temp_suffix must look like '.tmp', got {self.temp_suffix!r}",
                {"temp_suffix": self.temp_suffix},
            )

        logger.debug(
            f"Storage configured: namespace={self.namespace}, "
            f"private={self.private_directories}, fsync={self.fsync_writes}"
        )


@dataclass
class CompressionConfig:
    """Configuration for blosc2 compression of pickled objects."""

    codec: str = "lz4"
    clevel: int = 5

    def __post_init__(self):
        """Validate compression configuration."""
        self.codec = self.codec.lower()
        if self.codec not in VALID_CODECS:
            raise PersistenceConfigurationError(
                f"codec must be one of {VALID_CODECS}", {"codec": self.codec}
            )

        if not (0 <= self.clevel <= 9):
            raise PersistenceConfigurationError(
                "clevel must be between 0 and 9", {"clevel": self.clevel}
            )

        logger.debug(f"Compression configured: codec={self.codec}@{self.clevel}")


@dataclass
class PersistenceConfig:
    """Main configuration combining all sub-configurations."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    compression: CompressionConfig = field(default_factory=CompressionConfig)

    @property
    def namespace(self) -> str:
        return self.storage.namespace

    @property
    def private_directories(self) -> bool:
        return self.storage.private_directories


DEFAULT_CONFIG = PersistenceConfig()


def create_config(
    storage: Optional[StorageConfig] = None,
    compression: Optional[CompressionConfig] = None,
    **overrides,
) -> PersistenceConfig:
    """
    Factory function for creating configurations with keyword overrides.

    Each override is routed to the sub-configuration that owns a field of the
    same name, and that sub-configuration is validated again.

    Args:
        storage: Base storage configuration
        compression: Base compression configuration
        **overrides: Direct override values for any sub-config field

    Returns:
        Configured PersistenceConfig instance
    """
    config = PersistenceConfig(
        storage=storage or StorageConfig(),
        compression=compression or CompressionConfig(),
    )

    touched = set()
    for key, value in overrides.items():
        for sub_config_name in ("storage", "compression"):
            sub_config = getattr(config, sub_config_name)
            if hasattr(sub_config, key):
                setattr(sub_config, key, value)
                touched.add(sub_config_name)
                break
        else:
            logger.warning(f"Unknown configuration parameter ignored: {key}")

    for sub_config_name in touched:
        getattr(config, sub_config_name).__post_init__()

    return config
