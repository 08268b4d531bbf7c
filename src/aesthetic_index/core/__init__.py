"""Core configuration and utilities for the aesthetic scoring pipeline."""

from aesthetic_index.core.config import (
    BatchConfig,
    CalibrationConfig,
    CollectionConfig,
    ComponentWeights,
    ComposerConfig,
    ConfidenceWeights,
    DirtyPriorities,
    PublishGateConfig,
    RatingConfig,
    ScoringConfig,
    StorageConfig,
    load_config,
)
from aesthetic_index.core.errors import (
    BatchFailedError,
    ClaimLostError,
    ConfigFileNotFoundError,
    ConfigurationError,
    DataIntegrityError,
    InvalidConfigError,
    StorageError,
    TransientStorageError,
)

__all__ = [
    "BatchConfig",
    "CalibrationConfig",
    "CollectionConfig",
    "ComponentWeights",
    "ComposerConfig",
    "ConfidenceWeights",
    "DirtyPriorities",
    "PublishGateConfig",
    "RatingConfig",
    "ScoringConfig",
    "StorageConfig",
    "load_config",
    "BatchFailedError",
    "ClaimLostError",
    "ConfigFileNotFoundError",
    "ConfigurationError",
    "DataIntegrityError",
    "InvalidConfigError",
    "StorageError",
    "TransientStorageError",
]
