"""Custom exceptions for configuration, storage and processing errors."""

from __future__ import annotations


class ConfigurationError(Exception):
    """Base exception for configuration errors with optional suggestions."""

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = f"[Configuration Error] {self.message}"
        if self.suggestion:
            msg += f"\n[Suggestion] {self.suggestion}"
        return msg


class ConfigFileNotFoundError(ConfigurationError, FileNotFoundError):
    """Error when the configuration file does not exist."""

    def __init__(self, config_path: str) -> None:
        super().__init__(
            f"Configuration file not found: {config_path}",
            "Copy config.example.yaml and point --config at it.",
        )


class InvalidConfigError(ConfigurationError):
    """Error when configuration values fail validation."""

    def __init__(self, config_path: str, reason: str) -> None:
        super().__init__(
            f"Invalid configuration in {config_path}",
            reason,
        )


class StorageError(Exception):
    """Base exception for persistence failures."""


class TransientStorageError(StorageError):
    """A storage operation failed for a transient reason and may be retried."""


class OperationTimeoutError(TransientStorageError):
    """A storage operation outlived its timeout; its thread may still commit."""


class DataIntegrityError(StorageError):
    """An event or aggregate input references data that does not exist or is invalid."""


class ClaimLostError(StorageError):
    """A dirty-queue claim was released or reclaimed before the work committed."""

    def __init__(self, item_id: str, claim_token: str) -> None:
        self.item_id = item_id
        self.claim_token = claim_token
        super().__init__(f"Claim {claim_token} on item {item_id} is no longer held")


class BatchFailedError(Exception):
    """A batch run exceeded the systemic error threshold."""

    def __init__(self, errors: int, claimed: int) -> None:
        self.errors = errors
        self.claimed = claimed
        super().__init__(f"Batch failed: {errors} of {claimed} items errored")
