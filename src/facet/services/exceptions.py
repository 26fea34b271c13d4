"""Service error hierarchy for provider, storage and pipeline operations.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, non-2xx responses, timeouts)
- PermanentError: Non-retryable errors (API-level rejections, configuration)
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (5xx)
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Provider rejected the request with an API error code
    - Provider accepted the request but returned no task id
    - Model missing from the registry
    """

    pass


# Provider errors
class TransportError(TransientError):
    """HTTP or network failure talking to a provider or storage."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderRejectedError(PermanentError):
    """Provider answered 2xx but reported an API-level error code."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code


class NoTaskIdError(PermanentError):
    """Submission succeeded but no task identifier could be extracted."""

    pass


class UnknownModelError(PermanentError):
    """No active Model Registry entry for the requested model."""

    def __init__(self, model_id: str):
        super().__init__(f"Model not found or inactive: {model_id}")
        self.model_id = model_id


# Storage / asset errors
class StorageError(TransientError):
    """Durable storage upload failed."""

    pass


class MaterializationError(TransientError):
    """Provider result could not be re-hosted (always handled by falling back)."""

    pass


class AssetDownloadError(TransientError):
    """Source asset could not be fetched from its origin."""

    pass


# Lookup errors
class QueueItemNotFoundError(PermanentError):
    """Queue item does not exist (already completed or never created)."""

    pass


class JobNotFoundError(PermanentError):
    """AI job does not exist."""

    pass
