"""Custom exception classes for the indexer."""

from typing import Optional


class IndexerError(Exception):
    """Base exception for the indexer.

    ``status_code`` and ``code`` drive the API error response; ``message`` is
    safe to show to the caller.
    """

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class ValidationError(IndexerError):
    """Raised when input validation fails (bad job type, config or fields)."""
    status_code = 400
    code = "validation_error"


class AuthenticationError(IndexerError):
    """Raised when a caller or webhook cannot be authenticated."""
    status_code = 401
    code = "unauthorized"


class NotFoundError(IndexerError):
    """Raised when a connection or job is missing or not owned by the caller."""
    status_code = 404
    code = "not_found"


class ConnectionTestFailed(IndexerError):
    """Raised when a tenant database is unreachable or rejects credentials."""
    status_code = 400
    code = "connection_test_failed"


class ProvisioningError(IndexerError):
    """Raised when webhook create/delete failed after all retries."""
    status_code = 502
    code = "provisioning_failed"


class ProcessingError(IndexerError):
    """Raised when a queued batch failed in a way worth retrying."""
    status_code = 500
    code = "processing_failed"


class CryptoError(IndexerError):
    """Raised on vault misconfiguration or corrupt ciphertext."""
    status_code = 500
    code = "crypto_error"


class PayloadError(IndexerError):
    """Raised when a queued payload fails for a reason a retry cannot fix."""
    status_code = 422
    code = "payload_error"


# Errors the dispatch queue must never retry
NON_RETRYABLE_ERRORS = (ValidationError, NotFoundError, CryptoError, PayloadError)


class ProviderError(IndexerError):
    """Raised by the webhook provider client for a single failed call.

    ``transient`` marks failures worth retrying (network errors, 429, 5xx).
    """
    status_code = 502
    code = "provider_error"

    def __init__(
        self,
        message: str = "Webhook provider call failed",
        transient: bool = True,
        provider_status: Optional[int] = None,
    ):
        self.transient = transient
        self.provider_status = provider_status
        super().__init__(message)
