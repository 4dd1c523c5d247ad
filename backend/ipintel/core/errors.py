from __future__ import annotations

from enum import Enum


class ProviderError(Exception):
    """
    A failure scoped to one provider.
    Raised by adapters; the orchestrator turns it into a failed PartialResult.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ProviderTimeout(ProviderError):
    def __init__(self, reason: str = "timeout") -> None:
        super().__init__(reason)


class ProviderRateLimited(ProviderError):
    """Vendor answered 429 or reported its quota as exhausted."""


class ProviderAuthError(ProviderError):
    """Vendor rejected the configured credentials."""


class ProviderResponseError(ProviderError):
    """Non-2xx status or a body that could not be interpreted."""


class OperationCancelled(Exception):
    """Raised when a CancellationToken fires (deadline or explicit cancel)."""

    def __init__(self, reason: str = "cancelled") -> None:
        super().__init__(reason)
        self.reason = reason


class ValidationErrorCode(str, Enum):
    INVALID_FORMAT = "invalid_format"
    PRIVATE_IP = "private_ip"
    RESERVED_IP = "reserved_ip"


class IpValidationError(ValueError):
    def __init__(self, code: ValidationErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
