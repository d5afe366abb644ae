from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class SalmonErrorCode(str, Enum):
    USAGE = "SALMON_USAGE"
    KEY_INVALID = "SALMON_KEY_INVALID"
    SIGNING_FAILED = "SALMON_SIGNING_FAILED"
    ENVELOPE_INVALID = "SALMON_ENVELOPE_INVALID"
    SIGNATURE_INVALID = "SALMON_SIGNATURE_INVALID"
    TRANSPORT = "SALMON_TRANSPORT"
    KEYRING_INVALID = "SALMON_KEYRING_INVALID"
    INTERNAL_ERROR = "SALMON_INTERNAL_ERROR"


class SalmonError(Exception):
    """
    Base error for the package.

    code:    stable machine-readable code (SalmonErrorCode)
    message: human-readable message, safe to print
    details: optional diagnostics (only exposed in debug mode)
    """

    default_code = SalmonErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: Optional[SalmonErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message
        self.details = details or {}


class KeyLoadError(SalmonError):
    """Raised when key material cannot be parsed."""

    default_code = SalmonErrorCode.KEY_INVALID


class SigningError(SalmonError):
    default_code = SalmonErrorCode.SIGNING_FAILED


class EnvelopeError(SalmonError):
    """Raised when an envelope document is malformed."""

    default_code = SalmonErrorCode.ENVELOPE_INVALID


class TransportError(SalmonError):
    """Raised when the HTTP request could not be completed (no response)."""

    default_code = SalmonErrorCode.TRANSPORT


class KeyRingError(SalmonError):
    """Raised when the keyring file or key formats are invalid."""

    default_code = SalmonErrorCode.KEYRING_INVALID
