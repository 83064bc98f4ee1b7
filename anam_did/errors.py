"""
Error taxonomy for the trust engine.

Verification functions report semantic failures through structured results;
the exceptions below are raised by construction helpers, the stateful
services and the vault cipher.
"""


class AnamDIDError(Exception):
    """Base exception for all trust engine errors."""

    error_type: str = "internal_error"

    def __init__(self, message: str = "An internal error occurred"):
        self.message = message
        super().__init__(message)


class ValidationError(AnamDIDError):
    """Malformed input shape or format (address, DID, vault container)."""

    error_type = "validation_error"


class CryptoError(AnamDIDError):
    """Signature mismatch or decryption authentication failure."""

    error_type = "crypto_error"


class ExpiredError(AnamDIDError):
    """Challenge, session or credential TTL exceeded."""

    error_type = "expired"


class ReplayError(AnamDIDError):
    """Single-use value already consumed."""

    error_type = "replay"


class RevokedError(AnamDIDError):
    """Credential registry reports REVOKED."""

    error_type = "revoked"


class InactiveError(AnamDIDError):
    """Credential registry reports a status other than ACTIVE or REVOKED."""

    error_type = "inactive"


class NotFoundError(AnamDIDError):
    """DID, credential or session could not be resolved."""

    error_type = "not_found"
