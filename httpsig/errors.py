"""
HTTP Signature Errors

Exception taxonomy shared by the codec, resolver and both pipelines.

Signing raises these directly (they describe caller mistakes). Verification
catches them at its boundary and reports ``code`` and ``message`` in a
VerificationResult instead.
"""

from typing import Optional


class HttpSigError(Exception):
    """Base class for all signature engine errors."""

    code = "httpsig_error"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def to_dict(self) -> dict:
        """Convert error to dictionary representation."""
        return {
            "code": self.code,
            "message": self.message,
            "cause": str(self.cause) if self.cause else None,
        }


class FormatError(HttpSigError):
    """Malformed header grammar or a missing mandatory parameter."""

    code = "format_error"


class MissingComponentError(HttpSigError):
    """A covered component has no resolvable value."""

    code = "missing_component"


class KeyResolutionError(HttpSigError):
    """The public key named by Signature-Key could not be obtained."""

    code = "key_resolution"


class UnsupportedSchemeError(KeyResolutionError):
    """Signature-Key scheme is reserved but not implemented (x509)."""

    code = "unsupported_scheme"


class InvalidKeyError(HttpSigError):
    """JWK is malformed or uses an unsupported key type or curve."""

    code = "invalid_key"


class TimestampError(HttpSigError):
    """Signature ``created`` is outside the accepted clock skew."""

    code = "timestamp"


class DigestMismatchError(HttpSigError):
    """Content-Digest does not match the received body."""

    code = "digest_mismatch"


class SignatureInvalidError(HttpSigError):
    """Cryptographic verification of the signature failed."""

    code = "signature_invalid"
