"""
Signature Verification

Verifies RFC 9421 signatures on incoming requests whose key is advertised in
a Signature-Key header.

Pipeline (the first failing step ends verification):
    1. Parse Signature-Key; its single label selects the signature
    2. Select the Signature-Input entry with that label
    3. Strict profile: signature-key must be a covered component
    4. Check |now - created| against the allowed clock skew
    5. Resolve the public key (hwk / jwt / jwks_uri)
    6. Validate the resolved JWK
    7. Select the Signature entry with that label
    8. Rebuild the signature base (Content-Digest checked) and verify

Verification never raises: every outcome is a VerificationResult.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from httpsig import crypto
from httpsig.base import RequestDescriptor, build_signature_base
from httpsig.codec import parse_signature, parse_signature_input, parse_signature_key
from httpsig.config import Settings, get_settings
from httpsig.errors import FormatError, HttpSigError, SignatureInvalidError, TimestampError
from httpsig.resolver import KeyResolver, ResolvedKey

logger = logging.getLogger(__name__)


# Default accepted clock skew (seconds)
DEFAULT_MAX_CLOCK_SKEW = 60

AAUTH_COMPONENT = "signature-key"


@dataclass
class VerifyOptions:
    """
    Verification options.

    Attributes:
        max_clock_skew: Accepted |now - created| in seconds
        jwks_cache_ttl: Cache lifetime for documents fetched during this
            verification; None uses the resolver's default
        strict_aauth: Require ``signature-key`` to be a covered component
    """
    max_clock_skew: int = DEFAULT_MAX_CLOCK_SKEW
    jwks_cache_ttl: Optional[float] = None
    strict_aauth: bool = True

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "VerifyOptions":
        """Build options from environment settings."""
        settings = settings or get_settings()
        return cls(
            max_clock_skew=settings.max_clock_skew,
            jwks_cache_ttl=settings.jwks_cache_ttl,
            strict_aauth=settings.strict_aauth,
        )


@dataclass
class VerificationResult:
    """
    Result of signature verification.

    Attributes:
        verified: Whether verification succeeded
        label: Signature label (once discovered)
        key_type: Signature-Key scheme (once discovered)
        public_key: Verified public JWK
        thumbprint: RFC 7638 thumbprint of the public key
        created: Signature creation time
        jwt: Header, payload and raw token for the jwt scheme
        jwks: id, kid and well_known for the jwks_uri scheme
        error: Human-readable error message
        error_code: Stable error code (see httpsig.errors)
    """
    verified: bool
    label: Optional[str] = None
    key_type: Optional[str] = None
    public_key: Optional[Dict[str, Any]] = None
    thumbprint: Optional[str] = None
    created: Optional[int] = None
    jwt: Optional[Dict[str, Any]] = None
    jwks: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, label: str, resolved: ResolvedKey, created: int) -> "VerificationResult":
        """Create a successful result."""
        return cls(
            verified=True,
            label=label,
            key_type=resolved.source.value,
            public_key=resolved.public_key,
            thumbprint=resolved.thumbprint,
            created=created,
            jwt=resolved.jwt,
            jwks=resolved.jwks,
        )

    @classmethod
    def fail(
        cls,
        error: HttpSigError,
        label: Optional[str] = None,
        key_type: Optional[str] = None,
    ) -> "VerificationResult":
        """Create a failed result. No key material is carried."""
        return cls(
            verified=False,
            label=label,
            key_type=key_type,
            error=error.message,
            error_code=error.code,
        )


@dataclass
class _Progress:
    label: Optional[str] = None
    key_type: Optional[str] = None


class Verifier:
    """
    Reusable verifier.

    Holds the options and a KeyResolver so the JWKS cache is shared across
    requests. Safe to use from concurrent tasks.

    Args:
        options: Verification options; built from settings when omitted
        resolver: Key resolver; one with a private cache and settings-driven
            timeouts is created when omitted
    """

    def __init__(self, options: Optional[VerifyOptions] = None, resolver: Optional[KeyResolver] = None):
        self.options = options or VerifyOptions.from_settings()
        self.resolver = resolver or KeyResolver.from_settings()

    async def verify(self, request: RequestDescriptor) -> VerificationResult:
        """
        Verify a request.

        Args:
            request: Normalized request

        Returns:
            VerificationResult; ``verified`` is False with ``error`` and
            ``error_code`` set on any failure
        """
        progress = _Progress()
        try:
            return await self._verify(request, progress)
        except HttpSigError as e:
            logger.warning(f"Signature verification failed (label={progress.label}): {e.message}")
            return VerificationResult.fail(e, label=progress.label, key_type=progress.key_type)
        except Exception as e:
            logger.error(f"Unexpected error verifying signature (label={progress.label}): {e}", exc_info=True)
            error = HttpSigError(f"Unexpected verification error: {e}", cause=e)
            return VerificationResult.fail(error, label=progress.label, key_type=progress.key_type)

    async def _verify(self, request: RequestDescriptor, progress: _Progress) -> VerificationResult:
        headers = request.headers

        key_header = headers.get("signature-key")
        if not key_header:
            raise FormatError("Missing Signature-Key header")
        signature_key = parse_signature_key(key_header)[0]
        label = progress.label = signature_key.label
        progress.key_type = signature_key.scheme.value

        input_header = headers.get("signature-input")
        if not input_header:
            raise FormatError("Missing Signature-Input header")
        entry = next((e for e in parse_signature_input(input_header) if e.label == label), None)
        if entry is None:
            raise FormatError(f'No Signature-Input found for label "{label}" from Signature-Key')

        if self.options.strict_aauth and not entry.covers(AAUTH_COMPONENT):
            raise FormatError("AAuth profile violation: signature-key must be in covered components")

        self._check_timestamp(entry.created)

        resolved = await self.resolver.resolve(signature_key, cache_ttl=self.options.jwks_cache_ttl)
        crypto.validate_jwk(resolved.public_key)

        signature_header = headers.get("signature")
        if not signature_header:
            raise FormatError("Missing Signature header")
        signature = parse_signature(signature_header).get(label)
        if signature is None:
            raise FormatError(f"No signature found for label: {label}")

        signature_base = build_signature_base(entry, request)
        if not crypto.verify(signature_base.encode("utf-8"), signature, resolved.public_key):
            raise SignatureInvalidError("Signature verification failed")

        logger.debug(f"Verified signature {label} ({signature_key.scheme.value})")
        return VerificationResult.ok(label, resolved, entry.created)

    def _check_timestamp(self, created: int) -> None:
        skew = abs(int(time.time()) - created)
        if skew > self.options.max_clock_skew:
            raise TimestampError(f"Signature timestamp out of acceptable range (skew: {skew}s)")


async def verify(
    request: RequestDescriptor,
    options: Optional[VerifyOptions] = None,
    resolver: Optional[KeyResolver] = None,
) -> VerificationResult:
    """
    Verify a request with a one-off Verifier.

    Pass a shared ``resolver`` to keep the JWKS cache between calls.
    """
    return await Verifier(options, resolver).verify(request)
