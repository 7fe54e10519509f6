"""
HTTP Message Signatures

RFC 9421 request signing and verification with the Signature-Key header.
Supports Ed25519 and ECDSA P-256 keys distributed inline (hwk), in a JWT
(jwt) or through a JWKS (jwks_uri).

Verify with ``httpsig.verify.verify`` or a reusable ``Verifier``; FastAPI
integration lives in ``httpsig.helpers``.
"""

from httpsig.base import RequestDescriptor, build_signature_base
from httpsig.cache import JwksCache
from httpsig.codec import (
    KeyScheme,
    SignatureInput,
    SignatureKey,
    Token,
    parse_signature,
    parse_signature_input,
    parse_signature_key,
    serialize_signature,
    serialize_signature_input,
    serialize_signature_key,
)
from httpsig.config import Settings, get_settings
from httpsig.crypto import content_digest, thumbprint, validate_jwk
from httpsig.errors import (
    DigestMismatchError,
    FormatError,
    HttpSigError,
    InvalidKeyError,
    KeyResolutionError,
    MissingComponentError,
    SignatureInvalidError,
    TimestampError,
    UnsupportedSchemeError,
)
from httpsig.keys import generate_jwk, load_jwk, public_jwk, save_jwk
from httpsig.resolver import KeyResolver, ResolvedKey
from httpsig.sign import KeySpec, SignedRequest, fetch, sign_request
from httpsig.verify import VerificationResult, Verifier, VerifyOptions

__all__ = [
    # Codec
    "KeyScheme",
    "SignatureInput",
    "SignatureKey",
    "Token",
    "parse_signature",
    "parse_signature_input",
    "parse_signature_key",
    "serialize_signature",
    "serialize_signature_input",
    "serialize_signature_key",
    # Crypto / keys
    "content_digest",
    "thumbprint",
    "validate_jwk",
    "generate_jwk",
    "load_jwk",
    "public_jwk",
    "save_jwk",
    # Signing
    "KeySpec",
    "SignedRequest",
    "fetch",
    "sign_request",
    # Verification
    "RequestDescriptor",
    "build_signature_base",
    "JwksCache",
    "KeyResolver",
    "ResolvedKey",
    "VerificationResult",
    "Verifier",
    "VerifyOptions",
    # Config
    "Settings",
    "get_settings",
    # Errors
    "HttpSigError",
    "FormatError",
    "MissingComponentError",
    "KeyResolutionError",
    "UnsupportedSchemeError",
    "InvalidKeyError",
    "TimestampError",
    "DigestMismatchError",
    "SignatureInvalidError",
]
