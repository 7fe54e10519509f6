"""
Cryptographic Primitives

JWK validation, Ed25519 and ECDSA P-256 signing/verification, RFC 7638
thumbprints and Content-Digest values.

Uses the cryptography library for all cryptographic operations. Keys are
exchanged as JWK dictionaries; the algorithm is always derived from
``kty``/``crv``:

    OKP + Ed25519  ->  EdDSA
    EC  + P-256    ->  ECDSA using SHA-256 (ES256)

Any other combination is rejected before cryptographic work begins.
"""

import base64
import binascii
import hashlib
import hmac
import json
import re
from enum import Enum
from typing import Any, Dict, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

from httpsig.errors import InvalidKeyError


Jwk = Dict[str, Any]
PrivateKey = Union[Ed25519PrivateKey, ec.EllipticCurvePrivateKey]
PublicKey = Union[Ed25519PublicKey, ec.EllipticCurvePublicKey]

# Raw key and coordinate sizes (bytes)
ED25519_KEY_SIZE = 32
P256_COORDINATE_SIZE = 32

_REQUIRED_MEMBERS = {
    "OKP": ("crv", "x"),
    "EC": ("crv", "x", "y"),
    "RSA": ("n", "e"),  # accepted for interop, never signed or verified
}

# RFC 7638 section 3.2: required members, already in lexicographic order
_THUMBPRINT_MEMBERS = {
    "OKP": ("crv", "kty", "x"),
    "EC": ("crv", "kty", "x", "y"),
    "RSA": ("e", "kty", "n"),
}

_B64URL_RE = re.compile(r"[A-Za-z0-9_-]*")
_DIGEST_RE = re.compile(r"(?:^|,)\s*sha-256=:([A-Za-z0-9+/=]*):")


class Algorithm(str, Enum):
    """Signature algorithms derived from a JWK."""
    EDDSA = "EdDSA"
    ES256 = "ES256"


# ============================================================
# Encoding helpers
# ============================================================

def b64url_encode(data: bytes) -> str:
    """Base64URL encoding without padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(data: str) -> bytes:
    """
    Base64URL decoding, padding optional.

    Raises:
        ValueError: If ``data`` contains characters outside the base64url alphabet
    """
    if not isinstance(data, str) or not _B64URL_RE.fullmatch(data):
        raise ValueError("not a base64url string")
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def b64_encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def sha256(data: Union[bytes, str]) -> bytes:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).digest()


# ============================================================
# JWK validation and import
# ============================================================

def validate_jwk(jwk: Jwk) -> None:
    """
    Validate JWK structure.

    OKP and EC keys need their curve and coordinates; RSA keys need ``n`` and
    ``e``. Symmetric keys (``kty=oct`` or an ``HS*`` algorithm) are always
    rejected.

    Raises:
        InvalidKeyError: If the JWK is malformed or of an unsupported type
    """
    if not isinstance(jwk, dict):
        raise InvalidKeyError("JWK must be a JSON object")

    kty = jwk.get("kty")
    if not kty:
        raise InvalidKeyError("JWK missing required field: kty")

    alg = jwk.get("alg")
    if kty == "oct" or (isinstance(alg, str) and alg.upper().startswith("HS")):
        raise InvalidKeyError(f"Symmetric keys are not supported (kty={kty}, alg={alg})")

    required = _REQUIRED_MEMBERS.get(kty)
    if required is None:
        raise InvalidKeyError(f"Unsupported key type: {kty}")

    for member in required:
        if not jwk.get(member):
            raise InvalidKeyError(f"{kty} JWK missing required field: {member}")


def algorithm_for_jwk(jwk: Jwk) -> Algorithm:
    """
    Derive the signature algorithm from ``kty`` and ``crv``.

    Raises:
        InvalidKeyError: For any combination other than OKP/Ed25519 or EC/P-256
    """
    kty = jwk.get("kty")
    crv = jwk.get("crv")

    if kty == "OKP":
        if crv == "Ed25519":
            return Algorithm.EDDSA
        raise InvalidKeyError(f"Unsupported OKP curve: {crv}")

    if kty == "EC":
        if crv == "P-256":
            return Algorithm.ES256
        raise InvalidKeyError(f"Unsupported EC curve: {crv}")

    raise InvalidKeyError(f"Unsupported key type: {kty}")


def _decode_member(jwk: Jwk, member: str, size: int) -> bytes:
    try:
        raw = b64url_decode(jwk[member])
    except (KeyError, ValueError, binascii.Error) as e:
        raise InvalidKeyError(f"JWK member {member} is not valid base64url", cause=e) from e
    if len(raw) != size:
        raise InvalidKeyError(
            f"JWK member {member} has invalid length: {len(raw)} bytes (expected {size})"
        )
    return raw


def load_public_key(jwk: Jwk) -> PublicKey:
    """
    Import a public JWK as a cryptography key object.

    Raises:
        InvalidKeyError: If the key is malformed, unsupported or not on its curve
    """
    validate_jwk(jwk)
    algorithm = algorithm_for_jwk(jwk)

    if algorithm is Algorithm.EDDSA:
        return Ed25519PublicKey.from_public_bytes(_decode_member(jwk, "x", ED25519_KEY_SIZE))

    x = int.from_bytes(_decode_member(jwk, "x", P256_COORDINATE_SIZE), "big")
    y = int.from_bytes(_decode_member(jwk, "y", P256_COORDINATE_SIZE), "big")
    try:
        return ec.EllipticCurvePublicNumbers(x, y, ec.SECP256R1()).public_key()
    except ValueError as e:
        raise InvalidKeyError("EC public key is not a valid P-256 point", cause=e) from e


def load_private_key(jwk: Jwk) -> PrivateKey:
    """
    Import a private JWK as a cryptography key object.

    Raises:
        InvalidKeyError: If the key is malformed, unsupported or lacks ``d``
    """
    validate_jwk(jwk)
    algorithm = algorithm_for_jwk(jwk)

    if not jwk.get("d"):
        raise InvalidKeyError("Private JWK missing required field: d")

    if algorithm is Algorithm.EDDSA:
        return Ed25519PrivateKey.from_private_bytes(_decode_member(jwk, "d", ED25519_KEY_SIZE))

    d = int.from_bytes(_decode_member(jwk, "d", P256_COORDINATE_SIZE), "big")
    try:
        return ec.derive_private_key(d, ec.SECP256R1())
    except ValueError as e:
        raise InvalidKeyError("EC private key is out of range for P-256", cause=e) from e


def jwk_from_public_key(public_key: PublicKey) -> Jwk:
    """Export an Ed25519 or P-256 public key as a JWK."""
    if isinstance(public_key, Ed25519PublicKey):
        raw = public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return {"kty": "OKP", "crv": "Ed25519", "x": b64url_encode(raw)}

    if isinstance(public_key, ec.EllipticCurvePublicKey) and isinstance(public_key.curve, ec.SECP256R1):
        numbers = public_key.public_numbers()
        return {
            "kty": "EC",
            "crv": "P-256",
            "x": b64url_encode(numbers.x.to_bytes(P256_COORDINATE_SIZE, "big")),
            "y": b64url_encode(numbers.y.to_bytes(P256_COORDINATE_SIZE, "big")),
        }

    raise InvalidKeyError(f"Unsupported public key type: {type(public_key).__name__}")


def public_jwk_from_private(private_jwk: Jwk) -> Jwk:
    """
    Derive the public JWK from a private JWK.

    The coordinates are computed from the private scalar rather than copied,
    so a private JWK with stale ``x``/``y`` members cannot advertise a key it
    does not hold. ``kid`` and ``alg`` are carried over when present.
    """
    private_key = load_private_key(private_jwk)
    public = jwk_from_public_key(private_key.public_key())
    for member in ("kid", "alg"):
        if member in private_jwk:
            public[member] = private_jwk[member]
    return public


# ============================================================
# Sign / verify
# ============================================================

def sign(data: bytes, private_jwk: Jwk) -> bytes:
    """
    Sign data with a private JWK.

    ECDSA signatures are returned as fixed-width ``r || s`` (64 bytes).

    Raises:
        InvalidKeyError: If the key is invalid or unsupported
    """
    private_key = load_private_key(private_jwk)

    if isinstance(private_key, Ed25519PrivateKey):
        return private_key.sign(data)

    der = private_key.sign(data, ec.ECDSA(hashes.SHA256()))
    r, s = decode_dss_signature(der)
    return r.to_bytes(P256_COORDINATE_SIZE, "big") + s.to_bytes(P256_COORDINATE_SIZE, "big")


def verify(
    data: bytes,
    signature: bytes,
    public_jwk: Jwk,
    algorithm: Optional[Union[Algorithm, str]] = None,
) -> bool:
    """
    Verify a signature with a public JWK.

    Args:
        data: Signed bytes (the signature base)
        signature: Raw signature bytes
        public_jwk: Public key
        algorithm: Expected algorithm; must match the one derived from the key

    Returns:
        True if the signature is valid, False otherwise

    Raises:
        InvalidKeyError: If the key is invalid or unsupported, or does not
            match ``algorithm``
    """
    validate_jwk(public_jwk)
    derived = algorithm_for_jwk(public_jwk)
    if algorithm is not None and algorithm != derived:
        raise InvalidKeyError(f"Algorithm {algorithm} does not match key algorithm {derived.value}")

    public_key = load_public_key(public_jwk)

    try:
        if derived is Algorithm.EDDSA:
            public_key.verify(signature, data)
        else:
            if len(signature) != 2 * P256_COORDINATE_SIZE:
                return False
            r = int.from_bytes(signature[:P256_COORDINATE_SIZE], "big")
            s = int.from_bytes(signature[P256_COORDINATE_SIZE:], "big")
            public_key.verify(encode_dss_signature(r, s), data, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        return False
    return True


# ============================================================
# Thumbprint and digest
# ============================================================

def thumbprint(jwk: Jwk) -> str:
    """
    Calculate the JWK thumbprint (RFC 7638).

    Only the required members take part, serialized as JSON in lexicographic
    order without whitespace, hashed with SHA-256 and base64url encoded. The
    result does not depend on member order or optional members of the input.

    Raises:
        InvalidKeyError: If the key type is unsupported or members are missing
    """
    kty = jwk.get("kty")
    members = _THUMBPRINT_MEMBERS.get(kty)
    if members is None:
        raise InvalidKeyError(f"Unsupported key type: {kty}")

    missing = [member for member in members if not jwk.get(member)]
    if missing:
        raise InvalidKeyError(f"{kty} key missing required fields ({', '.join(missing)})")

    canonical = json.dumps(
        {member: jwk[member] for member in members},
        separators=(",", ":"),
        sort_keys=True,
        ensure_ascii=False,
    )
    return b64url_encode(sha256(canonical))


def content_digest(body: Union[bytes, str]) -> str:
    """
    Compute a Content-Digest header value.

    Example:
        >>> content_digest(b"")
        'sha-256=:47DEQpj8HBSa+/TImW+5JCeuQeRkm5NMpJWZG3hSuFU=:'
    """
    return f"sha-256=:{b64_encode(sha256(body))}:"


def content_digest_matches(header: str, body: Union[bytes, str]) -> bool:
    """Check the ``sha-256`` member of a Content-Digest header against a body."""
    found = _DIGEST_RE.search(header or "")
    if not found:
        return False
    try:
        advertised = base64.b64decode(found.group(1), validate=True)
    except (binascii.Error, ValueError):
        return False
    return hmac.compare_digest(advertised, sha256(body))
