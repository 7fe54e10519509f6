"""
Key Management

Generation, persistence and publication of signing keys as JWKs.
Uses the cryptography library for all cryptographic operations.

Supported keys:
    OKP / Ed25519   (default)
    EC  / P-256
"""

import json
import os
from pathlib import Path
from typing import Iterable, Optional

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives import serialization

from httpsig.crypto import (
    P256_COORDINATE_SIZE,
    Jwk,
    b64url_encode,
    jwk_from_public_key,
    public_jwk_from_private,
    thumbprint,
    validate_jwk,
)
from httpsig.errors import InvalidKeyError


def generate_jwk(kty: str = "OKP", kid: Optional[str] = None) -> Jwk:
    """
    Generate a new private JWK.

    Args:
        kty: ``OKP`` for Ed25519 or ``EC`` for P-256
        kid: Key ID; defaults to the key's RFC 7638 thumbprint

    Returns:
        Private JWK including ``d`` and ``kid``

    Example:
        >>> private_jwk = generate_jwk()
        >>> public = public_jwk(private_jwk)
    """
    if kty == "OKP":
        private_key = Ed25519PrivateKey.generate()
        d = private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
    elif kty == "EC":
        private_key = ec.generate_private_key(ec.SECP256R1())
        d = private_key.private_numbers().private_value.to_bytes(P256_COORDINATE_SIZE, "big")
    else:
        raise InvalidKeyError(f"Unsupported key type: {kty}")

    jwk = jwk_from_public_key(private_key.public_key())
    jwk["d"] = b64url_encode(d)
    jwk["kid"] = kid or thumbprint(jwk)
    return jwk


def public_jwk(private_jwk: Jwk) -> Jwk:
    """
    Public half of a private JWK, suitable for publishing in a JWKS.

    Args:
        private_jwk: Private JWK

    Returns:
        Public JWK (``kid`` and ``alg`` kept, ``d`` never included)
    """
    return public_jwk_from_private(private_jwk)


def build_jwks(private_or_public_jwks: Iterable[Jwk]) -> dict:
    """
    Build a JWKS document (``{"keys": [...]}``) with only public members.

    Raises:
        InvalidKeyError: If a key is invalid
    """
    keys = []
    for jwk in private_or_public_jwks:
        if "d" in jwk:
            keys.append(public_jwk(jwk))
        else:
            validate_jwk(jwk)
            keys.append(dict(jwk))
    return {"keys": keys}


def save_jwk(jwk: Jwk, path: Path) -> Path:
    """
    Save a JWK to a JSON file.

    Files holding private keys are restricted to the owner (mode 600).

    Args:
        jwk: Private or public JWK
        path: Destination file; parent directories are created

    Returns:
        The path written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(jwk, indent=2) + "\n")
    if "d" in jwk:
        os.chmod(path, 0o600)  # Owner read/write only
    return path


def load_jwk(path: Path) -> Jwk:
    """
    Load a JWK from a JSON file.

    Args:
        path: Path to the JWK file

    Returns:
        The JWK

    Raises:
        FileNotFoundError: If file doesn't exist
        InvalidKeyError: If the file is not a valid JWK
    """
    path = Path(path)
    try:
        jwk = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise InvalidKeyError(f"Failed to load JWK from {path}: {e}", cause=e) from e
    validate_jwk(jwk)
    return jwk
