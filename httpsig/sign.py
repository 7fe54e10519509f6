"""
Request Signing

Signs outgoing HTTP requests with RFC 9421 message signatures and attaches
the Signature-Key header that tells the verifier where the public key lives.

Headers produced:
    Content-Digest:  sha-256=:<base64>:        (body requests, when covered)
    Signature-Key:   sig=hwk;kty="OKP";crv="Ed25519";x="..."
    Signature-Input: sig=("@method" "@target-uri" "signature-key");created=1700000000
    Signature:       sig=:<base64>:

Default covered components:
    with a body:    @method @target-uri content-type content-digest signature-key
    without a body: @method @target-uri signature-key
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple, Union

import httpx

from httpsig import crypto
from httpsig.base import RequestDescriptor, build_signature_base
from httpsig.codec import (
    KeyScheme,
    SignatureInput,
    SignatureKey,
    serialize_signature,
    serialize_signature_input,
    serialize_signature_key,
    validate_label,
)
from httpsig.config import get_settings
from httpsig.errors import MissingComponentError, UnsupportedSchemeError

logger = logging.getLogger(__name__)


DEFAULT_TEXT_CONTENT_TYPE = "text/plain;charset=UTF-8"
DEFAULT_BINARY_CONTENT_TYPE = "application/octet-stream"

BODY_COMPONENTS = ("@method", "@target-uri", "content-type", "content-digest", "signature-key")
BODYLESS_COMPONENTS = ("@method", "@target-uri", "signature-key")

# JWK members published in an hwk Signature-Key
_HWK_MEMBERS = ("kty", "crv", "x", "y")


@dataclass(frozen=True)
class KeySpec:
    """
    How the verifier should find the signer's public key.

    Use the constructors rather than building instances directly:

        KeySpec.hwk()
        KeySpec.jwt(token)
        KeySpec.jwks_uri("https://agent.example", "key-1", well_known="agent-server")
    """
    scheme: KeyScheme
    params: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        try:
            object.__setattr__(self, "scheme", KeyScheme(self.scheme))
        except ValueError:
            raise UnsupportedSchemeError(f"Unsupported Signature-Key scheme: {self.scheme}") from None

    @classmethod
    def hwk(cls) -> "KeySpec":
        """Publish the public key inline, derived from the signing key."""
        return cls(KeyScheme.HWK)

    @classmethod
    def jwt(cls, token: str) -> "KeySpec":
        """Publish a JWT whose ``cnf.jwk`` claim is the public key."""
        return cls(KeyScheme.JWT, {"jwt": token})

    @classmethod
    def jwks_uri(cls, id: str, kid: str, well_known: Optional[str] = None) -> "KeySpec":
        """Point at a JWKS, directly or through ``{id}/.well-known/{well_known}``."""
        params = {"id": id}
        if well_known:
            params["well-known"] = well_known
        params["kid"] = kid
        return cls(KeyScheme.JWKS_URI, params)

    def to_signature_key(self, label: str, signing_key: crypto.Jwk) -> SignatureKey:
        """
        Build the Signature-Key entry for a signature.

        Raises:
            UnsupportedSchemeError: For reserved schemes (x509)
            InvalidKeyError: If the hwk public key cannot be derived
        """
        if self.scheme is KeyScheme.HWK:
            public = crypto.public_jwk_from_private(signing_key)
            params = {name: public[name] for name in _HWK_MEMBERS if name in public}
        elif self.scheme in (KeyScheme.JWT, KeyScheme.JWKS_URI):
            params = dict(self.params)
        else:
            raise UnsupportedSchemeError(f"Signature-Key scheme {self.scheme.value} is not supported for signing")
        return SignatureKey(label=label, scheme=self.scheme, params=params)


@dataclass
class SignedRequest:
    """
    A signed request, ready to send.

    Attributes:
        method: HTTP method (upper-cased)
        url: Target URL
        headers: Caller headers plus the signature headers
        body: Body bytes, or None
        label: Signature label
        created: Signature creation time
        signature_base: The exact bytes that were signed (as text)
    """
    method: str
    url: str
    headers: httpx.Headers
    body: Optional[bytes]
    label: str
    created: int
    signature_base: str

    def to_httpx(self) -> httpx.Request:
        return httpx.Request(self.method, self.url, headers=self.headers, content=self.body)


def select_components(has_body: bool, components: Optional[Iterable[str]] = None) -> Tuple[str, ...]:
    """
    Choose the covered components.

    A caller-supplied list replaces the defaults entirely; duplicates are
    dropped, keeping the first occurrence.
    """
    if components is None:
        return BODY_COMPONENTS if has_body else BODYLESS_COMPONENTS

    selected = []
    for component in components:
        if component not in selected:
            selected.append(component)
    return tuple(selected)


def sign_request(
    url: Union[str, httpx.URL],
    *,
    signing_key: crypto.Jwk,
    signature_key: KeySpec,
    method: str = "GET",
    headers: Optional[Union[Dict[str, str], Iterable[Tuple[str, str]], httpx.Headers]] = None,
    body: Optional[Union[bytes, str]] = None,
    label: Optional[str] = None,
    components: Optional[Iterable[str]] = None,
    created: Optional[int] = None,
) -> SignedRequest:
    """
    Sign a request.

    Args:
        url: Absolute target URL
        signing_key: Private JWK (Ed25519 or P-256)
        signature_key: Where the verifier finds the public key
        method: HTTP method
        headers: Additional request headers
        body: Request body; ``str`` is sent as UTF-8
        label: Signature label (defaults to the configured default_label)
        components: Covered components, replacing the defaults
        created: Signature creation time (defaults to now)

    Returns:
        SignedRequest carrying all headers to send

    Raises:
        InvalidKeyError: If the signing key is invalid or unsupported
        UnsupportedSchemeError: If the key scheme cannot be used for signing
        MissingComponentError: If a covered header is missing, or
            content-digest is covered without a body
        FormatError: If the label is invalid
    """
    label = validate_label(label or get_settings().default_label)
    crypto.load_private_key(signing_key)

    method = method.upper()
    url = str(url)
    request_headers = httpx.Headers(headers)

    body_bytes = None
    if body is not None:
        if isinstance(body, str):
            body_bytes = body.encode("utf-8")
            default_content_type = DEFAULT_TEXT_CONTENT_TYPE
        else:
            body_bytes = bytes(body)
            default_content_type = DEFAULT_BINARY_CONTENT_TYPE

    covered = select_components(body is not None, components)

    if "content-digest" in covered:
        if body_bytes is None:
            raise MissingComponentError("content-digest is covered but the request has no body")
        request_headers["content-digest"] = crypto.content_digest(body_bytes)

    if body_bytes is not None and "content-type" in covered and "content-type" not in request_headers:
        request_headers["content-type"] = default_content_type

    key_entry = signature_key.to_signature_key(label, signing_key)
    request_headers["signature-key"] = serialize_signature_key(key_entry)

    created = int(time.time()) if created is None else created
    entry = SignatureInput(label=label, components=covered, params={"created": created})
    request_headers["signature-input"] = serialize_signature_input(entry)

    descriptor = RequestDescriptor.from_url(method, url, headers=request_headers, body=body_bytes)
    signature_base = build_signature_base(entry, descriptor)
    signature = crypto.sign(signature_base.encode("utf-8"), signing_key)
    request_headers["signature"] = serialize_signature({label: signature})

    logger.debug(f"Signed {method} {url} as {label} ({key_entry.scheme.value}, {len(covered)} components)")

    return SignedRequest(
        method=method,
        url=url,
        headers=request_headers,
        body=body_bytes,
        label=label,
        created=created,
        signature_base=signature_base,
    )


async def fetch(
    url: Union[str, httpx.URL],
    *,
    signing_key: crypto.Jwk,
    signature_key: KeySpec,
    method: str = "GET",
    headers: Optional[Union[Dict[str, str], Iterable[Tuple[str, str]], httpx.Headers]] = None,
    body: Optional[Union[bytes, str]] = None,
    label: Optional[str] = None,
    components: Optional[Iterable[str]] = None,
    created: Optional[int] = None,
    dry_run: bool = False,
    client: Optional[httpx.AsyncClient] = None,
    timeout: Optional[float] = None,
) -> Union[httpx.Response, SignedRequest]:
    """
    Sign a request and send it.

    Takes the same signing arguments as sign_request.

    Args:
        dry_run: Return the SignedRequest instead of sending it
        client: httpx.AsyncClient to send with; a short-lived one is used
            when omitted
        timeout: Request timeout in seconds; None uses the client's

    Returns:
        httpx.Response, or SignedRequest in dry-run mode

    Raises:
        Everything sign_request raises, plus httpx.HTTPError on transport
        failures
    """
    signed = sign_request(
        url,
        signing_key=signing_key,
        signature_key=signature_key,
        method=method,
        headers=headers,
        body=body,
        label=label,
        components=components,
        created=created,
    )
    if dry_run:
        return signed

    kwargs = {} if timeout is None else {"timeout": timeout}
    if client is not None:
        return await client.request(
            signed.method, signed.url, headers=signed.headers, content=signed.body, **kwargs
        )
    async with httpx.AsyncClient() as owned:
        return await owned.request(
            signed.method, signed.url, headers=signed.headers, content=signed.body, **kwargs
        )
