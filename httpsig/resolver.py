"""
Key Resolver

Turns a Signature-Key entry into a public JWK.

Schemes:
- hwk:      the header parameters are the key, no I/O
- jwt:      the key is the ``cnf.jwk`` claim of an (unverified) JWT
- jwks_uri: the key is looked up by ``kid`` in a JWKS document, optionally
            discovered through ``{id}/.well-known/{well-known}`` metadata
- x509:     reserved, always rejected

Dispatch goes through a scheme -> coroutine mapping, so supporting a new
scheme means adding one entry. Fetched documents are cached per URL in a
JwksCache; there are no retries.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import jwt

from httpsig.cache import DEFAULT_TTL_SECONDS, JwksCache
from httpsig.codec import KeyScheme, SignatureKey
from httpsig.config import Settings, get_settings
from httpsig.crypto import Jwk, thumbprint
from httpsig.errors import KeyResolutionError, UnsupportedSchemeError

logger = logging.getLogger(__name__)


# Timeout for well-known metadata discovery (seconds)
DEFAULT_DISCOVERY_TIMEOUT = 10.0


@dataclass(frozen=True)
class ResolvedKey:
    """
    Result of key resolution.

    Attributes:
        public_key: Public JWK (not yet validated)
        source: Scheme the key came from
        jwt: ``{"header", "payload", "raw"}`` for the jwt scheme
        jwks: ``{"id", "kid", "well_known"}`` for the jwks_uri scheme
    """
    public_key: Jwk
    source: KeyScheme
    jwt: Optional[Dict[str, Any]] = None
    jwks: Optional[Dict[str, Any]] = None

    @property
    def thumbprint(self) -> str:
        """RFC 7638 thumbprint of the public key."""
        return thumbprint(self.public_key)


class KeyResolver:
    """
    Resolves Signature-Key entries to public keys.

    Args:
        client: Shared httpx.AsyncClient; a short-lived client is opened per
            fetch when omitted
        cache: Document cache; a private one is created when omitted
        cache_ttl: Default cache lifetime for fetched documents (seconds)
        discovery_timeout: Timeout for the well-known metadata request
        jwks_timeout: Timeout for the JWKS request; None uses the client's
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        cache: Optional[JwksCache] = None,
        cache_ttl: float = DEFAULT_TTL_SECONDS,
        discovery_timeout: Optional[float] = DEFAULT_DISCOVERY_TIMEOUT,
        jwks_timeout: Optional[float] = None,
    ):
        self.client = client
        self.cache = cache if cache is not None else JwksCache(ttl=cache_ttl)
        self.cache_ttl = cache_ttl
        self.discovery_timeout = discovery_timeout
        self.jwks_timeout = jwks_timeout

        self._resolvers: Dict[KeyScheme, Callable[[SignatureKey, float], Awaitable[ResolvedKey]]] = {
            KeyScheme.HWK: self._resolve_hwk,
            KeyScheme.JWT: self._resolve_jwt,
            KeyScheme.JWKS_URI: self._resolve_jwks_uri,
            KeyScheme.X509: self._resolve_x509,
        }

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        cache: Optional[JwksCache] = None,
    ) -> "KeyResolver":
        """Build a resolver whose TTL and timeouts come from environment settings."""
        settings = settings or get_settings()
        return cls(
            client=client,
            cache=cache,
            cache_ttl=settings.jwks_cache_ttl,
            discovery_timeout=settings.discovery_timeout,
            jwks_timeout=settings.jwks_timeout,
        )

    async def resolve(self, entry: SignatureKey, cache_ttl: Optional[float] = None) -> ResolvedKey:
        """
        Resolve a Signature-Key entry.

        Args:
            entry: Parsed Signature-Key member
            cache_ttl: Lifetime for documents fetched by this call; defaults
                to the resolver's cache_ttl

        Returns:
            ResolvedKey with the public JWK and scheme-specific metadata

        Raises:
            KeyResolutionError: If the key cannot be obtained
            UnsupportedSchemeError: For reserved schemes (x509)
        """
        resolver = self._resolvers.get(entry.scheme)
        if resolver is None:
            raise UnsupportedSchemeError(f"Unsupported Signature-Key scheme: {entry.scheme}")
        ttl = self.cache_ttl if cache_ttl is None else cache_ttl
        return await resolver(entry, ttl)

    # ============================================================
    # Schemes
    # ============================================================

    async def _resolve_hwk(self, entry: SignatureKey, ttl: float) -> ResolvedKey:
        return ResolvedKey(public_key=dict(entry.params), source=KeyScheme.HWK)

    async def _resolve_jwt(self, entry: SignatureKey, ttl: float) -> ResolvedKey:
        token = entry.params["jwt"]
        try:
            header = jwt.get_unverified_header(token)
            payload = jwt.decode(token, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            raise KeyResolutionError(f"Invalid JWT: {e}", cause=e) from e

        confirmation = payload.get("cnf")
        if not isinstance(confirmation, dict) or not isinstance(confirmation.get("jwk"), dict):
            raise KeyResolutionError("JWT missing cnf.jwk claim")

        return ResolvedKey(
            public_key=dict(confirmation["jwk"]),
            source=KeyScheme.JWT,
            jwt={"header": header, "payload": payload, "raw": token},
        )

    async def _resolve_jwks_uri(self, entry: SignatureKey, ttl: float) -> ResolvedKey:
        identifier = entry.params["id"]
        kid = entry.params["kid"]
        well_known = entry.params.get("well-known")

        if well_known:
            metadata_url = f"{identifier.rstrip('/')}/.well-known/{well_known}"
            metadata = await self._fetch_document(metadata_url, self.discovery_timeout, ttl)
            jwks_url = metadata.get("jwks_uri")
            if not isinstance(jwks_url, str) or not jwks_url:
                raise KeyResolutionError(f"Metadata document missing jwks_uri: {metadata_url}")
        else:
            jwks_url = identifier

        jwks = await self._fetch_document(jwks_url, self.jwks_timeout, ttl)
        keys = jwks.get("keys")
        if not isinstance(keys, list):
            raise KeyResolutionError(f"Invalid JWKS format from {jwks_url}")

        key = next((k for k in keys if isinstance(k, dict) and k.get("kid") == kid), None)
        if key is None:
            raise KeyResolutionError(f'Key with kid="{kid}" not found in JWKS from {jwks_url}')

        return ResolvedKey(
            public_key=dict(key),
            source=KeyScheme.JWKS_URI,
            jwks={"id": identifier, "kid": kid, "well_known": well_known},
        )

    async def _resolve_x509(self, entry: SignatureKey, ttl: float) -> ResolvedKey:
        raise UnsupportedSchemeError("Signature-Key scheme x509 is not implemented")

    # ============================================================
    # HTTP
    # ============================================================

    async def _fetch_document(self, url: str, timeout: Optional[float], ttl: float) -> Dict[str, Any]:
        """
        GET a JSON object, consulting the cache first.

        Raises:
            KeyResolutionError: On network errors, non-2xx responses, invalid
                JSON or a non-object document
        """
        cached = self.cache.get(url)
        if cached is not None:
            logger.debug(f"JWKS cache hit: {url}")
            return cached

        logger.debug(f"Fetching {url}")
        try:
            response = await self._get(url, timeout)
        except httpx.HTTPError as e:
            raise KeyResolutionError(f"Failed to fetch {url}: {e}", cause=e) from e

        if not response.is_success:
            raise KeyResolutionError(f"Failed to fetch {url}: HTTP {response.status_code}")

        try:
            document = response.json()
        except ValueError as e:
            raise KeyResolutionError(f"Invalid JSON from {url}", cause=e) from e

        if not isinstance(document, dict):
            raise KeyResolutionError(f"Expected a JSON object from {url}")

        self.cache.set(url, document, ttl=ttl)
        return document

    async def _get(self, url: str, timeout: Optional[float]) -> httpx.Response:
        kwargs = {} if timeout is None else {"timeout": timeout}
        if self.client is not None:
            return await self.client.get(url, **kwargs)
        async with httpx.AsyncClient() as client:
            return await client.get(url, **kwargs)
