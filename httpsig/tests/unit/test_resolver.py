"""
Unit tests for key resolution.

Covers the hwk, jwt and jwks_uri schemes, metadata discovery, caching and
fetch failures. Network access is stubbed with httpx.MockTransport.
"""
import httpx
import jwt
import pytest

from httpsig.cache import JwksCache
from httpsig.codec import KeyScheme, SignatureKey
from httpsig.crypto import public_jwk_from_private
from httpsig.errors import KeyResolutionError, UnsupportedSchemeError
from httpsig.resolver import KeyResolver


AGENT = "https://agent.example"
METADATA_URL = "https://agent.example/.well-known/agent-server"
JWKS_URL = "https://agent.example/jwks.json"

JWT_SECRET = "unit-test-secret-unit-test-secret"


def jwks_entry(**params):
    return SignatureKey(label="sig", scheme=KeyScheme.JWKS_URI, params=params)


@pytest.fixture
def published_key(ed25519_jwk):
    return dict(public_jwk_from_private(ed25519_jwk), kid="key-1")


@pytest.fixture
def agent_server(document_server, published_key):
    document_server.add(METADATA_URL, {"issuer": AGENT, "jwks_uri": JWKS_URL})
    document_server.add(JWKS_URL, {"keys": [{"kty": "OKP", "crv": "Ed25519", "x": "other", "kid": "key-0"}, published_key]})
    return document_server


class TestHwk:
    """Test inline keys."""

    @pytest.mark.asyncio
    async def test_params_are_the_key(self):
        entry = SignatureKey(label="sig", scheme=KeyScheme.HWK, params={"kty": "OKP", "crv": "Ed25519", "x": "abc"})

        resolved = await KeyResolver().resolve(entry)

        assert resolved.public_key == {"kty": "OKP", "crv": "Ed25519", "x": "abc"}
        assert resolved.source is KeyScheme.HWK
        assert resolved.jwt is None and resolved.jwks is None


class TestJwt:
    """Test JWT-carried keys."""

    @pytest.mark.asyncio
    async def test_cnf_jwk(self, published_key):
        token = jwt.encode({"iss": AGENT, "cnf": {"jwk": published_key}}, JWT_SECRET, algorithm="HS256",
                           headers={"typ": "agent+jwt"})
        entry = SignatureKey(label="sig", scheme=KeyScheme.JWT, params={"jwt": token})

        resolved = await KeyResolver().resolve(entry)

        assert resolved.public_key == published_key
        assert resolved.jwt["raw"] == token
        assert resolved.jwt["header"]["typ"] == "agent+jwt"
        assert resolved.jwt["payload"]["iss"] == AGENT

    @pytest.mark.asyncio
    async def test_missing_cnf(self):
        token = jwt.encode({"iss": AGENT}, JWT_SECRET, algorithm="HS256")
        entry = SignatureKey(label="sig", scheme=KeyScheme.JWT, params={"jwt": token})

        with pytest.raises(KeyResolutionError, match="JWT missing cnf.jwk claim"):
            await KeyResolver().resolve(entry)

    @pytest.mark.asyncio
    async def test_undecodable(self):
        entry = SignatureKey(label="sig", scheme=KeyScheme.JWT, params={"jwt": "not-a-jwt"})

        with pytest.raises(KeyResolutionError, match="Invalid JWT") as excinfo:
            await KeyResolver().resolve(entry)
        assert excinfo.value.cause is not None


class TestJwksUri:
    """Test JWKS lookup and discovery."""

    @pytest.mark.asyncio
    async def test_well_known_discovery(self, agent_server, published_key):
        async with agent_server.client() as client:
            resolver = KeyResolver(client=client)
            resolved = await resolver.resolve(jwks_entry(id=AGENT, kid="key-1", **{"well-known": "agent-server"}))

        assert resolved.public_key == published_key
        assert resolved.jwks == {"id": AGENT, "kid": "key-1", "well_known": "agent-server"}
        assert agent_server.hits[METADATA_URL] == 1
        assert agent_server.hits[JWKS_URL] == 1

    @pytest.mark.asyncio
    async def test_direct_jwks_url(self, agent_server, published_key):
        async with agent_server.client() as client:
            resolved = await KeyResolver(client=client).resolve(jwks_entry(id=JWKS_URL, kid="key-1"))

        assert resolved.public_key == published_key
        assert agent_server.hits[METADATA_URL] == 0

    @pytest.mark.asyncio
    async def test_cache_hit_performs_no_io(self, agent_server):
        entry = jwks_entry(id=AGENT, kid="key-1", **{"well-known": "agent-server"})
        async with agent_server.client() as client:
            resolver = KeyResolver(client=client)
            await resolver.resolve(entry)
            await resolver.resolve(entry)

        assert agent_server.hits[METADATA_URL] == 1
        assert agent_server.hits[JWKS_URL] == 1

    @pytest.mark.asyncio
    async def test_shared_cache_between_resolvers(self, agent_server):
        cache = JwksCache()
        entry = jwks_entry(id=JWKS_URL, kid="key-1")
        async with agent_server.client() as client:
            await KeyResolver(client=client, cache=cache).resolve(entry)
            await KeyResolver(client=client, cache=cache).resolve(entry)

        assert agent_server.hits[JWKS_URL] == 1

    @pytest.mark.asyncio
    async def test_zero_ttl_refetches(self, agent_server):
        entry = jwks_entry(id=JWKS_URL, kid="key-1")
        async with agent_server.client() as client:
            resolver = KeyResolver(client=client)
            await resolver.resolve(entry, cache_ttl=0)
            await resolver.resolve(entry, cache_ttl=0)

        assert agent_server.hits[JWKS_URL] == 2

    @pytest.mark.asyncio
    async def test_timeouts(self, agent_server):
        entry = jwks_entry(id=AGENT, kid="key-1", **{"well-known": "agent-server"})
        async with agent_server.client() as client:
            await KeyResolver(client=client, jwks_timeout=2.5).resolve(entry)

        assert agent_server.timeouts[METADATA_URL]["read"] == 10.0
        assert agent_server.timeouts[JWKS_URL]["read"] == 2.5

    @pytest.mark.asyncio
    async def test_unknown_kid(self, agent_server):
        async with agent_server.client() as client:
            with pytest.raises(KeyResolutionError, match=f'Key with kid="nope" not found in JWKS from {JWKS_URL}'):
                await KeyResolver(client=client).resolve(jwks_entry(id=JWKS_URL, kid="nope"))

    @pytest.mark.asyncio
    async def test_metadata_without_jwks_uri(self, document_server):
        document_server.add(METADATA_URL, {"issuer": AGENT})
        async with document_server.client() as client:
            with pytest.raises(KeyResolutionError, match=f"Metadata document missing jwks_uri: {METADATA_URL}"):
                await KeyResolver(client=client).resolve(
                    jwks_entry(id=AGENT, kid="key-1", **{"well-known": "agent-server"})
                )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"keys": "nope"}, {"other": []}])
    async def test_invalid_jwks_format(self, document_server, payload):
        document_server.add(JWKS_URL, payload)
        async with document_server.client() as client:
            with pytest.raises(KeyResolutionError, match=f"Invalid JWKS format from {JWKS_URL}"):
                await KeyResolver(client=client).resolve(jwks_entry(id=JWKS_URL, kid="key-1"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, payload", [
        (404, {"error": "not found"}),
        (500, {"keys": []}),
        (200, "not json"),
        (200, ["a", "list"]),
    ])
    async def test_bad_responses(self, document_server, status, payload):
        document_server.add(JWKS_URL, payload, status=status)
        async with document_server.client() as client:
            with pytest.raises(KeyResolutionError):
                await KeyResolver(client=client).resolve(jwks_entry(id=JWKS_URL, kid="key-1"))

        # failures are never cached
        assert document_server.hits[JWKS_URL] == 1

    @pytest.mark.asyncio
    async def test_network_error_carries_cause(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
            with pytest.raises(KeyResolutionError) as excinfo:
                await KeyResolver(client=client).resolve(jwks_entry(id=JWKS_URL, kid="key-1"))

        assert isinstance(excinfo.value.cause, httpx.ConnectError)


class TestX509:
    """Test the reserved scheme."""

    @pytest.mark.asyncio
    async def test_rejected(self):
        entry = SignatureKey(label="sig", scheme=KeyScheme.X509, params={})

        with pytest.raises(UnsupportedSchemeError, match="x509 is not implemented"):
            await KeyResolver().resolve(entry)


class TestFromSettings:
    """Test settings-driven construction."""

    def test_defaults(self):
        resolver = KeyResolver.from_settings()

        assert resolver.cache_ttl == 3600.0
        assert resolver.discovery_timeout == 10.0
        assert resolver.jwks_timeout is None

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("HTTPSIG_DISCOVERY_TIMEOUT", "2")
        monkeypatch.setenv("HTTPSIG_JWKS_TIMEOUT", "3")
        monkeypatch.setenv("HTTPSIG_JWKS_CACHE_TTL", "5")

        resolver = KeyResolver.from_settings()

        assert (resolver.discovery_timeout, resolver.jwks_timeout, resolver.cache_ttl) == (2.0, 3.0, 5.0)

    @pytest.mark.asyncio
    async def test_timeouts_reach_requests(self, monkeypatch, agent_server):
        monkeypatch.setenv("HTTPSIG_DISCOVERY_TIMEOUT", "2")
        monkeypatch.setenv("HTTPSIG_JWKS_TIMEOUT", "3")
        entry = jwks_entry(id=AGENT, kid="key-1", **{"well-known": "agent-server"})

        async with agent_server.client() as client:
            await KeyResolver.from_settings(client=client).resolve(entry)

        assert agent_server.timeouts[METADATA_URL]["read"] == 2.0
        assert agent_server.timeouts[JWKS_URL]["read"] == 3.0
