"""
Shared fixtures for the signature engine tests.

Provides signing keys, a converter from signed requests to verifier input,
and an httpx mock transport that serves JSON documents and counts fetches.
"""
import json
import os
from collections import Counter
from typing import Any, Dict, Tuple, Union

import httpx
import pytest

from httpsig import config
from httpsig.base import RequestDescriptor
from httpsig.keys import generate_jwk
from httpsig.sign import SignedRequest


# RFC 8037 Appendix A.1 Ed25519 key
RFC8037_PRIVATE_JWK = {
    "kty": "OKP",
    "crv": "Ed25519",
    "d": "nWGxne_9WmC6hEr0kuwsxERJxWl7MmkZcDusAxyuf2A",
    "x": "11qYAYKxCrfVS_7TyWQHOg7hcvPapiMlrwIaaPcHURo",
}


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    """Isolate tests from HTTPSIG_* variables and the cached settings instance."""
    for name in list(os.environ):
        if name.upper().startswith("HTTPSIG_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config, "_settings", None)
    yield
    config._settings = None


@pytest.fixture
def ed25519_jwk():
    """Fresh Ed25519 private JWK."""
    return generate_jwk("OKP", kid="test-ed25519")


@pytest.fixture
def p256_jwk():
    """Fresh P-256 private JWK."""
    return generate_jwk("EC", kid="test-p256")


@pytest.fixture
def rfc8037_jwk():
    return dict(RFC8037_PRIVATE_JWK)


@pytest.fixture
def to_descriptor():
    """Convert a SignedRequest into what a server would hand the verifier."""
    def convert(signed: SignedRequest, **overrides) -> RequestDescriptor:
        url = httpx.URL(signed.url)
        fields = dict(
            method=signed.method,
            authority=url.netloc.decode("ascii"),
            path=url.raw_path.decode("ascii").partition("?")[0],
            query=url.query.decode("ascii") or None,
            headers=signed.headers,
            body=signed.body,
            scheme=url.scheme,
        )
        fields.update(overrides)
        return RequestDescriptor(**fields)

    return convert


class DocumentServer:
    """
    Mock HTTP server for metadata and JWKS documents.

    Routes map a URL to ``(status, payload)``; a ``str`` payload is sent
    verbatim, anything else as JSON. ``hits`` counts requests per URL.
    """

    def __init__(self):
        self.routes: Dict[str, Tuple[int, Union[str, Any]]] = {}
        self.hits: Counter = Counter()
        self.timeouts: Dict[str, Any] = {}

    def add(self, url: str, payload: Any, status: int = 200) -> None:
        self.routes[url] = (status, payload)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.hits[url] += 1
        self.timeouts[url] = request.extensions.get("timeout")
        if url not in self.routes:
            return httpx.Response(404, text="not found")
        status, payload = self.routes[url]
        if isinstance(payload, str):
            return httpx.Response(status, text=payload)
        return httpx.Response(status, content=json.dumps(payload).encode("utf-8"),
                              headers={"content-type": "application/json"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def document_server():
    return DocumentServer()
