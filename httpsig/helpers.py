"""
FastAPI / Starlette Helpers

Thin adapters from a Starlette request to the verification pipeline.

Usage:
    from fastapi import Depends, FastAPI
    from httpsig.helpers import require_signature

    app = FastAPI()
    signed = require_signature(authority="api.example.com")

    @app.post("/orders")
    async def create_order(signature: VerificationResult = Depends(signed)):
        return {"thumbprint": signature.thumbprint}

The raw body is read once with ``await request.body()``; Starlette caches it,
so route handlers can still read it afterwards.

Pin ``authority`` in production: without it the Host header is trusted as the
canonical authority. ``scheme`` defaults to ``https`` so that requests behind a
TLS-terminating proxy verify against the URL the client signed; pass ``None``
to use the scheme the app was reached with.
"""

import logging
from typing import Awaitable, Callable, Optional

from fastapi import HTTPException, Request, status

from httpsig.base import RequestDescriptor
from httpsig.resolver import KeyResolver
from httpsig.verify import VerificationResult, Verifier, VerifyOptions

logger = logging.getLogger(__name__)


DEFAULT_SCHEME = "https"


async def descriptor_from_request(
    request: Request,
    authority: Optional[str] = None,
    scheme: Optional[str] = DEFAULT_SCHEME,
) -> RequestDescriptor:
    """
    Build a RequestDescriptor from a Starlette request.

    Args:
        request: Incoming request
        authority: Canonical authority to verify against; defaults to the
            Host header
        scheme: Canonical scheme to verify against; None uses the scheme of
            the incoming connection

    Returns:
        RequestDescriptor (an empty body is treated as no body)
    """
    body = await request.body()

    raw_path = request.scope.get("raw_path")
    path = raw_path.split(b"?", 1)[0].decode("latin-1") if raw_path else request.url.path
    query = request.scope.get("query_string", b"").decode("latin-1")

    return RequestDescriptor(
        method=request.method,
        authority=authority or request.headers.get("host") or request.url.netloc,
        path=path,
        query=query or None,
        headers=request.headers.raw,
        body=body or None,
        scheme=scheme or request.url.scheme,
    )


async def verify_request(
    request: Request,
    options: Optional[VerifyOptions] = None,
    resolver: Optional[KeyResolver] = None,
    authority: Optional[str] = None,
    scheme: Optional[str] = DEFAULT_SCHEME,
) -> VerificationResult:
    """Verify the signature on a Starlette request."""
    descriptor = await descriptor_from_request(request, authority=authority, scheme=scheme)
    return await Verifier(options, resolver).verify(descriptor)


def require_signature(
    options: Optional[VerifyOptions] = None,
    resolver: Optional[KeyResolver] = None,
    authority: Optional[str] = None,
    scheme: Optional[str] = DEFAULT_SCHEME,
) -> Callable[[Request], Awaitable[VerificationResult]]:
    """
    Create a FastAPI dependency that requires a valid signature.

    One Verifier (and so one JWKS cache) is shared by every request the
    dependency handles.

    Returns:
        Dependency returning the VerificationResult

    Raises (from the dependency):
        HTTPException: 401 with ``{"error", "code"}`` if verification fails
    """
    verifier = Verifier(options, resolver)

    async def dependency(request: Request) -> VerificationResult:
        descriptor = await descriptor_from_request(request, authority=authority, scheme=scheme)
        result = await verifier.verify(descriptor)
        if not result.verified:
            logger.info(f"Rejected unsigned or badly signed request: {request.method} {request.url.path}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"error": result.error, "code": result.error_code},
            )
        return result

    return dependency
