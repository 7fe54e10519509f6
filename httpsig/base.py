"""
Signature Base Builder

Builds the RFC 9421 signature base: one line per covered component,

    "<component>": <value>

followed by the ``@signature-params`` line, joined with LF and without a
trailing newline. Signer and verifier both go through build_signature_base,
so the two sides cannot drift apart.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import httpx

from httpsig.codec import SIGNATURE_PARAMS, SignatureInput, serialize_inner_list
from httpsig.crypto import content_digest_matches
from httpsig.errors import DigestMismatchError, MissingComponentError

logger = logging.getLogger(__name__)


HeaderValue = Union[str, Sequence[str]]
HeadersInput = Union[Mapping[str, HeaderValue], Iterable[Tuple[str, str]], httpx.Headers, None]


def normalize_headers(headers: HeadersInput) -> Dict[str, str]:
    """
    Normalize a header collection for component lookup.

    Names are lower-cased, values trimmed, and repeated fields combined with
    ``", "`` in the order received (RFC 9421 section 2.1).

    Args:
        headers: Mapping (values may be lists), iterable of pairs or
            httpx.Headers

    Returns:
        Lower-cased name -> combined value
    """
    if headers is None:
        return {}

    if hasattr(headers, "multi_items"):
        items = headers.multi_items()
    elif isinstance(headers, Mapping):
        items = list(headers.items())
    else:
        items = list(headers)

    collected: Dict[str, List[str]] = {}
    for name, value in items:
        if isinstance(name, bytes):
            name = name.decode("latin-1")
        values = [value] if isinstance(value, (str, bytes)) else list(value)
        for item in values:
            if isinstance(item, bytes):
                item = item.decode("latin-1")
            collected.setdefault(name.lower(), []).append(str(item).strip())

    return {name: ", ".join(values) for name, values in collected.items()}


@dataclass(frozen=True)
class RequestDescriptor:
    """
    Normalized view of an HTTP request.

    Attributes:
        method: HTTP method
        authority: Canonical authority (host[:port]); used for ``@authority``
            instead of the Host header
        path: Request path, raw (percent-encoding preserved)
        query: Query string without the leading ``?``, or None
        headers: Lower-cased name -> combined value
        body: Raw body bytes, or None when the request has no body
        scheme: URI scheme
    """
    method: str
    authority: str
    path: str
    query: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    scheme: str = "https"

    def __post_init__(self):
        object.__setattr__(self, "headers", normalize_headers(self.headers))
        if isinstance(self.body, str):
            object.__setattr__(self, "body", self.body.encode("utf-8"))

    @classmethod
    def from_url(
        cls,
        method: str,
        url: Union[str, httpx.URL],
        headers: HeadersInput = None,
        body: Optional[Union[bytes, str]] = None,
    ) -> "RequestDescriptor":
        """Build a descriptor from an absolute URL."""
        url = httpx.URL(url)
        # IPv6 literals keep their brackets in the authority
        host = f"[{url.host}]" if ":" in url.host else url.host
        authority = host if url.port is None else f"{host}:{url.port}"
        raw_path = url.raw_path.decode("ascii")
        path, _, query = raw_path.partition("?")
        return cls(
            method=method,
            authority=authority,
            path=path,
            query=query or None,
            headers=headers,
            body=body,
            scheme=url.scheme,
        )

    @property
    def request_target(self) -> str:
        path = self.path or "/"
        return f"{path}?{self.query}" if self.query else path

    @property
    def target_uri(self) -> str:
        return f"{self.scheme.lower()}://{self.authority.lower()}{self.request_target}"


def derived_component(name: str, request: RequestDescriptor) -> str:
    """
    Value of a derived (``@``-prefixed) component.

    Raises:
        MissingComponentError: For derived components this engine does not support
    """
    if name == "@method":
        return request.method.upper()
    if name == "@target-uri":
        return request.target_uri
    if name == "@authority":
        return request.authority.lower()
    if name == "@scheme":
        return request.scheme.lower()
    if name == "@request-target":
        return request.request_target
    if name == "@path":
        return request.path or "/"
    if name == "@query":
        return f"?{request.query or ''}"
    raise MissingComponentError(f"Unsupported derived component: {name}")


def component_value(name: str, request: RequestDescriptor) -> str:
    """
    Resolve a covered component to its signature base value.

    Raises:
        MissingComponentError: If a header is absent or a derived component
            is unsupported
    """
    if name.startswith("@"):
        return derived_component(name, request)

    value = request.headers.get(name.lower())
    if value is None:
        raise MissingComponentError(f"Missing header for component: {name}")
    return value


def check_content_digest(request: RequestDescriptor) -> None:
    """
    Recompute Content-Digest over the body and compare it with the header.

    Raises:
        MissingComponentError: If the Content-Digest header is absent
        DigestMismatchError: If the digest does not match the body
    """
    header = request.headers.get("content-digest")
    if header is None:
        raise MissingComponentError("Missing header for component: content-digest")
    if not content_digest_matches(header, request.body):
        raise DigestMismatchError("Content-Digest mismatch")


def build_signature_base(entry: SignatureInput, request: RequestDescriptor) -> str:
    """
    Build the signature base for one Signature-Input entry.

    When ``content-digest`` is covered and the request carries a body, the
    digest is checked against the body before any line is produced.

    Args:
        entry: Components and parameters being signed
        request: The request

    Returns:
        Signature base string

    Raises:
        MissingComponentError: If a covered component cannot be resolved
        DigestMismatchError: If Content-Digest does not match the body
    """
    if entry.covers("content-digest") and request.body is not None:
        check_content_digest(request)

    lines = [f'"{component}": {component_value(component, request)}' for component in entry.components]
    lines.append(f'"{SIGNATURE_PARAMS}": {serialize_inner_list(entry.components, entry.params)}')

    logger.debug(f"Built signature base for {entry.label} ({len(entry.components)} components)")
    return "\n".join(lines)
