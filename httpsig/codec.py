"""
Structured Field Codec

Parses and serializes the three signature headers using the subset of
RFC 8941 (Structured Field Values) they need:

    Signature-Input: sig=("@method" "@target-uri" "signature-key");created=1700000000
    Signature-Key:   sig=hwk;kty="OKP";crv="Ed25519";x="11qYAYKx..."
    Signature:       sig=:wqcAqbmYJ2ji2glfAMaRy4gruYYnx2nEFN2HN6jrnDnQ...:

Only the constructs these headers use are supported: dictionaries, inner
lists of quoted strings, byte sequences and parameters whose values are
integers, booleans, quoted strings or tokens.

Signature-Key is stricter than a generic dictionary: exactly one member is
allowed per header, and the check runs before any structural parsing.
"""

import base64
import binascii
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from httpsig.errors import FormatError


_KEY_RE = re.compile(r"[a-z*][a-z0-9_\-.*]*")
_TOKEN_RE = re.compile(r"[A-Za-z*][A-Za-z0-9!#$%&'*+\-.^_`|~:/]*")
_INTEGER_RE = re.compile(r"-?[0-9]{1,15}")
_BYTES_RE = re.compile(r":[A-Za-z0-9+/=]*:")

SIGNATURE_PARAMS = "@signature-params"


class Token(str):
    """An RFC 8941 token. Serialized bare, without quotes."""

    def __repr__(self) -> str:
        return f"Token({str.__repr__(self)})"


BareItem = Union[int, bool, str]


class KeyScheme(str, Enum):
    """Key distribution schemes carried by the Signature-Key header."""
    HWK = "hwk"
    JWT = "jwt"
    JWKS_URI = "jwks_uri"
    X509 = "x509"  # reserved, never resolved


REQUIRED_KEY_PARAMS: Dict[KeyScheme, Tuple[str, ...]] = {
    KeyScheme.HWK: ("kty",),
    KeyScheme.JWT: ("jwt",),
    KeyScheme.JWKS_URI: ("id", "kid"),
    KeyScheme.X509: (),
}


def validate_label(label: str) -> str:
    """
    Check that a label is a valid dictionary key.

    Raises:
        FormatError: If the label is not ``[a-z*][a-z0-9_-.*]*``
    """
    if not isinstance(label, str) or not _KEY_RE.fullmatch(label):
        raise FormatError(f"Invalid signature label: {label!r}")
    return label


@dataclass(frozen=True)
class SignatureInput:
    """
    One member of the Signature-Input dictionary.

    Attributes:
        label: Signature label shared with Signature-Key and Signature
        components: Covered component identifiers, in signing order
        params: Signature parameters; ``created`` is mandatory
    """
    label: str
    components: Tuple[str, ...]
    params: Dict[str, BareItem] = field(default_factory=dict)

    def __post_init__(self):
        validate_label(self.label)
        components = tuple(self.components)
        seen = set()
        for component in components:
            if not component:
                raise FormatError("Signature-Input contains an empty component identifier")
            if component == SIGNATURE_PARAMS:
                raise FormatError(f"{SIGNATURE_PARAMS} cannot be a covered component")
            if component in seen:
                raise FormatError(f"Duplicate component in Signature-Input: {component}")
            seen.add(component)

        params = dict(self.params)
        if "created" not in params:
            raise FormatError("Signature-Input missing required parameter: created")
        created = params["created"]
        if isinstance(created, bool) or not isinstance(created, int):
            raise FormatError(f"Signature-Input parameter created must be an integer, got {created!r}")

        object.__setattr__(self, "components", components)
        object.__setattr__(self, "params", params)

    @property
    def created(self) -> int:
        return self.params["created"]

    def covers(self, component: str) -> bool:
        return component in self.components


@dataclass(frozen=True)
class SignatureKey:
    """
    The single member of a Signature-Key dictionary.

    Attributes:
        label: Signature label
        scheme: Key distribution scheme
        params: Scheme-specific string parameters
    """
    label: str
    scheme: KeyScheme
    params: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        validate_label(self.label)
        try:
            scheme = KeyScheme(self.scheme)
        except ValueError:
            raise FormatError(f"Unsupported Signature-Key scheme: {self.scheme}") from None

        params = {}
        for name, value in dict(self.params).items():
            if not isinstance(value, str):
                raise FormatError(f"Signature-Key parameter {name} must be a string")
            params[name] = str(value)

        missing = [name for name in REQUIRED_KEY_PARAMS[scheme] if not params.get(name)]
        if missing:
            raise FormatError(
                f"Signature-Key {scheme.value} scheme missing required parameter(s): "
                f"{', '.join(missing)}"
            )

        object.__setattr__(self, "scheme", scheme)
        object.__setattr__(self, "params", params)


class _Scanner:
    """Cursor over a single dictionary member."""

    def __init__(self, text: str, header: str):
        self.text = text
        self.header = header
        self.pos = 0

    def error(self, reason: str) -> FormatError:
        return FormatError(f"Invalid {self.header} format: {reason} in {self.text!r}")

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def skip_spaces(self) -> None:
        while self.peek() == " ":
            self.pos += 1

    def expect(self, char: str) -> None:
        if self.peek() != char:
            raise self.error(f"expected {char!r}")
        self.pos += 1

    def match(self, pattern: "re.Pattern") -> Optional[str]:
        found = pattern.match(self.text, self.pos)
        if not found:
            return None
        self.pos = found.end()
        return found.group(0)

    def finish(self) -> None:
        if self.pos != len(self.text):
            raise self.error("unexpected trailing characters")

    def key(self) -> str:
        value = self.match(_KEY_RE)
        if value is None:
            raise self.error("expected a key")
        return value

    def string(self) -> str:
        self.expect('"')
        chars = []
        while self.pos < len(self.text):
            char = self.text[self.pos]
            self.pos += 1
            if char == "\\":
                escaped = self.peek()
                if escaped not in ('"', "\\"):
                    raise self.error("invalid escape in string")
                chars.append(escaped)
                self.pos += 1
            elif char == '"':
                return "".join(chars)
            elif not " " <= char <= "~":
                raise self.error("invalid character in string")
            else:
                chars.append(char)
        raise self.error("unterminated string")

    def byte_sequence(self) -> bytes:
        raw = self.match(_BYTES_RE)
        if raw is None:
            raise self.error("expected a byte sequence")
        try:
            return base64.b64decode(raw[1:-1], validate=True)
        except (binascii.Error, ValueError) as e:
            raise FormatError(f"Invalid {self.header} format: bad base64 value", cause=e) from e

    def bare_item(self) -> BareItem:
        char = self.peek()
        if char == '"':
            return self.string()
        if char == "?":
            self.pos += 1
            flag = self.peek()
            if flag not in ("0", "1"):
                raise self.error("invalid boolean")
            self.pos += 1
            return flag == "1"
        if char == "-" or char.isdigit():
            value = self.match(_INTEGER_RE)
            if value is None:
                raise self.error("invalid integer")
            if self.peek() == ".":
                raise self.error("decimal values are not supported")
            return int(value)
        token = self.match(_TOKEN_RE)
        if token is None:
            raise self.error("expected a value")
        return Token(token)

    def parameters(self) -> Dict[str, BareItem]:
        params: Dict[str, BareItem] = {}
        while self.peek() == ";":
            self.pos += 1
            self.skip_spaces()
            name = self.key()
            if self.peek() == "=":
                self.pos += 1
                params[name] = self.bare_item()
            else:
                params[name] = True
        return params

    def inner_list(self) -> List[str]:
        self.expect("(")
        items = []
        while True:
            self.skip_spaces()
            if self.peek() == ")":
                self.pos += 1
                return items
            if self.peek() != '"':
                raise self.error("component identifiers must be quoted strings")
            item = self.string()
            if self.peek() == ";":
                raise self.error(f"component parameters are not supported ({item})")
            if self.peek() not in (" ", ")"):
                raise self.error("expected ' ' or ')' after component")
            items.append(item)


def _split_members(header: str, name: str) -> List[str]:
    """Split a dictionary on top-level commas, ignoring quoted and parenthesized text."""
    if header is None:
        raise FormatError(f"Invalid {name} format: header is empty")

    members = []
    depth = 0
    in_string = False
    escaped = False
    start = 0
    for index, char in enumerate(header):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "(":
            depth += 1
        elif char == ")":
            depth = max(depth - 1, 0)
        elif char == "," and depth == 0:
            members.append(header[start:index])
            start = index + 1
    members.append(header[start:])

    members = [member.strip(" \t") for member in members]
    if any(not member for member in members):
        raise FormatError(f"Invalid {name} format: empty dictionary member")
    return members


# ============================================================
# Parsers
# ============================================================

def parse_signature_input(header: str) -> List[SignatureInput]:
    """
    Parse a Signature-Input header.

    Args:
        header: Raw header value

    Returns:
        Entries in header order

    Raises:
        FormatError: On invalid grammar, a missing or non-integer ``created``,
            duplicate components or duplicate labels
    """
    entries = []
    labels = set()
    for member in _split_members(header, "Signature-Input"):
        scanner = _Scanner(member, "Signature-Input")
        label = scanner.key()
        scanner.expect("=")
        components = scanner.inner_list()
        params = scanner.parameters()
        scanner.finish()

        if label in labels:
            raise FormatError(f"Duplicate Signature-Input label: {label}")
        labels.add(label)
        entries.append(SignatureInput(label=label, components=tuple(components), params=params))
    return entries


def parse_signature_key(header: str) -> List[SignatureKey]:
    """
    Parse a Signature-Key header.

    The header must hold exactly one dictionary member. This is checked by
    scanning for unquoted top-level commas before the member is parsed, so a
    header with two individually valid members is still rejected.

    Args:
        header: Raw header value

    Returns:
        A single-element list

    Raises:
        FormatError: On multiple members, invalid grammar, unknown scheme or
            missing scheme parameters
    """
    members = _split_members(header, "Signature-Key")
    if len(members) != 1:
        raise FormatError(
            "Invalid Signature-Key: header must contain exactly one dictionary member "
            f"(found {len(members)})"
        )

    scanner = _Scanner(members[0], "Signature-Key")
    label = scanner.key()
    scanner.expect("=")
    scheme = scanner.match(_TOKEN_RE)
    if scheme is None:
        raise scanner.error("missing scheme")
    params = scanner.parameters()
    scanner.finish()

    values = {}
    for name, value in params.items():
        if isinstance(value, (bool, Token)) or not isinstance(value, str):
            raise FormatError(f"Invalid Signature-Key format: parameter {name} must be a quoted string")
        values[name] = str(value)

    return [SignatureKey(label=label, scheme=scheme, params=values)]


def parse_signature(header: str) -> Dict[str, bytes]:
    """
    Parse a Signature header into a label -> signature bytes mapping.

    Raises:
        FormatError: On invalid grammar, bad base64 or duplicate labels
    """
    signatures: Dict[str, bytes] = {}
    for member in _split_members(header, "Signature"):
        scanner = _Scanner(member, "Signature")
        label = scanner.key()
        scanner.expect("=")
        value = scanner.byte_sequence()
        scanner.parameters()
        scanner.finish()

        if label in signatures:
            raise FormatError(f"Duplicate Signature label: {label}")
        signatures[label] = value
    return signatures


# ============================================================
# Serializers
# ============================================================

def serialize_string(value: str) -> str:
    if any(not " " <= char <= "~" for char in value):
        raise FormatError(f"String value contains non-printable or non-ASCII characters: {value!r}")
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def serialize_bare_item(value: BareItem) -> str:
    if isinstance(value, bool):
        return "?1" if value else "?0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, Token):
        if not _TOKEN_RE.fullmatch(value):
            raise FormatError(f"Invalid token value: {value!r}")
        return str(value)
    if isinstance(value, str):
        return serialize_string(value)
    raise FormatError(f"Unsupported parameter value: {value!r}")


def serialize_parameters(params: Mapping[str, BareItem]) -> str:
    parts = []
    for name, value in params.items():
        if not _KEY_RE.fullmatch(name):
            raise FormatError(f"Invalid parameter name: {name!r}")
        if value is True:
            parts.append(f";{name}")
        else:
            parts.append(f";{name}={serialize_bare_item(value)}")
    return "".join(parts)


def serialize_inner_list(components: Iterable[str], params: Mapping[str, BareItem]) -> str:
    """
    Serialize ``("c1" "c2");param=value``.

    This is both the Signature-Input member value and the value of the
    ``@signature-params`` line in the signature base.
    """
    items = " ".join(serialize_string(component) for component in components)
    return f"({items}){serialize_parameters(params)}"


def serialize_signature_input(entries: Union[SignatureInput, Iterable[SignatureInput]]) -> str:
    if isinstance(entries, SignatureInput):
        entries = [entries]
    return ", ".join(
        f"{entry.label}={serialize_inner_list(entry.components, entry.params)}"
        for entry in entries
    )


def serialize_signature_key(entry: SignatureKey) -> str:
    # jwt values are passed through untouched; malformed tokens fail at resolution
    return f"{entry.label}={entry.scheme.value}{serialize_parameters(entry.params)}"


def serialize_signature(signatures: Mapping[str, bytes]) -> str:
    members = []
    for label, value in signatures.items():
        validate_label(label)
        members.append(f"{label}=:{base64.b64encode(value).decode('ascii')}:")
    return ", ".join(members)
