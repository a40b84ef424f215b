"""
Compact HMAC JSON Web Token codec (HS256/HS384/HS512) with:
- base64url encode/decode (no padding, strict alphabet on decode)
- compact JSON header & payload serialization with explicit error reasons
- HMAC signing over the "header.payload" signing input
- Ordered decode validation: segments, encoding, algorithm, signature
- Timing-safe signature comparison

Token wire format:

    base64url(JSON(header)) "." base64url(JSON(payload)) "." base64url(signature)

with header = {"typ": "JWT", "alg": <algorithm>}. Only the standard library
is needed for the codec itself.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

__all__ = [
    "ALGORITHMS",
    "Algorithm",
    "InvalidAlgorithmError",
    "JWTError",
    "JsonDecodeError",
    "JsonEncodeError",
    "JsonErrorReason",
    "MAX_JSON_DEPTH",
    "MalformedTokenError",
    "SignatureMismatchError",
    "TokenCodec",
    "UnsupportedAlgorithmError",
    "decode",
    "encode",
    "get_unverified_header",
    "json_decode",
    "json_encode",
    "sign",
    "urlsafe_b64decode",
    "urlsafe_b64encode",
]

logger = logging.getLogger("jwt_codec")

Key = Union[str, bytes, bytearray]

# Deepest container nesting accepted by json_decode/json_encode.
MAX_JSON_DEPTH = 512


# =========================
# Exceptions
# =========================

class JWTError(Exception):
    """Base class for JWT errors."""
    pass

class MalformedTokenError(JWTError):
    """Token structurally invalid or cannot be parsed."""
    pass

class InvalidAlgorithmError(JWTError):
    """Header declares no signing algorithm."""
    pass

class UnsupportedAlgorithmError(InvalidAlgorithmError):
    """Algorithm identifier is not in the algorithm table."""
    pass

class SignatureMismatchError(JWTError):
    """Signature does not match."""
    pass


class JsonErrorReason(Enum):
    """Why the JSON layer refused a document or a value."""

    MAX_DEPTH = "Maximum stack depth exceeded"
    CONTROL_CHARACTER = "Unexpected control character found"
    SYNTAX = "Syntax error, malformed JSON"
    NULL_RESULT = "Null result with non-null input"
    UNKNOWN = "Unknown JSON error"


class _JsonFault:
    """Carries a JsonErrorReason (and a code for UNKNOWN faults)."""

    def __init__(self, reason: JsonErrorReason, code: Optional[str] = None):
        self.reason = reason
        self.code = code
        message = reason.value
        if code is not None:
            message = f"{message}: {code}"
        super().__init__(message)

class JsonDecodeError(_JsonFault, MalformedTokenError):
    """JSON text could not be parsed."""
    pass

class JsonEncodeError(_JsonFault, JWTError):
    """Value could not be serialized to JSON."""
    pass


# =========================
# Algorithm table
# =========================

_HASH_FUNCTIONS: Mapping[str, Tuple[str, Callable[..., Any]]] = MappingProxyType({
    'HS256': ('SHA-256', hashlib.sha256),
    'HS384': ('SHA-384', hashlib.sha384),
    'HS512': ('SHA-512', hashlib.sha512),
})


class Algorithm(str, Enum):
    """Supported HMAC signing algorithms."""

    HS256 = 'HS256'
    HS384 = 'HS384'
    HS512 = 'HS512'

    @property
    def hash_name(self) -> str:
        return _HASH_FUNCTIONS[self.value][0]

    @property
    def digestmod(self) -> Callable[..., Any]:
        return _HASH_FUNCTIONS[self.value][1]

    @classmethod
    def resolve(cls, alg: Any) -> "Algorithm":
        """
        Map an identifier (or member) to an Algorithm.

        Raises UnsupportedAlgorithmError for anything outside the table,
        including non-string header values.
        """
        if isinstance(alg, cls):
            return alg
        if not isinstance(alg, str) or alg not in cls.__members__:
            raise UnsupportedAlgorithmError(f"Algorithm not supported: {alg!r}")
        return cls[alg]


# Read-only view of the table: algorithm identifier -> hash function name.
ALGORITHMS: Mapping[str, str] = MappingProxyType(
    {alg.value: alg.hash_name for alg in Algorithm}
)


# =========================
# Utilities
# =========================

def _to_bytes(data: Union[str, bytes, bytearray]) -> bytes:
    return data.encode('utf-8') if isinstance(data, str) else bytes(data)

def _key_bytes(key: Optional[Key]) -> bytes:
    # a missing key signs with an empty key, so verification fails as a mismatch
    if key is None:
        return b''
    return _to_bytes(key)

def _nesting_depth(value: Any) -> int:
    """Deepest list/dict nesting of an already-built value (iterative)."""
    deepest = 0
    stack = [(value, 1)]
    while stack:
        node, level = stack.pop()
        if isinstance(node, dict):
            children = node.values()
        elif isinstance(node, (list, tuple)):
            children = node
        else:
            continue
        deepest = max(deepest, level)
        stack.extend((child, level + 1) for child in children)
    return deepest

def _reject_constant(name: str) -> Any:
    raise ValueError(f"Non-standard JSON constant: {name}")


def urlsafe_b64encode(data: Union[str, bytes, bytearray]) -> str:
    """Base64 URL-safe encode without padding."""
    encoded = base64.b64encode(_to_bytes(data)).decode('ascii')
    return encoded.replace('+', '-').replace('/', '_').replace('=', '')

def urlsafe_b64decode(data: str) -> bytes:
    """
    Base64 URL-safe decode; restore padding before decoding.

    Characters outside the base64url alphabet are rejected rather than
    silently skipped.
    """
    try:
        s = data.encode('ascii')
    except (AttributeError, UnicodeEncodeError) as exc:
        raise MalformedTokenError("Invalid base64url segment") from exc
    padding = b'=' * ((4 - (len(s) % 4)) % 4)
    s = s.replace(b'-', b'+').replace(b'_', b'/') + padding
    try:
        return base64.b64decode(s, validate=True)
    except binascii.Error as exc:
        raise MalformedTokenError("Invalid base64url segment") from exc


def json_decode(text: Union[str, bytes, bytearray]) -> Any:
    """
    Parse JSON text into a Python value.

    Raises JsonDecodeError with the reason the parse failed. A result of
    None is only accepted when the input is exactly the literal ``null``.
    """
    if isinstance(text, (bytes, bytearray)):
        try:
            text = bytes(text).decode('utf-8')
        except UnicodeDecodeError as exc:
            raise JsonDecodeError(JsonErrorReason.UNKNOWN, 'utf8') from exc

    try:
        value = json.loads(text, parse_constant=_reject_constant)
    except RecursionError as exc:
        raise JsonDecodeError(JsonErrorReason.MAX_DEPTH) from exc
    except json.JSONDecodeError as exc:
        if 'control character' in exc.msg:
            raise JsonDecodeError(JsonErrorReason.CONTROL_CHARACTER) from exc
        raise JsonDecodeError(JsonErrorReason.SYNTAX) from exc
    except ValueError as exc:
        raise JsonDecodeError(JsonErrorReason.SYNTAX) from exc

    if _nesting_depth(value) > MAX_JSON_DEPTH:
        raise JsonDecodeError(JsonErrorReason.MAX_DEPTH)
    if value is None and text != 'null':
        raise JsonDecodeError(JsonErrorReason.NULL_RESULT)
    return value

def json_encode(value: Any) -> str:
    """
    Compact JSON encoding (no whitespace, ASCII-escaped, key order kept).

    Raises JsonEncodeError when the value cannot be represented.
    """
    try:
        text = json.dumps(value, separators=(',', ':'), allow_nan=False)
    except RecursionError as exc:
        raise JsonEncodeError(JsonErrorReason.MAX_DEPTH) from exc
    except TypeError as exc:
        raise JsonEncodeError(JsonErrorReason.UNKNOWN, 'unsupported_type') from exc
    except ValueError as exc:
        if 'Circular reference' in str(exc):
            raise JsonEncodeError(JsonErrorReason.UNKNOWN, 'recursion') from exc
        raise JsonEncodeError(JsonErrorReason.UNKNOWN, 'inf_or_nan') from exc

    if _nesting_depth(value) > MAX_JSON_DEPTH:
        raise JsonEncodeError(JsonErrorReason.MAX_DEPTH)
    if text == 'null' and value is not None:
        raise JsonEncodeError(JsonErrorReason.NULL_RESULT)
    return text


def _decode_segment(segment: str) -> Any:
    value = json_decode(urlsafe_b64decode(segment))
    if value is None:
        raise MalformedTokenError("Invalid segment encoding")
    return value

def _split(token: str) -> Tuple[str, str, str]:
    parts = token.split('.')
    if len(parts) != 3:
        raise MalformedTokenError("Wrong number of segments")
    return parts[0], parts[1], parts[2]


# =========================
# Core API
# =========================

def sign(
    message: Union[str, bytes],
    key: Key,
    algorithm: Union[str, Algorithm] = 'HS256',
) -> bytes:
    """Compute the raw HMAC signature of `message` for the given algorithm."""
    alg = Algorithm.resolve(algorithm)
    return hmac.new(_key_bytes(key), _to_bytes(message), alg.digestmod).digest()


def encode(
    payload: Any,
    key: Key,
    algorithm: Union[str, Algorithm] = 'HS256',
    *,
    headers: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Create a signed token.

    Args:
        payload: Any JSON-serializable value (usually a dict of claims).
        key: HMAC secret, str (UTF-8) or bytes.
        algorithm: 'HS256' | 'HS384' | 'HS512'.
        headers: extra header entries, e.g. {'kid': 'k1'}. They are written
                 after 'typ' and 'alg' and can never replace them.
    Returns:
        Encoded token string: header.payload.signature
    """
    # Validate algorithm upfront
    alg = Algorithm.resolve(algorithm)

    header: Dict[str, Any] = {'typ': 'JWT', 'alg': alg.value}
    if headers:
        for name, value in headers.items():
            header.setdefault(name, value)

    segments = [
        urlsafe_b64encode(json_encode(header)),
        urlsafe_b64encode(json_encode(payload)),
    ]
    signing_input = '.'.join(segments)
    segments.append(urlsafe_b64encode(sign(signing_input, key, alg)))
    return '.'.join(segments)


def decode(token: str, key: Optional[Key] = None, verify: bool = True) -> Any:
    """
    Decode a token and, unless `verify` is False, authenticate it.

    Checks run in order and the first failure is raised:
    segment count, header encoding, payload encoding, signature encoding,
    then (when verifying) algorithm presence and signature match.

    Returns the decoded payload.
    """
    try:
        header_b64, payload_b64, signature_b64 = _split(token)
        header = _decode_segment(header_b64)
        payload = _decode_segment(payload_b64)
        signature = urlsafe_b64decode(signature_b64)

        if verify:
            alg = header.get('alg') if isinstance(header, dict) else None
            if not alg:
                raise InvalidAlgorithmError("Empty algorithm")

            expected = sign(f"{header_b64}.{payload_b64}", key, alg)
            if not hmac.compare_digest(signature, expected):
                raise SignatureMismatchError("Signature verification failed")
    except JWTError as exc:
        logger.debug("Rejected token (%s): %s", type(exc).__name__, exc)
        raise

    return payload


def get_unverified_header(token: str) -> Dict[str, Any]:
    """
    Decode the header WITHOUT verification.
    Useful for reading 'alg' or 'kid' before choosing a key; do not trust it.
    """
    header_b64, _, _ = _split(token)
    header = _decode_segment(header_b64)
    if not isinstance(header, dict):
        raise MalformedTokenError("Header must be a JSON object")
    return header


class TokenCodec:
    """
    Stateless facade over the module functions.

    The only attribute is the default algorithm chosen at construction, so a
    single instance can be shared freely between threads.
    """

    urlsafe_b64encode = staticmethod(urlsafe_b64encode)
    urlsafe_b64decode = staticmethod(urlsafe_b64decode)
    json_encode = staticmethod(json_encode)
    json_decode = staticmethod(json_decode)
    get_unverified_header = staticmethod(get_unverified_header)

    def __init__(self, algorithm: Union[str, Algorithm] = 'HS256'):
        self.algorithm = Algorithm.resolve(algorithm)

    def __repr__(self) -> str:
        return f"TokenCodec(algorithm={self.algorithm.value!r})"

    def encode(
        self,
        payload: Any,
        key: Key,
        algorithm: Union[str, Algorithm, None] = None,
        *,
        headers: Optional[Dict[str, Any]] = None,
    ) -> str:
        if algorithm is None:
            algorithm = self.algorithm
        return encode(payload, key, algorithm, headers=headers)

    def decode(self, token: str, key: Optional[Key] = None, verify: bool = True) -> Any:
        return decode(token, key, verify)

    def sign(
        self,
        message: Union[str, bytes],
        key: Key,
        algorithm: Union[str, Algorithm, None] = None,
    ) -> bytes:
        if algorithm is None:
            algorithm = self.algorithm
        return sign(message, key, algorithm)
