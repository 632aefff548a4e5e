"""Xbox Live request signing.

Every signed call carries a ``Signature`` header whose value is::

    base64( u32be(1) | u64be(windows_ticks) | p1363_signature[64] )

The signature covers a canonical buffer in which each field is followed by
a zero byte::

    u32be(1) 00 u64be(ticks) 00 "POST" 00 path_and_query 00 auth_token 00 body 00

The layout is bit-exact; servers reject anything else.
"""

from __future__ import annotations

import base64
import struct
import time
from typing import Callable

from xalauth.auth.primitives.keys import JwtKey

SIGNATURE_VERSION = 1
# Seconds between 1601-01-01 (Windows FILETIME epoch) and 1970-01-01
FILETIME_EPOCH_OFFSET = 11644473600
TICKS_PER_SECOND = 10_000_000
SIGNED_METHOD = "POST"


def windows_timestamp(unix_seconds: float) -> int:
    """Convert whole Unix seconds to Windows FILETIME ticks (100 ns units)."""
    return (int(unix_seconds) + FILETIME_EPOCH_OFFSET) * TICKS_PER_SECOND


def path_and_query(url: str) -> str:
    """Strip scheme and host: everything from the first ``/`` after ``://``."""
    scheme_end = url.find("://")
    if scheme_end == -1:
        return url
    path_start = url.find("/", scheme_end + 3)
    if path_start == -1:
        return url
    return url[path_start:]


def _as_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def build_signing_buffer(
    url: str,
    authorization_token: str,
    payload: str | bytes,
    timestamp: int,
) -> bytes:
    """Build the canonical pre-signature buffer.

    Deterministic for a fixed ``(url, authorization_token, payload, timestamp)``.
    """
    buffer = bytearray()
    buffer += struct.pack(">I", SIGNATURE_VERSION)
    buffer += b"\x00"
    buffer += struct.pack(">Q", timestamp)
    buffer += b"\x00"
    buffer += SIGNED_METHOD.encode("ascii") + b"\x00"
    buffer += path_and_query(url).encode("utf-8") + b"\x00"
    buffer += authorization_token.encode("utf-8") + b"\x00"
    buffer += _as_bytes(payload) + b"\x00"
    return bytes(buffer)


class RequestSigner:
    """Produces ``Signature`` header values with the device proof key."""

    def __init__(self, key: JwtKey, clock: Callable[[], float] = time.time):
        self._key = key
        self._clock = clock

    def sign_blob(
        self,
        url: str,
        authorization_token: str = "",
        payload: str | bytes = b"",
    ) -> bytes:
        """Sign a request and return the raw 76-byte header blob.

        Raises:
            CryptoError: If the key cannot sign
        """
        timestamp = windows_timestamp(self._clock())
        buffer = build_signing_buffer(url, authorization_token, payload, timestamp)
        signature = self._key.sign(buffer)

        return (
            struct.pack(">I", SIGNATURE_VERSION)
            + struct.pack(">Q", timestamp)
            + signature
        )

    def sign(
        self,
        url: str,
        authorization_token: str = "",
        payload: str | bytes = b"",
    ) -> str:
        """Return the base64 value of the ``Signature`` header."""
        blob = self.sign_blob(url, authorization_token, payload)
        return base64.b64encode(blob).decode("ascii")
