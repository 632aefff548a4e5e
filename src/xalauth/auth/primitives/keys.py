"""EC P-256 proof key management.

The device token is bound to one key pair: its public half is advertised as
``ProofKey`` and the private half signs every subsequent request. The key is
persisted as three base64url fields (``x``, ``y``, ``d``), each exactly 32
big-endian bytes once decoded.
"""

from __future__ import annotations

import base64
import binascii

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from xalauth.auth.models.errors import CryptoError
from xalauth.auth.models.security import JwtKeyRecord

COORDINATE_SIZE = 32
SIGNATURE_SIZE = 2 * COORDINATE_SIZE


def b64url_encode(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    """Base64url decode, tolerating missing padding.

    Raises:
        binascii.Error: If the value has characters outside the alphabet
    """
    padded = data + "=" * (-len(data) % 4)
    return base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)


def _int_to_b64url(value: int) -> str:
    return b64url_encode(value.to_bytes(COORDINATE_SIZE, "big"))


def _decode_coordinate(name: str, value: str) -> int:
    try:
        raw = b64url_decode(value)
    except (binascii.Error, ValueError, UnicodeEncodeError) as e:
        raise CryptoError(f"Key field '{name}' is not valid base64url: {e}") from e
    if len(raw) != COORDINATE_SIZE:
        raise CryptoError(
            f"Key field '{name}' decodes to {len(raw)} bytes, "
            f"expected {COORDINATE_SIZE}"
        )
    return int.from_bytes(raw, "big")


class JwtKey:
    """Single owner of the device's EC P-256 signing key.

    The private key object never leaves this class; other components sign
    through :meth:`sign`. Either no key is loaded, or all three coordinates
    are present and consistent.
    """

    def __init__(self) -> None:
        self._private_key: ec.EllipticCurvePrivateKey | None = None
        self._x = ""
        self._y = ""
        self._d = ""

    @classmethod
    def generate_new(cls) -> JwtKey:
        key = cls()
        key.generate()
        return key

    @classmethod
    def from_record(cls, record: JwtKeyRecord) -> JwtKey:
        key = cls()
        key.deserialize(record)
        return key

    @property
    def is_valid(self) -> bool:
        return self._private_key is not None

    @property
    def x(self) -> str:
        return self._x

    @property
    def y(self) -> str:
        return self._y

    @property
    def d(self) -> str:
        return self._d

    def generate(self) -> None:
        """Generate a fresh P-256 key pair, replacing the current one.

        Raises:
            CryptoError: If key generation or coordinate extraction fails
        """
        try:
            private_key = ec.generate_private_key(ec.SECP256R1())
            private_numbers = private_key.private_numbers()
            public_numbers = private_numbers.public_numbers
            x = _int_to_b64url(public_numbers.x)
            y = _int_to_b64url(public_numbers.y)
            d = _int_to_b64url(private_numbers.private_value)
        except (ValueError, OverflowError, UnsupportedAlgorithm) as e:
            raise CryptoError(f"Failed to generate EC P-256 key: {e}") from e

        self._activate(private_key, x, y, d)

    def serialize(self) -> JwtKeyRecord:
        """Export the key as base64url coordinates.

        Raises:
            CryptoError: If no key is loaded
        """
        if not self.is_valid:
            raise CryptoError("No key to serialize")
        return JwtKeyRecord(x=self._x, y=self._y, d=self._d)

    def deserialize(self, record: JwtKeyRecord) -> None:
        """Load a key from base64url coordinates.

        The coordinates must each decode to 32 bytes, describe a point on the
        curve and match the public key derived from ``d``. On failure the
        currently loaded key, if any, stays active.

        Raises:
            CryptoError: If any coordinate is malformed or the pair is inconsistent
        """
        x = _decode_coordinate("x", record.x)
        y = _decode_coordinate("y", record.y)
        d = _decode_coordinate("d", record.d)

        try:
            public_numbers = ec.EllipticCurvePublicNumbers(x, y, ec.SECP256R1())
            private_key = ec.EllipticCurvePrivateNumbers(d, public_numbers).private_key()
        except (ValueError, UnsupportedAlgorithm) as e:
            raise CryptoError(f"Invalid EC key pair: {e}") from e

        derived = private_key.public_key().public_numbers()
        if derived.x != x or derived.y != y:
            raise CryptoError("Public coordinates do not match the private scalar")

        self._activate(
            private_key, _int_to_b64url(x), _int_to_b64url(y), _int_to_b64url(d)
        )

    def sign(self, data: bytes) -> bytes:
        """ECDSA-SHA256 sign and return the fixed-size IEEE P1363 ``r||s`` form.

        Returns:
            64-byte signature

        Raises:
            CryptoError: If no key is loaded or the signature cannot be converted
        """
        if self._private_key is None:
            raise CryptoError("No key loaded for signing")

        try:
            der = self._private_key.sign(data, ec.ECDSA(hashes.SHA256()))
            r, s = decode_dss_signature(der)
            return r.to_bytes(COORDINATE_SIZE, "big") + s.to_bytes(
                COORDINATE_SIZE, "big"
            )
        except (ValueError, OverflowError) as e:
            raise CryptoError(f"Failed to sign data: {e}") from e

    def public_key(self) -> ec.EllipticCurvePublicKey:
        if self._private_key is None:
            raise CryptoError("No key loaded")
        return self._private_key.public_key()

    def proof_key(self) -> dict[str, str]:
        """JWK advertised as ``ProofKey`` in device and Sisu requests."""
        if not self.is_valid:
            raise CryptoError("No key loaded")
        return {
            "use": "sig",
            "alg": "ES256",
            "kty": "EC",
            "crv": "P-256",
            "x": self._x,
            "y": self._y,
        }

    def clear(self) -> None:
        """Drop the loaded key, if any."""
        self._private_key = None
        self._x = ""
        self._y = ""
        self._d = ""

    def _activate(
        self, private_key: ec.EllipticCurvePrivateKey, x: str, y: str, d: str
    ) -> None:
        self._private_key = private_key
        self._x = x
        self._y = y
        self._d = d
