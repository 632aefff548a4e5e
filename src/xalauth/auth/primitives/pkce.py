"""PKCE (Proof Key for Code Exchange) primitives for the Sisu login redirect.

Implements RFC 7636 S256 challenge generation and the random ``state`` value
sent with Sisu authenticate.
"""

from __future__ import annotations

import hashlib
import secrets

from xalauth.auth.models.security import CodeChallenge
from xalauth.auth.primitives.keys import b64url_encode

VERIFIER_BYTES = 32
STATE_BYTES = 64


class PKCEManager:
    """Generates PKCE parameters for Sisu login attempts.

    - Verifier is 32 random bytes, base64url encoded (43 characters)
    - Challenge is BASE64URL(SHA256(ASCII(verifier)))
    - Only the S256 method is used
    """

    def generate_challenge(self) -> CodeChallenge:
        """Generate a new verifier/challenge pair.

        Returns:
            CodeChallenge: Parameters for a single login attempt
        """
        verifier = b64url_encode(secrets.token_bytes(VERIFIER_BYTES))
        return CodeChallenge(
            verifier=verifier,
            value=self.challenge_for(verifier),
            method="S256",
        )

    @staticmethod
    def challenge_for(verifier: str) -> str:
        """Derive the S256 code challenge for a verifier."""
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        return b64url_encode(digest)

    def generate_state(self, num_bytes: int = STATE_BYTES) -> str:
        """Generate the random ``state`` value (64 bytes, base64url)."""
        return b64url_encode(secrets.token_bytes(num_bytes))
