import base64
import hashlib

import pytest

from xalauth.auth.models.security import CodeChallenge
from xalauth.auth.primitives.keys import b64url_decode
from xalauth.auth.primitives.pkce import PKCEManager


class TestPKCEManager:
    def test_generate_challenge_crypto_requirements(self) -> None:
        # Arrange
        pkce_manager = PKCEManager()

        # Act
        challenge = pkce_manager.generate_challenge()

        # Assert
        assert len(b64url_decode(challenge.verifier)) == 32
        assert len(challenge.verifier) == 43
        assert challenge.method == "S256"
        assert "=" not in challenge.verifier

        # Verify value is base64url(sha256(verifier))
        expected_value = (
            base64.urlsafe_b64encode(
                hashlib.sha256(challenge.verifier.encode("ascii")).digest()
            )
            .decode("ascii")
            .rstrip("=")
        )
        assert challenge.value == expected_value

    def test_generate_challenge_uniqueness(self) -> None:
        # Arrange
        pkce_manager = PKCEManager()

        # Act - Generate multiple challenges
        first = pkce_manager.generate_challenge()
        second = pkce_manager.generate_challenge()

        # Assert - Each generation is unique
        assert first.verifier != second.verifier
        assert first.value != second.value

    def test_challenge_for_known_vector(self) -> None:
        # RFC 7636 Appendix B
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"

        assert (
            PKCEManager.challenge_for(verifier)
            == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"
        )

    def test_generate_state_is_64_random_bytes(self) -> None:
        # Arrange
        pkce_manager = PKCEManager()

        # Act
        state = pkce_manager.generate_state()

        # Assert
        assert len(b64url_decode(state)) == 64
        assert state != pkce_manager.generate_state()


class TestCodeChallenge:
    def test_rejects_short_verifier(self) -> None:
        with pytest.raises(ValueError, match="43-128"):
            CodeChallenge(verifier="short", value="abc")

    def test_rejects_plain_method(self) -> None:
        verifier = "a" * 43

        with pytest.raises(ValueError, match="S256"):
            CodeChallenge(verifier=verifier, value="abc", method="plain")
