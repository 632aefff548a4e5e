"""Security-related models for the token exchange.

Contains the PKCE challenge used by the login redirect and the persisted form
of the device proof key.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel


@dataclass(frozen=True)
class CodeChallenge:
    """PKCE verifier/challenge pair for a single login attempt (RFC 7636).

    Single use: generating a new challenge replaces the previous one, and the
    verifier is sent only once, with the authorization code.
    """

    verifier: str = field()
    value: str = field()
    method: str = field(default="S256")

    def __post_init__(self) -> None:
        """Validate PKCE parameters meet RFC 7636 requirements."""
        if not (43 <= len(self.verifier) <= 128):
            raise ValueError("verifier must be 43-128 characters")
        if not self.value:
            raise ValueError("challenge value must not be empty")
        if self.method != "S256":
            raise ValueError("Only S256 code challenge method is supported")


class JwtKeyRecord(BaseModel):
    """Base64url coordinates of an EC P-256 key pair as stored on disk."""

    x: str
    y: str
    d: str

    @classmethod
    def from_document(cls, data: dict) -> JwtKeyRecord:
        return cls.model_validate(data)

    def to_document(self) -> dict:
        return {"x": self.x, "y": self.y, "d": self.d}
