"""Token records and their expiry rules.

Two expiry representations coexist:

- OAuth2-family tokens (user, transfer) and the game-streaming token carry a
  relative duration; ``expires_at`` is stamped once, at issue time, by
  ``update_expiry()``.
- Xbox Live tokens (device, Sisu sub-tokens, XSTS) carry an absolute
  ISO-8601 ``NotAfter``. A missing or unparsable value counts as expired.

Records keep Python field names and map to the wire/document names through
aliases, so the same model reads a server response and a persisted document.
"""

from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

_ISO8601 = re.compile(
    r"(?P<base>\d{4}-\d{2}-\d{2})[T ](?P<time>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<offset>Z|[+-]\d{2}:?\d{2})?",
    re.IGNORECASE,
)


def parse_iso8601_utc(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp such as ``2025-11-26T08:32:10.5118384Z``.

    Fractional seconds of any length are truncated to microseconds and
    values without an offset are taken as UTC.

    Returns:
        Timezone-aware datetime, or None if the value is empty or malformed
    """
    if not value:
        return None

    match = _ISO8601.fullmatch(value.strip())
    if match is None:
        return None

    fraction = (match.group("fraction") or "")[:6].ljust(6, "0")
    offset = match.group("offset") or "+00:00"
    if offset.upper() == "Z":
        offset = "+00:00"
    elif ":" not in offset:
        offset = f"{offset[:3]}:{offset[3:]}"

    try:
        parsed = datetime.fromisoformat(
            f"{match.group('base')}T{match.group('time')}.{fraction}{offset}"
        )
    except ValueError:
        return None

    return parsed.astimezone(timezone.utc)


def _now(now: float | None) -> float:
    return time.time() if now is None else now


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @classmethod
    def from_document(cls, data: dict[str, Any]):
        """Build the record from a response body or persisted document."""
        return cls.model_validate(data)

    def to_document(self) -> dict[str, Any]:
        """Convert to the JSON document shape (wire field names)."""
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Display claims
# ---------------------------------------------------------------------------


class DeviceClaims(_Record):
    did: str = ""
    dcs: str = ""


class DeviceDisplayClaims(_Record):
    xdi: DeviceClaims = Field(default_factory=DeviceClaims)


class TitleClaims(_Record):
    tid: str = ""


class TitleDisplayClaims(_Record):
    xti: TitleClaims = Field(default_factory=TitleClaims)


class UserClaims(_Record):
    """Per-user claims (``xui``): user hash, gamertag, xuid, age group..."""

    uhs: str = ""
    gtg: str = ""
    xid: str = ""
    mgt: str = ""
    mgs: str = ""
    umg: str = ""
    agg: str = ""
    usr: str = ""
    prv: str = ""
    ugc: str = ""


class UserDisplayClaims(_Record):
    xui: list[UserClaims] = Field(default_factory=list)

    def first(self) -> UserClaims | None:
        return self.xui[0] if self.xui else None


# ---------------------------------------------------------------------------
# NotAfter-based tokens
# ---------------------------------------------------------------------------


class XboxToken(_Record):
    """Xbox Live token judged by its absolute ``NotAfter`` timestamp."""

    issue_instant: str = Field("", alias="IssueInstant")
    not_after: str = Field("", alias="NotAfter")
    token: str = Field(alias="Token")

    def expires(self) -> datetime | None:
        return parse_iso8601_utc(self.not_after)

    def is_expired(self, now: float | None = None) -> bool:
        """Check expiry; empty or unparsable ``NotAfter`` counts as expired.

        Args:
            now: Unix timestamp to judge against (defaults to the wall clock)
        """
        expires = self.expires()
        if expires is None:
            return True
        return _now(now) >= expires.timestamp()


class DeviceToken(XboxToken):
    """Proof-of-possession device token, shared by all accounts on a device."""

    display_claims: DeviceDisplayClaims = Field(
        default_factory=DeviceDisplayClaims, alias="DisplayClaims"
    )


class SisuTitleToken(XboxToken):
    display_claims: TitleDisplayClaims = Field(
        default_factory=TitleDisplayClaims, alias="DisplayClaims"
    )


class SisuUserToken(XboxToken):
    display_claims: UserDisplayClaims = Field(
        default_factory=UserDisplayClaims, alias="DisplayClaims"
    )


class UcsMigrationResponse(_Record):
    gcs_consents_to_override: list[str] = Field(
        default_factory=list, alias="gcsConsentsToOverride"
    )


class SisuToken(_Record):
    """Result of Sisu authorization: title, user and authorization tokens."""

    device_token: str = Field("", alias="DeviceToken")
    title_token: SisuTitleToken = Field(alias="TitleToken")
    user_token: SisuUserToken = Field(alias="UserToken")
    authorization_token: SisuUserToken = Field(alias="AuthorizationToken")
    web_page: str | None = Field(None, alias="WebPage")
    sandbox: str | None = Field(None, alias="Sandbox")
    use_modern_gamertag: bool = Field(False, alias="UseModernGamertag")
    ucs_migration_response: UcsMigrationResponse | None = Field(
        None, alias="UcsMigrationResponse"
    )
    flow: str | None = Field(None, alias="Flow")

    def is_expired(self, now: float | None = None) -> bool:
        """Expired as soon as any one of the three sub-tokens is expired."""
        now = _now(now)
        return any(
            token.is_expired(now)
            for token in (self.title_token, self.user_token, self.authorization_token)
        )

    @property
    def user_hash(self) -> str:
        claims = self.authorization_token.display_claims.first()
        return claims.uhs if claims else ""

    @property
    def gamertag(self) -> str:
        claims = self.authorization_token.display_claims.first()
        return claims.gtg if claims else ""


class XstsToken(XboxToken):
    """Relying-party scoped token (one cached instance per relying party)."""

    display_claims: UserDisplayClaims = Field(
        default_factory=UserDisplayClaims, alias="DisplayClaims"
    )

    @property
    def user_hash(self) -> str:
        claims = self.display_claims.first()
        return claims.uhs if claims else ""

    @property
    def gamertag(self) -> str:
        claims = self.display_claims.first()
        return claims.gtg if claims else ""

    def authorization_header(self) -> str:
        """Build the ``XBL3.0 x={uhs};{token}`` Authorization header value."""
        return f"XBL3.0 x={self.user_hash};{self.token}"


# ---------------------------------------------------------------------------
# Epoch-based tokens
# ---------------------------------------------------------------------------


class OAuth2Token(_Record):
    """Microsoft account OAuth2 token with a relative ``expires_in``."""

    token_type: str | None = None
    expires_in: int = 0
    scope: str | None = None
    access_token: str
    refresh_token: str | None = None
    user_id: str | None = None
    expires_at: int = 0  # Unix timestamp

    def update_expiry(self, now: float | None = None) -> None:
        """Stamp ``expires_at``; call exactly once on a freshly issued token."""
        self.expires_at = int(_now(now)) + self.expires_in

    def is_expired(self, now: float | None = None) -> bool:
        return _now(now) >= self.expires_at


class UserToken(OAuth2Token):
    """User token obtained by code exchange, device-code login or refresh."""

    pass


class TransferToken(OAuth2Token):
    """xCloud console transfer token derived from the user's refresh token."""

    pass


class GSToken(_Record):
    """Game-streaming token for one offering.

    ``offeringSettings`` (regions, environments) is passed through untouched.
    """

    gs_token: str = Field(alias="gsToken")
    token_type: str | None = Field(None, alias="tokenType")
    duration_in_seconds: int = Field(0, alias="durationInSeconds")
    market: str | None = None
    offering_settings: dict[str, Any] | None = Field(None, alias="offeringSettings")
    offering: str | None = None
    expires_at: int = 0  # Unix timestamp

    def update_expiry(self, now: float | None = None) -> None:
        """Stamp ``expires_at``; call exactly once on a freshly issued token."""
        self.expires_at = int(_now(now)) + self.duration_in_seconds

    def is_expired(self, now: float | None = None) -> bool:
        return _now(now) >= self.expires_at
