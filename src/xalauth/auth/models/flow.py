"""Login flow models.

Contains the Sisu authenticate response, the device-code authorization and the
form-encoded grant requests sent to the Microsoft account token endpoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

PENDING_ERRORS = frozenset({"authorization_pending", "slow_down"})


class SisuAuthenticateResponse(BaseModel):
    """Response of Sisu authenticate: the login page to send the user to."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    msa_oauth_redirect: str = Field(alias="MsaOauthRedirect")
    msa_request_parameters: dict[str, Any] = Field(
        default_factory=dict, alias="MsaRequestParameters"
    )


class DeviceCodeAuthorization(BaseModel):
    """Device-code login prompt returned by the identity provider."""

    model_config = ConfigDict(extra="ignore")

    user_code: str
    device_code: str
    verification_uri: str
    interval: int = 5
    expires_in: int = 0
    message: str | None = None


class OAuthErrorResponse(BaseModel):
    """OAuth error body (RFC 6749 Section 5.2)."""

    model_config = ConfigDict(extra="ignore")

    error: str = "unknown_error"
    error_description: str | None = None

    def is_pending(self) -> bool:
        return self.error in PENDING_ERRORS


@dataclass(frozen=True)
class AuthorizationCodeRequest:
    """Authorization code exchange with PKCE verifier."""

    client_id: str
    code: str
    code_verifier: str
    redirect_uri: str
    scope: str
    grant_type: str = "authorization_code"

    def to_form_data(self) -> dict[str, str]:
        return {
            "client_id": self.client_id,
            "code": self.code,
            "code_verifier": self.code_verifier,
            "grant_type": self.grant_type,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
        }


@dataclass(frozen=True)
class RefreshTokenRequest:
    """Refresh-token grant; also used for the transfer token exchange."""

    client_id: str
    refresh_token: str
    scope: str
    grant_type: str = "refresh_token"

    def to_form_data(self) -> dict[str, str]:
        return {
            "client_id": self.client_id,
            "grant_type": self.grant_type,
            "refresh_token": self.refresh_token,
            "scope": self.scope,
        }


@dataclass(frozen=True)
class DeviceCodeRequest:
    client_id: str
    scope: str

    def to_form_data(self) -> dict[str, str]:
        return {
            "client_id": self.client_id,
            "scope": self.scope,
            "response_type": "device_code",
        }


@dataclass(frozen=True)
class DeviceCodeTokenRequest:
    client_id: str
    device_code: str
    grant_type: str = "urn:ietf:params:oauth:grant-type:device_code"

    def to_form_data(self) -> dict[str, str]:
        return {
            "client_id": self.client_id,
            "device_code": self.device_code,
            "grant_type": self.grant_type,
        }
