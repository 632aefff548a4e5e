"""Microsoft account token endpoint service.

Code exchange, refresh, transfer-token exchange and device-code polling all
go to ``login.live.com/oauth20_token.srf`` with different grants; only the
device-code request uses ``oauth20_connect.srf``. Requests are form encoded.
"""

from __future__ import annotations

import logging

from xalauth.auth.models.config import CACHE_CONTROL, LIVE_DEVICE_CODE_URL, LIVE_TOKEN_URL
from xalauth.auth.models.errors import DeviceCodeError
from xalauth.auth.models.flow import (
    AuthorizationCodeRequest,
    DeviceCodeAuthorization,
    DeviceCodeRequest,
    DeviceCodeTokenRequest,
    OAuthErrorResponse,
    RefreshTokenRequest,
)
from xalauth.auth.models.tokens import TransferToken, UserToken
from xalauth.auth.services.transport import (
    HttpTransport,
    parse_json_body,
    validate_body,
)

FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Cache-Control": CACHE_CONTROL,
}


class LiveTokenService:
    """Handles grants against the Microsoft account OAuth endpoints.

    Issued epoch tokens get ``expires_at`` stamped here, once, right after a
    successful parse.
    """

    def __init__(self, transport: HttpTransport, *, logger: logging.Logger | None = None):
        self._transport = transport
        self._logger = logger or logging.getLogger(__name__)

    async def exchange_code_for_token(self, request: AuthorizationCodeRequest) -> UserToken:
        """Redeem an authorization code plus PKCE verifier for a user token.

        Raises:
            NetworkError: If the endpoint stays unreachable or keeps failing
            ParseError: If the 2xx body is not a valid token response
        """
        self._logger.info("Exchanging authorization code for user token")
        form_data = request.to_form_data()
        self._logger.debug(
            f"Token request: grant_type={form_data['grant_type']}, "
            f"client_id={form_data['client_id']}"
        )

        body = await self._transport.post_json(
            "Exchange code", LIVE_TOKEN_URL, data=form_data, headers=FORM_HEADERS
        )
        token = validate_body("Exchange code", UserToken, body)
        token.update_expiry()
        return token

    async def refresh_user_token(self, request: RefreshTokenRequest) -> UserToken:
        """Run the refresh-token grant for a new user token."""
        self._logger.info("Refreshing user token")
        body = await self._transport.post_json(
            "Refresh user token",
            LIVE_TOKEN_URL,
            data=request.to_form_data(),
            headers=FORM_HEADERS,
        )
        token = validate_body("Refresh user token", UserToken, body)
        token.update_expiry()
        return token

    async def exchange_transfer_token(self, request: RefreshTokenRequest) -> TransferToken:
        """Exchange the refresh token for an xCloud console transfer token.

        The form carries empty ``code``, ``code_verifier`` and ``redirect_uri``
        fields, which this grant expects.
        """
        self._logger.info("Exchanging refresh token for transfer token")
        form_data = request.to_form_data()
        form_data.update({"code": "", "code_verifier": "", "redirect_uri": ""})

        body = await self._transport.post_json(
            "Exchange transfer token",
            LIVE_TOKEN_URL,
            data=form_data,
            headers=FORM_HEADERS,
        )
        token = validate_body("Exchange transfer token", TransferToken, body)
        token.update_expiry()
        return token

    async def request_device_code(self, request: DeviceCodeRequest) -> DeviceCodeAuthorization:
        """Start a device-code login and return the prompt for the user."""
        self._logger.info("Requesting device code")
        body = await self._transport.post_json(
            "Request device code",
            LIVE_DEVICE_CODE_URL,
            data=request.to_form_data(),
            headers=FORM_HEADERS,
        )
        return validate_body("Request device code", DeviceCodeAuthorization, body)

    async def poll_device_code(self, request: DeviceCodeTokenRequest) -> UserToken | None:
        """Poll the token endpoint once for a completed device-code login.

        Returns:
            The user token, or None while the login is still pending

        Raises:
            DeviceCodeError: If the endpoint answers with a non-pending error
            NetworkError: If the request cannot be sent
            ParseError: If a 2xx body is not a valid token response
        """
        response = await self._transport.post_once(
            "Poll device code",
            LIVE_TOKEN_URL,
            data=request.to_form_data(),
            headers=FORM_HEADERS,
        )

        if 200 <= response.status_code < 300:
            body = parse_json_body("Poll device code", response)
            token = validate_body("Poll device code", UserToken, body)
            token.update_expiry()
            return token

        try:
            error = OAuthErrorResponse.model_validate(response.json())
        except ValueError as e:
            raise DeviceCodeError(
                f"Device code polling failed with HTTP {response.status_code}"
            ) from e

        if error.is_pending():
            self._logger.debug(f"Device code login pending ({error.error})")
            return None

        raise DeviceCodeError(
            f"Device code polling failed: {error.error} "
            f"({error.error_description or 'no description'})"
        )
