"""Xbox Live token exchanges.

Every call except the streaming login is signed with the device proof key:
the JSON body is serialized once, signed, and those exact bytes are sent.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Callable

from xalauth.auth.models.config import (
    AUTH_RELYING_PARTY,
    CACHE_CONTROL,
    CONTRACT_VERSION,
    DEVICE_AUTHENTICATE_URL,
    GSSV_CLIENT,
    SISU_AUTHENTICATE_URL,
    SISU_AUTHORIZE_URL,
    STREAMING_LOGIN_URL,
    XSTS_AUTHORIZE_URL,
    AppConfig,
)
from xalauth.auth.models.flow import SisuAuthenticateResponse
from xalauth.auth.models.security import CodeChallenge
from xalauth.auth.models.tokens import (
    DeviceToken,
    GSToken,
    SisuToken,
    UserToken,
    XstsToken,
)
from xalauth.auth.primitives.keys import JwtKey
from xalauth.auth.primitives.signing import RequestSigner
from xalauth.auth.services.transport import HttpTransport, validate_body


def _dump(body: dict[str, Any]) -> bytes:
    return json.dumps(body, separators=(",", ":")).encode("utf-8")


def _device_id() -> str:
    return "{" + str(uuid.uuid4()).upper() + "}"


class XboxLiveService:
    """Signed requests against the device, Sisu and XSTS endpoints."""

    def __init__(
        self,
        transport: HttpTransport,
        key: JwtKey,
        config: AppConfig | None = None,
        *,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the service.

        Args:
            transport: HTTP transport with the retry policy
            key: Device proof key; signs every request
            config: App identity sent in Sisu requests
            logger: Logger for progress messages
            clock: Wall clock used for signature timestamps
        """
        self._transport = transport
        self._key = key
        self._signer = RequestSigner(key, clock=clock)
        self._config = config or AppConfig()
        self._logger = logger or logging.getLogger(__name__)

    async def authenticate_device(self) -> DeviceToken:
        """Obtain a device token bound to the proof key.

        Raises:
            CryptoError: If the key cannot sign
            NetworkError: If the endpoint keeps failing
            ParseError: If the response is not a device token
        """
        self._logger.info("Requesting device token")
        body = {
            "Properties": {
                "AuthMethod": "ProofOfPossession",
                "Id": _device_id(),
                "DeviceType": self._config.device_type,
                "SerialNumber": _device_id(),
                "Version": self._config.device_version,
                "ProofKey": self._key.proof_key(),
            },
            "RelyingParty": AUTH_RELYING_PARTY,
            "TokenType": "JWT",
        }
        data = await self._signed_post("Device authenticate", DEVICE_AUTHENTICATE_URL, body)
        token = validate_body("Device authenticate", DeviceToken, data)
        self._logger.info(f"Device token acquired (expires: {token.not_after or 'unknown'})")
        return token

    async def sisu_authenticate(
        self,
        device_token: DeviceToken,
        code_challenge: CodeChallenge,
        state: str,
    ) -> SisuAuthenticateResponse:
        """Start a Sisu login; the response carries the login page URL."""
        self._logger.info("Starting Sisu authentication")
        body = {
            "AppId": self._config.app_id,
            "TitleId": self._config.title_id,
            "RedirectUri": self._config.redirect_uri,
            "DeviceToken": device_token.token,
            "Sandbox": self._config.sandbox,
            "TokenType": "code",
            "Offers": [self._config.scope],
            "Query": {
                "display": self._config.display,
                "code_challenge": code_challenge.value,
                "code_challenge_method": code_challenge.method,
                "state": state,
            },
        }
        data = await self._signed_post("Sisu authenticate", SISU_AUTHENTICATE_URL, body)
        return validate_body("Sisu authenticate", SisuAuthenticateResponse, data)

    async def sisu_authorize(
        self,
        user_token: UserToken,
        device_token: DeviceToken,
        session_id: str = "",
    ) -> SisuToken:
        """Chain the device token and user token into title/user/authorization tokens."""
        self._logger.info("Requesting Sisu authorization")
        body: dict[str, Any] = {
            "AccessToken": f"t={user_token.access_token}",
            "AppId": self._config.app_id,
            "DeviceToken": device_token.token,
            "Sandbox": self._config.sandbox,
            "SiteName": self._config.site_name,
            "UseModernGamertag": True,
            "ProofKey": self._key.proof_key(),
        }
        if session_id:
            body["SessionId"] = session_id

        data = await self._signed_post("Sisu authorize", SISU_AUTHORIZE_URL, body)
        token = validate_body("Sisu authorize", SisuToken, data)
        if token.gamertag:
            self._logger.info(f"Sisu authorization complete for {token.gamertag}")
        return token

    async def xsts_authorize(
        self,
        sisu_token: SisuToken,
        device_token: DeviceToken,
        relying_party: str,
    ) -> XstsToken:
        """Exchange the Sisu tokens for a token scoped to ``relying_party``."""
        self._logger.info(f"Requesting XSTS token for {relying_party}")
        body = {
            "Properties": {
                "SandboxId": self._config.sandbox,
                "DeviceToken": device_token.token,
                "TitleToken": sisu_token.title_token.token,
                "UserTokens": [sisu_token.user_token.token],
            },
            "RelyingParty": relying_party,
            "TokenType": "JWT",
        }
        data = await self._signed_post("XSTS authorize", XSTS_AUTHORIZE_URL, body)
        return validate_body("XSTS authorize", XstsToken, data)

    async def streaming_login(self, xsts_token: XstsToken, offering: str) -> GSToken:
        """Exchange a streaming-scoped XSTS token for an offering's GS token."""
        self._logger.info(f"Requesting streaming token for offering '{offering}'")
        url = STREAMING_LOGIN_URL.format(offering=offering)
        headers = {
            "Content-Type": "application/json",
            "Cache-Control": CACHE_CONTROL,
            "x-gssv-client": GSSV_CLIENT,
        }
        content = _dump({"token": xsts_token.token, "offeringId": offering})

        data = await self._transport.post_json(
            "Streaming login", url, content=content, headers=headers
        )
        token = validate_body("Streaming login", GSToken, data)
        token.offering = offering
        token.update_expiry()
        return token

    async def _signed_post(
        self, operation: str, url: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        content = _dump(body)
        headers = {
            "Content-Type": "application/json",
            "Cache-Control": CACHE_CONTROL,
            "x-xbl-contract-version": CONTRACT_VERSION,
            "Signature": self._signer.sign(url, "", content),
        }
        return await self._transport.post_json(operation, url, content=content, headers=headers)
