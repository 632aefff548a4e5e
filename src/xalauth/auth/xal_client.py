"""Xbox Live token broker.

Sequences the whole exchange chain for one account on one device:

1. Device token (proof-of-possession with the device key)
2. Microsoft account login (PKCE redirect or device code)
3. Sisu authorization
4. XSTS tokens per relying party (web, game streaming)
5. Game-streaming token per offering

Downstream tokens are derived lazily and only re-derived once their own
expiry says so. The client is single-writer: callers that share it between
tasks must serialize access themselves.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

from xalauth.auth.models.config import (
    STREAMING_RELYING_PARTY,
    TRANSFER_TOKEN_SCOPE,
    WEB_RELYING_PARTY,
    AppConfig,
    HttpSettings,
)
from xalauth.auth.models.errors import (
    CryptoError,
    DeviceCodeTimeoutError,
    StateError,
    XalAuthError,
)
from xalauth.auth.models.flow import (
    AuthorizationCodeRequest,
    DeviceCodeRequest,
    DeviceCodeTokenRequest,
    RefreshTokenRequest,
)
from xalauth.auth.models.security import CodeChallenge, JwtKeyRecord
from xalauth.auth.models.tokens import (
    DeviceToken,
    GSToken,
    SisuToken,
    TransferToken,
    UserToken,
    XstsToken,
)
from xalauth.auth.primitives.keys import JwtKey
from xalauth.auth.primitives.pkce import PKCEManager
from xalauth.auth.services.persistence import (
    AccountDocument,
    DeviceDocument,
    TokenFileStore,
)
from xalauth.auth.services.tokens import LiveTokenService
from xalauth.auth.services.transport import HttpTransport
from xalauth.auth.services.xboxlive import XboxLiveService


class AuthState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AWAITING_EXTERNAL_COMPLETION = "awaiting_external_completion"
    AUTHENTICATED = "authenticated"


class LoginHandler(Protocol):
    """Protocol for completing the interactive part of a login.

    Allows different strategies for the user interaction:
    - Browser automation that follows the login page to the redirect
    - Printing the URL and reading the redirect back from the user
    - Showing a device code prompt
    """

    async def complete_login(self, login_uri: str) -> str:
        """Drive the login page and return the final redirect URL.

        Args:
            login_uri: Microsoft account login URL for the user to visit

        Returns:
            Redirect URL carrying ``code=...``
        """
        ...

    async def complete_device_code(self, verification_uri: str, user_code: str) -> None:
        """Show the device-code prompt; completion is detected by polling."""
        ...


class CallbackLoginHandler:
    """Login handler that delegates to plain callables.

    Callbacks may be sync or async. A missing callback raises StateError
    when that kind of login is attempted.
    """

    def __init__(
        self,
        on_login: Callable[[str], Any] | None = None,
        on_device_code: Callable[[str, str], Any] | None = None,
    ):
        self.on_login = on_login
        self.on_device_code = on_device_code

    async def complete_login(self, login_uri: str) -> str:
        if self.on_login is None:
            raise StateError(
                f"No login callback configured; visit {login_uri} and pass "
                "the redirect URL to authenticate_user()"
            )
        result = self.on_login(login_uri)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def complete_device_code(self, verification_uri: str, user_code: str) -> None:
        if self.on_device_code is None:
            raise StateError("No device code callback configured")
        result = self.on_device_code(verification_uri, user_code)
        if inspect.isawaitable(result):
            await result


def extract_authorization_code(redirect_uri: str) -> str:
    """Return the text between the first ``code=`` and the next ``&``.

    No URL decoding is applied.

    Raises:
        StateError: If the URL carries no code
    """
    start = redirect_uri.find("code=")
    if start == -1:
        raise StateError("Redirect URL does not contain an authorization code")

    start += len("code=")
    end = redirect_uri.find("&", start)
    code = redirect_uri[start:] if end == -1 else redirect_uri[start:end]
    if not code:
        raise StateError("Redirect URL contains an empty authorization code")
    return code


class XalClient:
    """Token broker for one Xbox Live account.

    Owns the device key and every live token. Persistence is split in two
    documents: a device document shared by every account on the machine and
    an account document for this account.
    """

    def __init__(
        self,
        token_file: str | Path,
        device_file: str | Path | None = None,
        *,
        config: AppConfig | None = None,
        http: HttpSettings | None = None,
        login_handler: LoginHandler | None = None,
        logger: logging.Logger | None = None,
        transport: HttpTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the client and load both token documents.

        Args:
            token_file: Path of this account's token document
            device_file: Path of the shared device document (defaults to
                ``device_token.json`` next to ``token_file``)
            config: App identity used in every request
            http: Timeouts and retry policy
            login_handler: Completes interactive logins for :meth:`login`
                and :meth:`authenticate_with_device_code`
            logger: Logger shared with every service
            transport: Pre-built HTTP transport (the client then does not
                close it)
            sleep: Coroutine used for retry and polling delays

        Raises:
            ParseError: If a token document is not a JSON object
        """
        self.config = config or AppConfig()
        self.http = http or HttpSettings()
        self.login_handler = login_handler
        self._logger = logger or logging.getLogger(__name__)
        self._sleep = sleep

        self._owns_transport = transport is None
        self._transport = transport or HttpTransport(
            self.http, logger=self._logger, sleep=sleep
        )

        self._key = JwtKey()
        self._pkce = PKCEManager()
        self._code_challenge: CodeChallenge | None = None

        # Initialize service components
        self.store = TokenFileStore(token_file, device_file, logger=self._logger)
        self.live_service = LiveTokenService(self._transport, logger=self._logger)
        self.xbox_service = XboxLiveService(
            self._transport, self._key, self.config, logger=self._logger
        )

        self._device_token: DeviceToken | None = None
        self._user_token: UserToken | None = None
        self._sisu_token: SisuToken | None = None
        self._web_token: XstsToken | None = None
        self._streaming_token: XstsToken | None = None
        self._gs_token: GSToken | None = None
        self._skipped_entries: dict[str, Any] = {}

        self.state = AuthState.UNAUTHENTICATED
        self._load_device()
        self._load_account()
        self._reset_state()

    async def __aenter__(self) -> XalClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            self.save_tokens()
        finally:
            await self.close()

    @property
    def is_authenticated(self) -> bool:
        return self.state is AuthState.AUTHENTICATED

    @property
    def device_key(self) -> JwtKey:
        return self._key

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def get_login_uri(self) -> str:
        """Start a login and return the Microsoft account page to visit.

        Ensures a device token, replaces any pending PKCE challenge and runs
        Sisu authenticate.

        Returns:
            Login URL for the login handler or the user
        """
        device_token = await self._get_device_token()

        challenge = self._pkce.generate_challenge()
        state = self._pkce.generate_state()
        self._code_challenge = challenge

        response = await self.xbox_service.sisu_authenticate(device_token, challenge, state)
        self.state = AuthState.AWAITING_EXTERNAL_COMPLETION
        self._logger.info("Login URL ready, waiting for the user to sign in")
        return response.msa_oauth_redirect

    async def authenticate_user(self, redirect_uri: str) -> None:
        """Redeem the login redirect and authorize the account with Sisu.

        Args:
            redirect_uri: Final redirect URL carrying ``code=...``

        Raises:
            StateError: If the URL has no code or no login is pending
            NetworkError: If an exchange keeps failing
            ParseError: If a response is malformed
        """
        code = extract_authorization_code(redirect_uri)
        if self._code_challenge is None:
            raise StateError("No login in progress; call get_login_uri() first")

        request = AuthorizationCodeRequest(
            client_id=self.config.app_id,
            code=code,
            code_verifier=self._code_challenge.verifier,
            redirect_uri=self.config.redirect_uri,
            scope=self.config.scope,
        )
        try:
            user_token = await self.live_service.exchange_code_for_token(request)
            self._code_challenge = None
            await self._complete_login(user_token)
        except XalAuthError:
            self._reset_state()
            raise

    async def authenticate_with_device_code(self) -> None:
        """Log in with a device code shown to the user by the login handler.

        Raises:
            StateError: If no login handler is configured
            DeviceCodeError: If polling returns a non-pending error
            DeviceCodeTimeoutError: If the user did not finish in time
        """
        handler = self._require_login_handler()

        authorization = await self.live_service.request_device_code(
            DeviceCodeRequest(client_id=self.config.app_id, scope=self.config.scope)
        )
        self.state = AuthState.AWAITING_EXTERNAL_COMPLETION

        try:
            await handler.complete_device_code(
                authorization.verification_uri, authorization.user_code
            )
            user_token = await self._poll_device_code(authorization.device_code)
        except XalAuthError:
            self._reset_state()
            raise

        await self._complete_login(user_token)

    async def login(self) -> None:
        """Run the full redirect login through the configured login handler."""
        handler = self._require_login_handler()
        login_uri = await self.get_login_uri()

        try:
            redirect_uri = await handler.complete_login(login_uri)
        except XalAuthError:
            self._reset_state()
            raise

        await self.authenticate_user(redirect_uri)

    # ------------------------------------------------------------------
    # Token getters
    # ------------------------------------------------------------------

    async def get_user_token(self) -> UserToken:
        """Return the user token, refreshing it first if it has expired.

        Raises:
            StateError: If the account is not logged in
        """
        token = self._require_user_token()
        if token.is_expired():
            self._logger.info("User token expired, refreshing...")
            token = await self.refresh_user_token()
        return token

    async def refresh_user_token(self) -> UserToken:
        """Run the refresh-token grant and replace the user token in place.

        Downstream tokens are left alone; each is judged by its own expiry.

        Raises:
            StateError: If there is no user token or it has no refresh token
        """
        current = self._require_user_token()
        refresh_token = self._require_refresh_token(current)

        token = await self.live_service.refresh_user_token(
            RefreshTokenRequest(
                client_id=self.config.app_id,
                refresh_token=refresh_token,
                scope=self.config.scope,
            )
        )
        if not token.refresh_token:
            token.refresh_token = refresh_token

        self._user_token = token
        self._logger.info("User token refreshed")
        return token

    async def get_sisu_token(self) -> SisuToken:
        if self._sisu_token is not None and not self._sisu_token.is_expired():
            return self._sisu_token

        self._logger.info(
            "Sisu token expired, re-authorizing..."
            if self._sisu_token
            else "No Sisu token, authorizing..."
        )
        device_token = await self._get_device_token()
        user_token = await self.get_user_token()
        self._sisu_token = await self.xbox_service.sisu_authorize(user_token, device_token)
        return self._sisu_token

    async def get_web_token(self) -> XstsToken:
        """Return the XSTS token for ``http://xboxlive.com``."""
        if self._web_token is not None and not self._web_token.is_expired():
            return self._web_token

        self._logger.info(
            "Web token expired, re-authorizing..."
            if self._web_token
            else "No web token, authorizing..."
        )
        self._web_token = await self._authorize_xsts(WEB_RELYING_PARTY)
        return self._web_token

    async def get_streaming_xsts_token(self) -> XstsToken:
        """Return the XSTS token for the game-streaming relying party.

        Kept in memory only; it is not part of the account document.
        """
        if self._streaming_token is not None and not self._streaming_token.is_expired():
            return self._streaming_token

        self._streaming_token = await self._authorize_xsts(STREAMING_RELYING_PARTY)
        return self._streaming_token

    async def get_gs_token(self, offering: str | None = None) -> GSToken:
        """Return the game-streaming token for an offering.

        Args:
            offering: Streaming offering, e.g. ``xhome`` or ``xgpuweb``
                (defaults to ``config.offering``)
        """
        offering = offering or self.config.offering
        cached = self._gs_token
        if cached is not None and not cached.is_expired() and cached.offering == offering:
            return cached

        if cached is None:
            self._logger.info("No streaming token, generating...")
        elif cached.offering != offering:
            self._logger.info(
                f"Streaming token is for offering '{cached.offering}', "
                f"generating one for '{offering}'..."
            )
        else:
            self._logger.info("Streaming token expired, regenerating...")

        xsts_token = await self.get_streaming_xsts_token()
        self._gs_token = await self.xbox_service.streaming_login(xsts_token, offering)
        return self._gs_token

    async def get_transfer_token(self) -> TransferToken:
        """Exchange the refresh token for an xCloud console transfer token.

        A fresh token is requested on every call.
        """
        user_token = await self.get_user_token()
        refresh_token = self._require_refresh_token(user_token)
        return await self.live_service.exchange_transfer_token(
            RefreshTokenRequest(
                client_id=self.config.app_id,
                refresh_token=refresh_token,
                scope=TRANSFER_TOKEN_SCOPE,
            )
        )

    # ------------------------------------------------------------------
    # Persistence and lifecycle
    # ------------------------------------------------------------------

    def save_tokens(self) -> None:
        """Write this account's tokens to the account document."""
        self.store.save_account(
            AccountDocument(
                user_token=self._user_token,
                sisu_token=self._sisu_token,
                web_token=self._web_token,
                gs_token=self._gs_token,
                skipped=self._skipped_entries,
            )
        )
        self._logger.info(f"Saved account tokens to {self.store.token_file}")

    async def close(self) -> None:
        """Close the HTTP transport if this client created it."""
        if self._owns_transport:
            await self._transport.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _get_device_token(self) -> DeviceToken:
        if (
            self._device_token is not None
            and self._key.is_valid
            and not self._device_token.is_expired()
        ):
            return self._device_token

        if self._device_token is not None:
            self._logger.warning("Device token expired, regenerating it with a new key...")

        previous_key = self._key.serialize() if self._key.is_valid else None
        previous_token = self._device_token

        # The device token is bound to the key it was issued for
        self._key.generate()
        self._device_token = None

        try:
            token = await self.xbox_service.authenticate_device()
        except BaseException:
            self._restore_device(previous_key, previous_token)
            raise

        self._device_token = token
        self.store.save_device(
            DeviceDocument(device_token=token, jwt_key=self._key.serialize())
        )
        return token

    def _restore_device(
        self, key: JwtKeyRecord | None, device_token: DeviceToken | None
    ) -> None:
        if key is None:
            self._key.clear()
        else:
            self._key.deserialize(key)
        self._device_token = device_token

    async def _authorize_xsts(self, relying_party: str) -> XstsToken:
        sisu_token = await self.get_sisu_token()
        device_token = await self._get_device_token()
        return await self.xbox_service.xsts_authorize(sisu_token, device_token, relying_party)

    async def _complete_login(self, user_token: UserToken) -> None:
        self._user_token = user_token
        self._sisu_token = None
        self._web_token = None
        self._streaming_token = None
        self._gs_token = None

        device_token = await self._get_device_token()
        self._sisu_token = await self.xbox_service.sisu_authorize(user_token, device_token)
        self.state = AuthState.AUTHENTICATED

        gamertag = self._sisu_token.gamertag
        self._logger.info(f"Logged in{f' as {gamertag}' if gamertag else ''}")

    async def _poll_device_code(self, device_code: str) -> UserToken:
        request = DeviceCodeTokenRequest(client_id=self.config.app_id, device_code=device_code)
        attempts = self.http.device_code_poll_attempts

        for attempt in range(1, attempts + 1):
            self._logger.debug(f"Polling device code login ({attempt}/{attempts})")
            token = await self.live_service.poll_device_code(request)
            if token is not None:
                return token
            if attempt < attempts:
                await self._sleep(self.http.device_code_poll_interval)

        raise DeviceCodeTimeoutError(
            f"Device code login not completed after {attempts} polls"
        )

    def _load_device(self) -> None:
        document = self.store.load_device()
        self._device_token = document.device_token

        if document.jwt_key is not None:
            try:
                self._key.deserialize(document.jwt_key)
            except CryptoError as e:
                self._logger.warning(f"Stored device key is invalid: {e}")

        if not self._key.is_valid and self._device_token is not None:
            self._logger.warning("Discarding device token without a usable key")
            self._device_token = None

    def _load_account(self) -> None:
        document = self.store.load_account()
        self._user_token = document.user_token
        self._sisu_token = document.sisu_token
        self._web_token = document.web_token
        self._gs_token = document.gs_token
        self._skipped_entries = document.skipped

    def _reset_state(self) -> None:
        self.state = (
            AuthState.AUTHENTICATED
            if self._user_token is not None
            else AuthState.UNAUTHENTICATED
        )

    def _require_login_handler(self) -> LoginHandler:
        if self.login_handler is None:
            raise StateError("No login handler configured")
        return self.login_handler

    def _require_user_token(self) -> UserToken:
        if self._user_token is None:
            raise StateError("Not logged in: no user token")
        return self._user_token

    @staticmethod
    def _require_refresh_token(token: UserToken) -> str:
        if not token.refresh_token:
            raise StateError("User token has no refresh token")
        return token.refresh_token
