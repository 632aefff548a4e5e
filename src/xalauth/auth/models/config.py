"""Application identity, HTTP settings and the fixed endpoint set.

The endpoints and header values belong to the Xbox Live protocol family and
are not configurable. What differs between apps (client/title identity,
device profile) lives in an immutable :class:`AppConfig` that is handed to the
client at construction time.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

# Identity provider (Microsoft account)
LIVE_DEVICE_CODE_URL = "https://login.live.com/oauth20_connect.srf"
LIVE_TOKEN_URL = "https://login.live.com/oauth20_token.srf"

# Xbox Live
DEVICE_AUTHENTICATE_URL = "https://device.auth.xboxlive.com/device/authenticate"
SISU_AUTHENTICATE_URL = "https://sisu.xboxlive.com/authenticate"
SISU_AUTHORIZE_URL = "https://sisu.xboxlive.com/authorize"
XSTS_AUTHORIZE_URL = "https://xsts.auth.xboxlive.com/xsts/authorize"
STREAMING_LOGIN_URL = "https://{offering}.gssv-play-prod.xboxlive.com/v2/login/user"

# Relying parties
AUTH_RELYING_PARTY = "http://auth.xboxlive.com"
WEB_RELYING_PARTY = "http://xboxlive.com"
STREAMING_RELYING_PARTY = "http://gssv.xboxlive.com/"

USER_AUTH_SCOPE = "service::user.auth.xboxlive.com::MBI_SSL"
TRANSFER_TOKEN_SCOPE = (
    "service::http://Passport.NET/purpose::PURPOSE_XBOX_CLOUD_CONSOLE_TRANSFER_TOKEN"
)

CACHE_CONTROL = "no-store, must-revalidate, no-cache"
CONTRACT_VERSION = "1"
GSSV_CLIENT = "XboxComBrowser"


@dataclass(frozen=True)
class AppConfig:
    """Identity of the app the tokens are issued to."""

    app_id: str = "000000004c20a908"
    title_id: str = "328178078"
    redirect_uri: str = "ms-xal-000000004c20a908://auth"
    scope: str = USER_AUTH_SCOPE
    sandbox: str = "RETAIL"
    site_name: str = "user.auth.xboxlive.com"
    display: str = "android_phone"
    device_type: str = "Android"
    device_version: str = "15.0"
    offering: str = "xhome"


@dataclass(frozen=True)
class HttpSettings:
    """Timeouts and retry policy shared by every network call."""

    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    write_timeout: float = 10.0
    max_attempts: int = 3
    retry_delay: float = 2.0
    device_code_poll_attempts: int = 5
    device_code_poll_interval: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.device_code_poll_attempts < 1:
            raise ValueError("device_code_poll_attempts must be at least 1")

    def timeout(self) -> httpx.Timeout:
        """Build the httpx timeout for a single attempt."""
        return httpx.Timeout(
            connect=self.connect_timeout,
            read=self.read_timeout,
            write=self.write_timeout,
            pool=self.connect_timeout,
        )
