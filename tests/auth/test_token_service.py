"""Tests for the Microsoft account token endpoint service.

High-impact tests covering the grants:
- Authorization code exchange with PKCE verifier
- Refresh and transfer-token grants
- Device-code request and polling outcomes
- Form encoding and headers
"""

import time
from unittest.mock import AsyncMock

import httpx
import pytest

from xalauth.auth.models.config import (
    LIVE_DEVICE_CODE_URL,
    LIVE_TOKEN_URL,
    TRANSFER_TOKEN_SCOPE,
)
from xalauth.auth.models.errors import DeviceCodeError, NetworkError, ParseError
from xalauth.auth.models.flow import (
    AuthorizationCodeRequest,
    DeviceCodeRequest,
    DeviceCodeTokenRequest,
    RefreshTokenRequest,
)
from xalauth.auth.services.tokens import LiveTokenService
from xalauth.auth.services.transport import HttpTransport

TOKEN_RESPONSE = {
    "token_type": "bearer",
    "expires_in": 86400,
    "scope": "service::user.auth.xboxlive.com::MBI_SSL",
    "access_token": "EwAIA+pvBAAU...",
    "refresh_token": "M.C105_BAY.0.U.-CnN...",
    "user_id": "c4b3f0a1e2d3",
}


def make_service() -> tuple[LiveTokenService, AsyncMock]:
    transport = HttpTransport(sleep=AsyncMock())
    transport._http_client = AsyncMock()
    return LiveTokenService(transport), transport._http_client


class TestCodeExchange:
    def setup_method(self):
        # Arrange
        self.service, self.http_client = make_service()
        self.code_verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"

    async def test_successful_exchange(self):
        # Arrange
        request = AuthorizationCodeRequest(
            client_id="000000004c20a908",
            code="M.C105_BAY.2.U.abc",
            code_verifier=self.code_verifier,
            redirect_uri="ms-xal-000000004c20a908://auth",
            scope="service::user.auth.xboxlive.com::MBI_SSL",
        )
        self.http_client.post.return_value = httpx.Response(200, json=TOKEN_RESPONSE)
        before = int(time.time())

        # Act
        token = await self.service.exchange_code_for_token(request)

        # Assert
        assert token.access_token == "EwAIA+pvBAAU..."
        assert token.refresh_token == "M.C105_BAY.0.U.-CnN..."
        assert before + 86400 <= token.expires_at <= int(time.time()) + 86400
        assert not token.is_expired()

        # Verify HTTP request was made correctly
        call_args = self.http_client.post.call_args
        assert call_args[0][0] == LIVE_TOKEN_URL

        form_data = call_args[1]["data"]
        assert form_data["grant_type"] == "authorization_code"
        assert form_data["code"] == "M.C105_BAY.2.U.abc"
        assert form_data["code_verifier"] == self.code_verifier
        assert form_data["client_id"] == "000000004c20a908"

        headers = call_args[1]["headers"]
        assert headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert headers["Cache-Control"] == "no-store, must-revalidate, no-cache"

    async def test_missing_access_token_is_parse_error(self):
        # Arrange
        request = AuthorizationCodeRequest(
            client_id="c", code="code", code_verifier=self.code_verifier,
            redirect_uri="r", scope="s",
        )
        self.http_client.post.return_value = httpx.Response(200, json={"token_type": "bearer"})

        # Act & Assert
        with pytest.raises(ParseError, match="Exchange code"):
            await self.service.exchange_code_for_token(request)
        assert self.http_client.post.await_count == 1

    async def test_rejected_code_is_network_error(self):
        # Arrange
        request = AuthorizationCodeRequest(
            client_id="c", code="expired", code_verifier=self.code_verifier,
            redirect_uri="r", scope="s",
        )
        self.http_client.post.return_value = httpx.Response(
            400, json={"error": "invalid_grant"}
        )

        # Act & Assert
        with pytest.raises(NetworkError) as exc_info:
            await self.service.exchange_code_for_token(request)
        assert exc_info.value.status_code == 400


class TestRefreshGrants:
    def setup_method(self):
        self.service, self.http_client = make_service()
        self.request = RefreshTokenRequest(
            client_id="000000004c20a908",
            refresh_token="M.C105_BAY.0.U.-CnN...",
            scope="service::user.auth.xboxlive.com::MBI_SSL",
        )

    async def test_refresh_user_token(self):
        # Arrange
        self.http_client.post.return_value = httpx.Response(200, json=TOKEN_RESPONSE)

        # Act
        token = await self.service.refresh_user_token(self.request)

        # Assert
        assert token.access_token == "EwAIA+pvBAAU..."
        assert token.expires_at > 0
        form_data = self.http_client.post.call_args[1]["data"]
        assert form_data == {
            "client_id": "000000004c20a908",
            "grant_type": "refresh_token",
            "refresh_token": "M.C105_BAY.0.U.-CnN...",
            "scope": "service::user.auth.xboxlive.com::MBI_SSL",
        }

    async def test_transfer_token_form_includes_empty_fields(self):
        # Arrange
        request = RefreshTokenRequest(
            client_id="000000004c20a908",
            refresh_token="refresh",
            scope=TRANSFER_TOKEN_SCOPE,
        )
        self.http_client.post.return_value = httpx.Response(
            200, json={**TOKEN_RESPONSE, "scope": TRANSFER_TOKEN_SCOPE}
        )

        # Act
        token = await self.service.exchange_transfer_token(request)

        # Assert
        assert token.scope == TRANSFER_TOKEN_SCOPE
        form_data = self.http_client.post.call_args[1]["data"]
        assert form_data["scope"] == TRANSFER_TOKEN_SCOPE
        assert form_data["code"] == ""
        assert form_data["code_verifier"] == ""
        assert form_data["redirect_uri"] == ""


class TestDeviceCode:
    def setup_method(self):
        self.service, self.http_client = make_service()
        self.poll_request = DeviceCodeTokenRequest(
            client_id="000000004c20a908", device_code="device-code-123"
        )

    async def test_request_device_code(self):
        # Arrange
        self.http_client.post.return_value = httpx.Response(
            200,
            json={
                "user_code": "ABCD-EFGH",
                "device_code": "device-code-123",
                "verification_uri": "https://www.microsoft.com/link",
                "interval": 5,
                "expires_in": 900,
            },
        )

        # Act
        authorization = await self.service.request_device_code(
            DeviceCodeRequest(client_id="000000004c20a908", scope="scope")
        )

        # Assert
        assert authorization.user_code == "ABCD-EFGH"
        assert authorization.verification_uri == "https://www.microsoft.com/link"
        call_args = self.http_client.post.call_args
        assert call_args[0][0] == LIVE_DEVICE_CODE_URL
        assert call_args[1]["data"]["response_type"] == "device_code"

    async def test_poll_pending_returns_none(self):
        for error in ("authorization_pending", "slow_down"):
            self.http_client.post.return_value = httpx.Response(400, json={"error": error})

            assert await self.service.poll_device_code(self.poll_request) is None

    async def test_poll_success_returns_token(self):
        # Arrange
        self.http_client.post.return_value = httpx.Response(200, json=TOKEN_RESPONSE)

        # Act
        token = await self.service.poll_device_code(self.poll_request)

        # Assert
        assert token.access_token == "EwAIA+pvBAAU..."
        assert token.expires_at > 0
        form_data = self.http_client.post.call_args[1]["data"]
        assert form_data["grant_type"] == "urn:ietf:params:oauth:grant-type:device_code"
        assert form_data["device_code"] == "device-code-123"

    async def test_poll_hard_error_raises(self):
        # Arrange
        self.http_client.post.return_value = httpx.Response(
            400,
            json={"error": "expired_token", "error_description": "The code has expired"},
        )

        # Act & Assert
        with pytest.raises(DeviceCodeError, match="expired_token"):
            await self.service.poll_device_code(self.poll_request)

    async def test_poll_non_json_error_raises(self):
        self.http_client.post.return_value = httpx.Response(502, content=b"Bad Gateway")

        with pytest.raises(DeviceCodeError, match="HTTP 502"):
            await self.service.poll_device_code(self.poll_request)
