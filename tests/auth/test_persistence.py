import json

import pytest

from xalauth.auth.models.errors import ParseError
from xalauth.auth.models.tokens import DeviceToken, GSToken, UserToken, XstsToken
from xalauth.auth.primitives.keys import JwtKey
from xalauth.auth.services.persistence import (
    AccountDocument,
    DeviceDocument,
    TokenFileStore,
)


def xbox_token(token: str) -> dict:
    return {
        "IssueInstant": "2025-11-26T07:00:00.0000000Z",
        "NotAfter": "2025-11-27T07:00:00.0000000Z",
        "Token": token,
        "DisplayClaims": {"xui": [{"uhs": "1234", "gtg": "Player"}]},
    }


class TestTokenFileStore:
    def test_device_file_defaults_next_to_token_file(self, tmp_path):
        store = TokenFileStore(tmp_path / "accounts" / "player.json")

        assert store.device_file == tmp_path / "accounts" / "device_token.json"

    def test_missing_files_give_empty_documents(self, tmp_path):
        # Arrange
        store = TokenFileStore(tmp_path / "player.json")

        # Act
        device = store.load_device()
        account = store.load_account()

        # Assert
        assert device == DeviceDocument()
        assert account == AccountDocument()

    def test_account_round_trip_with_pretty_printing(self, tmp_path):
        # Arrange
        store = TokenFileStore(tmp_path / "nested" / "dir" / "player.json")
        user_token = UserToken(access_token="access", refresh_token="refresh", expires_in=60)
        user_token.update_expiry(now=1_700_000_000)
        gs_token = GSToken(gs_token="gs", duration_in_seconds=100, offering="xhome")
        document = AccountDocument(
            user_token=user_token,
            web_token=XstsToken.from_document(xbox_token("web")),
            gs_token=gs_token,
        )

        # Act
        store.save_account(document)
        loaded = store.load_account()

        # Assert
        assert loaded == document
        text = store.token_file.read_text()
        assert text.startswith('{\n    "user_token"')
        data = json.loads(text)
        assert "sisu_token" not in data
        assert data["web_token"]["NotAfter"] == "2025-11-27T07:00:00.0000000Z"
        assert data["gs_token"]["gsToken"] == "gs"
        assert data["user_token"]["expires_at"] == 1_700_000_060

    def test_device_round_trip(self, tmp_path):
        # Arrange
        store = TokenFileStore(tmp_path / "player.json", tmp_path / "shared" / "device.json")
        key_record = JwtKey.generate_new().serialize()
        device_token = DeviceToken.from_document(
            {**xbox_token("device"), "DisplayClaims": {"xdi": {"did": "F0001", "dcs": "0"}}}
        )
        document = DeviceDocument(device_token=device_token, jwt_key=key_record)

        # Act
        store.save_device(document)
        loaded = store.load_device()

        # Assert
        assert loaded == document
        data = json.loads(store.device_file.read_text())
        assert data["jwt_key"] == key_record.to_document()
        assert data["device_token"]["DisplayClaims"]["xdi"]["did"] == "F0001"
        assert not (tmp_path / "device_token.json").exists()

    def test_invalid_entry_is_skipped(self, tmp_path, caplog):
        # Arrange
        token_file = tmp_path / "player.json"
        token_file.write_text(
            json.dumps(
                {
                    "user_token": {"refresh_token": "no access token"},
                    "web_token": xbox_token("web"),
                }
            )
        )
        store = TokenFileStore(token_file)

        # Act
        with caplog.at_level("WARNING"):
            account = store.load_account()

        # Assert
        assert account.user_token is None
        assert account.web_token.token == "web"
        assert "user_token" in caplog.text

    def test_invalid_entry_is_written_back_unchanged(self, tmp_path):
        # Arrange
        token_file = tmp_path / "player.json"
        malformed = {"NotAfter": "2025-11-27T07:00:00.0000000Z", "DisplayClaims": {}}
        token_file.write_text(
            json.dumps(
                {
                    "user_token": {"access_token": "access", "expires_in": 3600},
                    "web_token": malformed,
                }
            )
        )
        store = TokenFileStore(token_file)
        account = store.load_account()

        # Act
        store.save_account(account)

        # Assert
        data = json.loads(token_file.read_text())
        assert set(data) == {"user_token", "web_token"}
        assert data["web_token"] == malformed
        assert data["user_token"]["access_token"] == "access"

    def test_fresh_record_replaces_invalid_entry(self, tmp_path):
        # Arrange
        token_file = tmp_path / "player.json"
        token_file.write_text(
            json.dumps({"web_token": {"IssueInstant": "2025-11-26T07:00:00.0000000Z"}})
        )
        store = TokenFileStore(token_file)
        account = store.load_account()
        account.web_token = XstsToken.from_document(xbox_token("web"))

        # Act
        store.save_account(account)

        # Assert
        data = json.loads(token_file.read_text())
        assert data["web_token"]["Token"] == "web"

    def test_non_object_document_is_parse_error(self, tmp_path):
        token_file = tmp_path / "player.json"
        token_file.write_text("[]")

        with pytest.raises(ParseError, match="JSON object"):
            TokenFileStore(token_file).load_account()

    def test_corrupt_document_is_parse_error(self, tmp_path):
        device_file = tmp_path / "device_token.json"
        device_file.write_text("{not json")

        with pytest.raises(ParseError, match="not valid JSON"):
            TokenFileStore(tmp_path / "player.json").load_device()
