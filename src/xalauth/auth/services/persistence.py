"""JSON persistence for the device and account documents.

The device document (proof key + device token) is shared by every account on
the machine; the account document holds one account's user-derived tokens.
Every top-level key is optional. The store only reads and writes snapshots;
it never mutates the token records it is given.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from xalauth.auth.models.errors import ParseError
from xalauth.auth.models.security import JwtKeyRecord
from xalauth.auth.models.tokens import (
    DeviceToken,
    GSToken,
    SisuToken,
    UserToken,
    XstsToken,
)

DEVICE_FILE_NAME = "device_token.json"

RecordT = TypeVar("RecordT", bound=BaseModel)


@dataclass
class DeviceDocument:
    device_token: DeviceToken | None = None
    jwt_key: JwtKeyRecord | None = None


@dataclass
class AccountDocument:
    user_token: UserToken | None = None
    sisu_token: SisuToken | None = None
    web_token: XstsToken | None = None
    gs_token: GSToken | None = None
    # Raw entries that failed validation on load, written back unchanged
    skipped: dict[str, Any] = field(default_factory=dict)


class TokenFileStore:
    """Reads and writes the two token documents as pretty-printed JSON."""

    def __init__(
        self,
        token_file: str | Path,
        device_file: str | Path | None = None,
        *,
        logger: logging.Logger | None = None,
    ):
        """Initialize the store.

        Args:
            token_file: Path of the account document
            device_file: Path of the device document (defaults to
                ``device_token.json`` next to the account document)
            logger: Logger for load warnings
        """
        self.token_file = Path(token_file)
        self.device_file = (
            Path(device_file)
            if device_file is not None
            else self.token_file.parent / DEVICE_FILE_NAME
        )
        self._logger = logger or logging.getLogger(__name__)

    def load_device(self) -> DeviceDocument:
        """Load the device document; a missing file yields an empty document.

        Raises:
            ParseError: If the file is not a JSON object
        """
        data = self._read(self.device_file)
        return DeviceDocument(
            device_token=self._entry(data, "device_token", DeviceToken),
            jwt_key=self._entry(data, "jwt_key", JwtKeyRecord),
        )

    def save_device(self, document: DeviceDocument) -> None:
        data: dict[str, Any] = {}
        if document.device_token is not None:
            data["device_token"] = document.device_token.to_document()
        if document.jwt_key is not None:
            data["jwt_key"] = document.jwt_key.to_document()
        self._write(self.device_file, data)

    def load_account(self) -> AccountDocument:
        """Load the account document; a missing file yields an empty document.

        Raises:
            ParseError: If the file is not a JSON object
        """
        data = self._read(self.token_file)
        skipped: dict[str, Any] = {}
        return AccountDocument(
            user_token=self._entry(data, "user_token", UserToken, skipped),
            sisu_token=self._entry(data, "sisu_token", SisuToken, skipped),
            web_token=self._entry(data, "web_token", XstsToken, skipped),
            gs_token=self._entry(data, "gs_token", GSToken, skipped),
            skipped=skipped,
        )

    def save_account(self, document: AccountDocument) -> None:
        data: dict[str, Any] = {}
        for name in ("user_token", "sisu_token", "web_token", "gs_token"):
            record = getattr(document, name)
            if record is not None:
                data[name] = record.to_document()
            elif name in document.skipped:
                data[name] = document.skipped[name]
        self._write(self.token_file, data)

    def _read(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            self._logger.debug(f"No token document at {path}")
            return {}

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except ValueError as e:
            raise ParseError(f"{path}: not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ParseError(f"{path}: expected a JSON object, got {type(data).__name__}")
        return data

    def _entry(
        self,
        data: dict[str, Any],
        key: str,
        model: type[RecordT],
        skipped: dict[str, Any] | None = None,
    ) -> RecordT | None:
        value = data.get(key)
        if value is None:
            return None

        try:
            return model.model_validate(value)
        except ValidationError as e:
            self._logger.warning(
                f"Ignoring invalid '{key}' entry ({e.error_count()} validation errors)"
            )
            if skipped is not None:
                skipped[key] = value
            return None

    def _write(self, path: Path, data: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=4), encoding="utf-8")
        self._logger.debug(f"Saved token document to {path}")
