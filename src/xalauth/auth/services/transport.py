"""HTTP transport shared by the token services.

Wraps ``httpx.AsyncClient`` with the bounded timeouts and the uniform retry
policy: a failed attempt (transport error, timeout or non-2xx status) waits a
fixed delay and tries again, up to ``max_attempts``. A 2xx response whose body
cannot be parsed is a permanent failure and is not retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from xalauth.auth.models.config import HttpSettings
from xalauth.auth.models.errors import NetworkError, ParseError

ModelT = TypeVar("ModelT", bound=BaseModel)


def _is_success(response: httpx.Response) -> bool:
    return 200 <= response.status_code < 300


def parse_json_body(operation: str, response: httpx.Response) -> dict[str, Any]:
    """Decode a response body that must be a JSON object.

    Raises:
        ParseError: If the body is not JSON or not an object
    """
    try:
        body = response.json()
    except ValueError as e:
        raise ParseError(f"{operation}: response is not valid JSON: {e}") from e

    if not isinstance(body, dict):
        raise ParseError(
            f"{operation}: expected a JSON object, got {type(body).__name__}"
        )
    return body


def validate_body(operation: str, model: type[ModelT], body: dict[str, Any]) -> ModelT:
    """Validate a decoded body against its schema.

    Raises:
        ParseError: If required fields are missing or have the wrong type
    """
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise ParseError(f"{operation}: invalid response format: {e}") from e


class HttpTransport:
    """POST-only HTTP client with timeouts and retry/backoff.

    Not safe for concurrent use from several tasks that share token state;
    callers serialize access.
    """

    def __init__(
        self,
        settings: HttpSettings | None = None,
        *,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the transport.

        Args:
            settings: Timeouts and retry policy
            logger: Logger to report attempts to (defaults to the module logger)
            sleep: Coroutine used to wait between attempts
        """
        self.settings = settings or HttpSettings()
        self._logger = logger or logging.getLogger(__name__)
        self._sleep = sleep
        self._http_client = httpx.AsyncClient(timeout=self.settings.timeout())

    async def post_once(
        self,
        operation: str,
        url: str,
        *,
        content: bytes | None = None,
        data: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send a single POST without retrying, whatever the status.

        Raises:
            NetworkError: If the request cannot be sent or times out
        """
        try:
            response = await self._send(url, content=content, data=data, headers=headers)
        except httpx.HTTPError as e:
            raise NetworkError(
                f"{operation} failed: {type(e).__name__}: {e}",
                operation=operation,
                attempts=1,
            ) from e

        self._logger.debug(f"{operation} response status: {response.status_code}")
        return response

    async def post(
        self,
        operation: str,
        url: str,
        *,
        content: bytes | None = None,
        data: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send a POST, retrying failed attempts.

        Returns:
            The first 2xx response

        Raises:
            NetworkError: If every attempt failed
        """
        max_attempts = self.settings.max_attempts
        last_error = ""
        last_status: int | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                response = await self._send(
                    url, content=content, data=data, headers=headers
                )
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
                last_status = None
                self._logger.warning(
                    f"{operation} attempt {attempt}/{max_attempts} failed: {last_error}"
                )
            else:
                self._logger.info(
                    f"{operation} response status "
                    f"(attempt {attempt}/{max_attempts}): {response.status_code}"
                )
                if _is_success(response):
                    return response

                last_status = response.status_code
                last_error = f"HTTP {response.status_code}"
                self._logger.debug(f"{operation} error body: {response.text[:500]}")

            if attempt < max_attempts:
                self._logger.warning(
                    f"{operation} failed, retrying in {self.settings.retry_delay:g}s..."
                )
                await self._sleep(self.settings.retry_delay)

        self._logger.error(f"{operation} failed after {max_attempts} attempts")
        raise NetworkError(
            f"{operation} failed after {max_attempts} attempts: {last_error}",
            operation=operation,
            attempts=max_attempts,
            status_code=last_status,
        )

    async def post_json(
        self,
        operation: str,
        url: str,
        *,
        content: bytes | None = None,
        data: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """POST with retries and decode the JSON object body."""
        response = await self.post(
            operation, url, content=content, data=data, headers=headers
        )
        body = parse_json_body(operation, response)
        self._logger.debug(f"{operation} response body received ({len(body)} fields)")
        return body

    async def _send(
        self,
        url: str,
        *,
        content: bytes | None,
        data: dict[str, str] | None,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        if data is not None:
            return await self._http_client.post(url, data=data, headers=headers)
        return await self._http_client.post(url, content=content, headers=headers)

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()
