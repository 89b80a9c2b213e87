"""
Authenticated access to the Zoho Creator v2.1 API.

Every outbound call goes through :class:`ZohoCreatorClient`, which injects the
token manager's header and applies one response-validation contract.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Mapping, Optional
from urllib.parse import quote

import httpx

from zoho_connector.core.config import ZohoSettings
from zoho_connector.utils.http import RetryConfig, call_with_retry

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from zoho_connector.services.token_manager import TokenManager

logger = logging.getLogger(__name__)

SUCCESS_CODE = 3000
SCOPE_ERROR_CODE = 2945
NO_RECORDS_CODE = 9280


class RemoteApiError(Exception):
    """Raised for any non-success answer from the Creator API."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code

    @property
    def retryable(self) -> bool:
        """Server errors and rate limiting may succeed later; 4xx will not."""
        if self.status_code is None:
            return False
        return self.status_code >= 500 or self.status_code == 429


class ScopePermissionError(RemoteApiError):
    """Raised when the token lacks the OAuth scope an operation requires."""

    def __init__(self, required_scope: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(
            f"Please add {required_scope} in ZOHO_SCOPE env variable.",
            status_code=status_code,
            code=SCOPE_ERROR_CODE,
        )
        self.required_scope = required_scope

    @property
    def retryable(self) -> bool:
        return False


@dataclass
class ZohoResponse:
    """Validated body of a Creator API call plus its headers."""

    body: Dict[str, Any]
    headers: httpx.Headers
    status_code: int


class ZohoCreatorClient:
    """Thin authenticated facade over the Creator data, bulk and meta APIs."""

    def __init__(
        self,
        settings: ZohoSettings,
        token_manager: "TokenManager",
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._tokens = token_manager
        self._timeout = timeout
        self._transport = transport
        self._retry = retry_config or RetryConfig()
        self._sleep = sleep

        creator_base = f"{settings.api_base_url}/creator"
        scope = f"{settings.user}/{settings.app_name}"
        self.data_base_url = f"{creator_base}/v2.1/data/{scope}"
        self.bulk_base_url = f"{creator_base}/v2.1/bulk/{scope}/report"

    def report_url(self, report: str, record_id: str | None = None) -> str:
        url = f"{self.data_base_url}/report/{quote(report, safe='')}"
        if record_id:
            url = f"{url}/{quote(str(record_id), safe='')}"
        return url

    def form_url(self, form: str) -> str:
        return f"{self.data_base_url}/form/{quote(form, safe='')}"

    def bulk_read_url(self, report: str, job_id: str | None = None, *, result: bool = False) -> str:
        url = f"{self.bulk_base_url}/{quote(report, safe='')}/read"
        if job_id:
            url = f"{url}/{quote(job_id, safe='')}"
            if result:
                url = f"{url}/result"
        return url

    async def call(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        """Send one authenticated request without validating the answer."""
        request_headers = {**(headers or {}), **await self._tokens.get_auth_header()}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            return await client.request(
                method,
                url,
                params=params,
                json=json,
                headers=request_headers,
            )

    async def request(
        self,
        method: str,
        url: str,
        *,
        required_scope: str = "",
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> ZohoResponse:
        """Call and validate, retrying transient failures with exponential backoff."""

        async def _attempt() -> ZohoResponse:
            response = await self.call(method, url, params=params, json=json, headers=headers)
            body = self.validate(response, required_scope)
            return ZohoResponse(body=body, headers=response.headers, status_code=response.status_code)

        return await call_with_retry(_attempt, retry_config=self._retry, sleep=self._sleep)

    async def download(self, url: str, destination: Path, *, required_scope: str = "") -> Path:
        """Stream a binary answer to ``destination``."""

        async def _attempt() -> Path:
            request_headers = await self._tokens.get_auth_header()
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                async with client.stream("GET", url, headers=request_headers) as response:
                    if not response.is_success:
                        await response.aread()
                        self.validate(response, required_scope)
                    destination.parent.mkdir(parents=True, exist_ok=True)
                    with destination.open("wb") as handle:
                        async for chunk in response.aiter_bytes():
                            handle.write(chunk)
            return destination

        return await call_with_retry(_attempt, retry_config=self._retry, sleep=self._sleep)

    def validate(self, response: httpx.Response, required_scope: str = "") -> Dict[str, Any]:
        """Return the decoded body of a successful answer or raise a typed error.

        Raises:
            ScopePermissionError: when Zoho reports the missing-scope code.
            RemoteApiError: for any other HTTP or API-level failure.
        """
        body = _decode_body(response)
        code = body.get("code") if isinstance(body, dict) else None

        if code == SCOPE_ERROR_CODE:
            logger.error("Zoho refused the call: scope %s not granted", required_scope or "<unspecified>")
            raise ScopePermissionError(required_scope, status_code=response.status_code)

        if response.is_success and code == SUCCESS_CODE:
            return body

        message = f"Zoho error: {_error_message(response, body)}"
        logger.error("%s", message, extra={"status_code": response.status_code, "zoho_code": code})
        raise RemoteApiError(
            message,
            status_code=response.status_code,
            code=code if isinstance(code, int) else None,
        )


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def _error_message(response: httpx.Response, body: Any) -> str:
    if isinstance(body, dict):
        error = body.get("error")
        if error:
            if isinstance(error, list):
                return "; ".join(str(item) for item in error)
            return str(error)
        message = body.get("message")
        if message:
            return str(message)
    if body:
        return json.dumps(body)
    return f"HTTP {response.status_code}"


__all__ = [
    "NO_RECORDS_CODE",
    "RemoteApiError",
    "SCOPE_ERROR_CODE",
    "SUCCESS_CODE",
    "ScopePermissionError",
    "ZohoCreatorClient",
    "ZohoResponse",
]
