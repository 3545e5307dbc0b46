"""Async HTTP base for provider clients.

Every provider talks JSON over HTTPS through one shared ``aiohttp`` session.
Transport and protocol problems are raised internally as
``ProviderRequestError`` subclasses and converted to ``Failure`` values at the
``fetch_balance`` boundary, so callers never see an exception for a single
provider failure.
"""

from __future__ import annotations

import asyncio
import json
import logging
import ssl
import time
from decimal import Decimal
from typing import Any, Callable, Mapping, TypeVar

import aiohttp
from pydantic import BaseModel, ValidationError

from tokenpulse_client.constants import (
    DEFAULT_CONNECT_TIMEOUT_SEC,
    DEFAULT_READ_TIMEOUT_SEC,
    DEFAULT_TIMEOUT_SEC,
)
from tokenpulse_client.models import (
    Account,
    Balance,
    BalanceSnapshot,
    ErrorKind,
    Failure,
    ProviderId,
    ProviderResult,
    Success,
)

LOGGER = logging.getLogger("tokenpulse.providers")

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class ProviderRequestError(Exception):
    """Base exception for provider request errors."""

    kind = ErrorKind.UNKNOWN_ERROR

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ProviderAuthError(ProviderRequestError):
    """Raised when the provider rejects the credential."""

    kind = ErrorKind.AUTH_ERROR


class ProviderRateLimitError(ProviderRequestError):
    """Raised when the provider throttles the request."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self, message: str, status: int | None = 429, retry_after: float | None = None
    ) -> None:
        super().__init__(message, status)
        self.retry_after = retry_after


class ProviderNetworkError(ProviderRequestError):
    """Raised for connectivity failures and timeouts."""

    kind = ErrorKind.NETWORK_ERROR


class ProviderParseError(ProviderRequestError):
    """Raised when a response body has an unexpected shape."""

    kind = ErrorKind.PARSE_ERROR


class HttpProviderClient:
    """Base class for aiohttp-backed provider clients."""

    provider_id: ProviderId
    auth_statuses: frozenset[int] = frozenset({401, 403})

    def __init__(
        self,
        base_url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        connect_timeout: float | None = DEFAULT_CONNECT_TIMEOUT_SEC,
        read_timeout: float | None = DEFAULT_READ_TIMEOUT_SEC,
        time_provider: Callable[[], float] | None = None,
        verify_ssl: bool = True,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self._time_provider = time_provider or time.time
        self._ssl_context = ssl_context
        if ssl_context is None and verify_ssl:
            self._ssl_context = ssl.create_default_context()
        elif ssl_context is None and not verify_ssl:
            self._ssl_context = ssl._create_unverified_context()
            LOGGER.warning(
                "SSL certificate verification is DISABLED for %s. "
                "Never use this outside local testing.",
                self.display_name,
            )
        self._session = session
        self._owns_session = session is None

    @property
    def display_name(self) -> str:
        return self.provider_id.display_name

    def build_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def client_timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.timeout,
            connect=self.connect_timeout,
            sock_read=self.read_timeout,
        )

    async def fetch_balance(self, account: Account, secret: str) -> ProviderResult:
        """Fetch the account balance; failures are returned as values."""
        try:
            return await self._fetch_balance(account, secret)
        except ProviderRequestError as exc:
            failure = self.map_error(exc)
            LOGGER.debug(
                "%s fetch for account %s failed: %s",
                self.display_name,
                account.id,
                failure.message,
            )
            return failure

    async def test_credentials(self, account: Account, secret: str) -> ProviderResult:
        return await self.fetch_balance(account, secret)

    async def _fetch_balance(self, account: Account, secret: str) -> ProviderResult:
        raise NotImplementedError

    def success(self, account: Account, balance: Balance) -> Success:
        now = self._time_provider()
        return Success(
            snapshot=BalanceSnapshot(
                account_id=account.id,
                provider_id=self.provider_id,
                balance=balance,
                timestamp=now,
            ),
            timestamp=now,
        )

    def failure(
        self, kind: ErrorKind, message: str, cause: BaseException | None = None
    ) -> Failure:
        return Failure(
            kind=kind, message=message, cause=cause, timestamp=self._time_provider()
        )

    def map_error(self, exc: ProviderRequestError) -> Failure:
        """Translate a request error into the shared failure taxonomy."""
        name = self.display_name
        if isinstance(exc, ProviderAuthError):
            message = str(exc) or f"{name} rejected the credential"
        elif isinstance(exc, ProviderRateLimitError):
            message = f"{name} rate limit exceeded"
        elif isinstance(exc, ProviderNetworkError):
            message = f"Failed to connect to {name}"
        elif isinstance(exc, ProviderParseError):
            message = f"Failed to parse {name} response"
        else:
            message = f"{name} error: {exc}"
        cause = exc.__cause__ if exc.__cause__ is not None else exc
        return self.failure(exc.kind, message, cause)

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
        json_body: Mapping[str, Any] | None = None,
        url: str | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Raises:
            ProviderAuthError: the provider answered 401/403.
            ProviderRateLimitError: the provider answered 429.
            ProviderRequestError: any other HTTP error status.
            ProviderNetworkError: connection failure or timeout.
            ProviderParseError: the body is not valid JSON.
        """
        request_headers = {"Accept": "application/json"}
        request_headers.update(headers or {})
        data_bytes = None
        if json_body is not None:
            data_bytes = json.dumps(json_body, separators=(",", ":")).encode("utf8")
            request_headers["Content-Type"] = "application/json"

        session = await self._ensure_session()
        try:
            async with session.request(
                method.upper(),
                url or self.build_url(path),
                headers=request_headers,
                params=dict(params) if params else None,
                data=data_bytes,
                timeout=self.client_timeout(),
            ) as response:
                payload = await response.text()
                status = response.status
                retry_after = response.headers.get("Retry-After")
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ProviderNetworkError(
                f"Network error while contacting {self.display_name}"
            ) from exc

        if status in self.auth_statuses:
            raise ProviderAuthError(self.auth_error_message(status), status)
        if status == 429:
            raise ProviderRateLimitError(
                "Rate limit exceeded",
                retry_after=self._parse_retry_after(retry_after),
            )
        if status >= 400:
            raise ProviderRequestError(self._build_http_error_message(status), status)
        if not payload:
            raise ProviderParseError("Empty response body", status)
        try:
            return json.loads(payload, parse_float=Decimal)
        except json.JSONDecodeError as exc:
            raise ProviderParseError("Response body is not valid JSON", status) from exc

    def auth_error_message(self, status: int) -> str:
        return f"{self.display_name} authentication failed (HTTP {status})"

    def parse_model(self, schema: type[SchemaT], data: Any) -> SchemaT:
        try:
            return schema.model_validate(data)
        except ValidationError as exc:
            raise ProviderParseError(
                f"Unexpected {self.display_name} response shape"
            ) from exc

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None
            self._owns_session = False

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            connector = aiohttp.TCPConnector(ssl=self._ssl_context)
            self._session = aiohttp.ClientSession(
                timeout=self.client_timeout(), connector=connector
            )
            self._owns_session = True
        return self._session

    def _parse_retry_after(self, header_value: str | None) -> float | None:
        if header_value is None:
            return None
        try:
            return float(header_value)
        except ValueError:
            return None

    def _build_http_error_message(self, status_code: int) -> str:
        return f"HTTP error {status_code}"


def bearer_headers(secret: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {secret}"}
