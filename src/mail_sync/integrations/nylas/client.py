"""Nylas v3 API client for message listing."""

from __future__ import annotations

import httpx
import structlog

from mail_sync.integrations.nylas.models import (
    MessagePage,
    ProviderMessage,
    parse_message,
    parse_rate_limit_headers,
    parse_retry_after,
)
from mail_sync.integrations.nylas.rate_limiter import RateLimiter

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 200


class ProviderApiError(Exception):
    """Exception raised for provider API errors.

    Attributes:
        status_code: HTTP status code, None for network failures.
        error_type: Error type from the response body (e.g. "rate_limit_error").
        retry_after: Provider-supplied retry delay in seconds.
        network_error: True if the request never got a response.
        message: Human-readable error message.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_type: str | None = None,
        retry_after: float | None = None,
        network_error: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_type = error_type
        self.retry_after = retry_after
        self.network_error = network_error

    @property
    def is_rate_limited(self) -> bool:
        """Check if the provider rejected the request for quota reasons."""
        return self.status_code == 429 or self.error_type == "rate_limit_error"


class NylasClient:
    """Client for the Nylas v3 messages API.

    One client is shared by all accounts; the grant ID selects the mailbox.

    Typical usage:
        async with NylasClient(api_key="...") as client:
            page = await client.list_messages("grant-id", limit=200)
            while page.next_cursor:
                page = await client.list_messages("grant-id", page_token=page.next_cursor)
    """

    def __init__(
        self,
        api_key: str,
        api_uri: str = "https://api.us.nylas.com",
        rate_limiter: RateLimiter | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize Nylas client.

        Args:
            api_key: Application API key.
            api_uri: Regional API base URL.
            rate_limiter: Optional client-side pacing.
            timeout: Request timeout in seconds.
        """
        self.api_uri = api_uri.rstrip("/")
        self.rate_limiter = rate_limiter or RateLimiter()
        self._client = httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> NylasClient:
        """Enter async context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context manager."""
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Make an API request with rate limiting.

        Args:
            method: HTTP method.
            path: API path relative to the base URL.
            params: Query parameters.

        Returns:
            Successful response.

        Raises:
            ProviderApiError: On HTTP errors or network failures.
        """
        await self.rate_limiter.acquire()

        url = f"{self.api_uri}/v3/{path}"
        try:
            response = await self._client.request(method, url, params=params)
        except httpx.TimeoutException as e:
            raise ProviderApiError(f"Request timed out: {e}", network_error=True) from e
        except httpx.TransportError as e:
            raise ProviderApiError(f"Network error: {e}", network_error=True) from e

        if response.status_code >= 400:
            raise self._error_from_response(response)

        return response

    @staticmethod
    def _error_from_response(response: httpx.Response) -> ProviderApiError:
        retry_after = parse_retry_after(response.headers.get("retry-after"))
        message = response.text
        error_type = None
        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}
        if isinstance(body, dict):
            error_info = body.get("error", {})
            if isinstance(error_info, dict):
                message = str(error_info.get("message") or message)
                error_type = error_info.get("type")
        return ProviderApiError(
            message=message or f"HTTP {response.status_code}",
            status_code=response.status_code,
            error_type=str(error_type) if error_type else None,
            retry_after=retry_after,
        )

    async def list_messages(
        self,
        grant_id: str,
        limit: int = MAX_PAGE_SIZE,
        page_token: str | None = None,
    ) -> MessagePage:
        """List one page of messages.

        Args:
            grant_id: Grant identifying the mailbox.
            limit: Page size (capped at 200).
            page_token: Cursor from a previous page.

        Returns:
            Parsed page. Malformed records are dropped with a warning.

        Raises:
            ProviderApiError: If the API returns an error.
        """
        params: dict[str, str] = {"limit": str(max(1, min(limit, MAX_PAGE_SIZE)))}
        if page_token:
            params["page_token"] = page_token

        response = await self._request("GET", f"grants/{grant_id}/messages", params)
        payload = response.json()

        records: list[ProviderMessage] = []
        raw_messages = payload.get("data", []) if isinstance(payload, dict) else []
        if isinstance(raw_messages, list):
            for raw in raw_messages:
                if not isinstance(raw, dict):
                    continue
                try:
                    records.append(parse_message(raw))
                except ValueError as e:
                    await logger.awarning("provider_record_dropped", grant_id=grant_id, error=str(e))

        next_cursor = payload.get("next_cursor") if isinstance(payload, dict) else None
        return MessagePage(
            records=records,
            next_cursor=str(next_cursor) if next_cursor else None,
            rate_limit=parse_rate_limit_headers(response.headers),
        )
