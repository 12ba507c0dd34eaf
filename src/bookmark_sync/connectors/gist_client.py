"""
GitHub Gist document client.

Stores the sync document as one file inside a gist, through the Gist REST
API (or a compatible mock server):
- read: GET /gists/{id}
- update: PATCH /gists/{id}
- create: POST /gists
- Rate limiting and retry logic
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from bookmark_sync.config import Settings

logger = logging.getLogger(__name__)

GIST_DESCRIPTION = "Bookmark Sync - Updated by bookmark-sync"


class TransportError(Exception):
    """Base exception for remote document failures."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class RateLimitError(TransportError):
    """Raised when rate limit is exceeded."""

    def __init__(self, retry_after: int = 60) -> None:
        super().__init__(f"Rate limit exceeded. Retry after {retry_after}s", status=429)
        self.retry_after = retry_after


@dataclass
class RemoteBlob:
    """Raw document content as read from the gist."""

    document_id: str
    content: str | None


class GistClient:
    """
    Versioned-blob create/read/update over the Gist API.

    Example:
        async with GistClient(api_url, token) as client:
            blob = await client.read("abc123")
            if blob is None:
                new_id = await client.create(content)
            else:
                await client.update("abc123", content)
    """

    def __init__(
        self,
        api_url: str,
        token: str | None = None,
        file_name: str = "bookmarks.json",
        timeout: float = 30.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            api_url: Base URL (GitHub API or mock server)
            token: Personal access token (None for a mock server)
            file_name: Gist file holding the document
            timeout: Request timeout in seconds
            max_retries: Attempts per request
            transport: Optional httpx transport (tests)
        """
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.file_name = file_name
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "Content-Type": "application/json",
        }
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                headers=self._get_headers(),
                timeout=httpx.Timeout(self.timeout, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GistClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Make an API request with retry logic.

        Handles:
        - Rate limiting (429) honouring Retry-After
        - Transient connection errors with linear backoff
        """
        client = await self._get_client()
        retry_delay = 1.0

        for attempt in range(self.max_retries):
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                if attempt < self.max_retries - 1:
                    logger.debug(f"{method} {url} failed ({e}), retrying")
                    await asyncio.sleep(retry_delay * (attempt + 1))
                    continue
                raise TransportError(f"Connection error: {e}") from e

            if response.status_code == 429:
                retry_after = int(response.headers.get("Retry-After", "60"))
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(retry_after)
                    continue
                raise RateLimitError(retry_after)

            return response

        raise TransportError("Max retries exceeded")

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        try:
            message = response.json().get("message", response.reason_phrase)
        except ValueError:
            message = response.reason_phrase
        raise TransportError(f"{action} failed: {message}", status=response.status_code)

    def _file_payload(self, content: str) -> dict[str, Any]:
        return {
            "description": GIST_DESCRIPTION,
            "files": {self.file_name: {"content": content}},
        }

    async def read(self, document_id: str) -> RemoteBlob | None:
        """
        Fetch the document.

        Returns:
            None if the gist does not exist; a blob whose content is None
            if the gist exists but has no document file
        """
        response = await self._request("GET", f"/gists/{document_id}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "Fetching gist")

        try:
            files = response.json().get("files") or {}
        except ValueError as e:
            raise TransportError(f"Gist response is not JSON: {e}") from e

        entry = files.get(self.file_name) or {}
        return RemoteBlob(document_id=document_id, content=entry.get("content") or None)

    async def update(self, document_id: str, content: str) -> None:
        """Replace the document in an existing gist."""
        response = await self._request(
            "PATCH", f"/gists/{document_id}", json=self._file_payload(content)
        )
        self._raise_for_status(response, "Updating gist")

    async def create(self, content: str) -> str:
        """Create a new secret gist holding the document. Returns its id."""
        payload = self._file_payload(content)
        payload["public"] = False
        response = await self._request("POST", "/gists", json=payload)
        self._raise_for_status(response, "Creating gist")
        return str(response.json()["id"])


def create_gist_client(settings: Settings) -> GistClient:
    """Create a GistClient from settings."""
    if settings.use_mock_server:
        api_url, token = settings.mock_server_url, None
    else:
        api_url, token = settings.api_url, settings.github_token.get_secret_value() or None

    return GistClient(
        api_url=api_url,
        token=token,
        file_name=settings.file_name,
        timeout=settings.http.timeout_seconds,
        max_retries=settings.http.max_retries,
    )
