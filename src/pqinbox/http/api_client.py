"""Control-plane HTTP client for pqinbox."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, cast
from urllib.parse import quote

import httpx

from ..errors import (
    ApiError,
    EmailNotFoundError,
    InboxNotFoundError,
    NetworkError,
    NotFoundError,
)
from ..types import (
    ClientConfig,
    EmailResponse,
    InboxData,
    InboxEncryptionMode,
    RawEmailResponse,
    ServerInfo,
    SyncStatus,
)

logger = logging.getLogger("pqinbox")

_TRANSPORT_ERRORS = (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError)


def encode_path_segment(value: str) -> str:
    """Percent-encode one URL path segment, slashes included."""
    return quote(value, safe="")


def _inbox_path(email_address: str, *parts: str) -> str:
    segments = [encode_path_segment(email_address), *(encode_path_segment(p) for p in parts)]
    return "/api/inboxes/" + "/".join(segments)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if message:
            return str(message)
    return response.text or f"HTTP {response.status_code}"


class ApiClient:
    """Thin async wrapper over the inbox REST API.

    One ``httpx.AsyncClient`` is created lazily and reused. Transport failures
    and the configured status codes are retried ``max_retries`` times, sleeping
    ``retry_delay * 2**attempt`` milliseconds between attempts. Each endpoint
    names the not-found error its 404 maps to.

    Attributes:
        config: Client configuration; the SSE transport also reads its
            base URL and API key.
    """

    def __init__(self, config: ClientConfig) -> None:
        self.config = config
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers={"X-API-Key": self.config.api_key, "Content-Type": "application/json"},
                timeout=httpx.Timeout(self.config.timeout / 1000),
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _backoff(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt + 1``."""
        return self.config.retry_delay * (2**attempt) / 1000

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        not_found: type[NotFoundError] = InboxNotFoundError,
    ) -> httpx.Response:
        """Send one request, retrying transient failures.

        Raises:
            NetworkError: If the server could not be reached after all retries.
            NotFoundError: ``not_found`` on a 404.
            ApiError: On any other error status.
        """
        client = await self._get_client()
        attempts = self.config.max_retries + 1

        for attempt in range(attempts):
            last_attempt = attempt == attempts - 1
            try:
                response = await client.request(method, path, json=json, params=params)
            except _TRANSPORT_ERRORS as e:
                if last_attempt:
                    raise NetworkError(f"Network error: {e}") from e
                delay = self._backoff(attempt)
                logger.debug("%s %s failed (%s), retrying in %.2fs", method, path, e, delay)
                await asyncio.sleep(delay)
                continue

            status = response.status_code
            if status in self.config.retry_on_status_codes and not last_attempt:
                delay = self._backoff(attempt)
                logger.debug("%s %s returned %d, retrying in %.2fs", method, path, status, delay)
                await asyncio.sleep(delay)
                continue

            if status == 404:
                raise not_found(_error_message(response))
            if status >= 400:
                raise ApiError(status, _error_message(response))
            return response

        raise AssertionError("unreachable")  # pragma: no cover

    async def _get_json(self, path: str, **kwargs: Any) -> Any:
        response = await self._request("GET", path, **kwargs)
        return response.json()

    # Server

    async def check_key(self) -> bool:
        data = await self._get_json("/api/check-key")
        return bool(data.get("ok", False))

    async def get_server_info(self) -> ServerInfo:
        data = await self._get_json("/api/server-info")
        return ServerInfo(
            server_sig_pk=data["serverSigPk"],
            algs=data["algs"],
            context=data["context"],
            max_ttl=data["maxTtl"],
            default_ttl=data["defaultTtl"],
            sse_console=data.get("sseConsole", False),
            allowed_domains=data.get("allowedDomains", []),
            encryption_policy=data.get("encryptionPolicy", "always"),
        )

    # Inboxes

    async def create_inbox(
        self,
        client_kem_pk: str | None = None,
        *,
        ttl: int | None = None,
        email_address: str | None = None,
        email_auth: bool | None = None,
        encryption: InboxEncryptionMode | None = None,
    ) -> InboxData:
        """Create an inbox. Options left as None are omitted and the server decides.

        Args:
            client_kem_pk: Base64url ML-KEM-768 public key; omit for plain inboxes.
        """
        fields = {
            "clientKemPk": client_kem_pk,
            "ttl": ttl,
            "emailAddress": email_address,
            "emailAuth": email_auth,
            "encryption": encryption,
        }
        body = {key: value for key, value in fields.items() if value is not None}

        response = await self._request("POST", "/api/inboxes", json=body)
        data = response.json()
        return InboxData(
            email_address=data["emailAddress"],
            expires_at=data["expiresAt"],
            inbox_hash=data["inboxHash"],
            encrypted=data.get("encrypted", client_kem_pk is not None),
            email_auth=data.get("emailAuth", False),
            server_sig_pk=data.get("serverSigPk"),
        )

    async def delete_inbox(self, email_address: str) -> None:
        await self._request("DELETE", _inbox_path(email_address))

    async def delete_all_inboxes(self) -> int:
        """Delete every inbox owned by the API key and return how many went."""
        response = await self._request("DELETE", "/api/inboxes")
        return int(response.json().get("deleted", 0))

    async def get_sync_status(self, email_address: str) -> SyncStatus:
        data = await self._get_json(_inbox_path(email_address, "sync"))
        return SyncStatus(email_count=data["emailCount"], emails_hash=data["emailsHash"])

    # Emails

    async def list_emails(
        self, email_address: str, include_content: bool = False
    ) -> list[EmailResponse]:
        """List envelopes; with ``include_content`` they carry the parsed part too."""
        params = {"includeContent": "true"} if include_content else None
        data = await self._get_json(_inbox_path(email_address, "emails"), params=params)
        return cast(list[EmailResponse], data)

    async def get_email(self, email_address: str, email_id: str) -> EmailResponse:
        path = _inbox_path(email_address, "emails", email_id)
        return cast(EmailResponse, await self._get_json(path, not_found=EmailNotFoundError))

    async def get_raw_email(self, email_address: str, email_id: str) -> RawEmailResponse:
        path = _inbox_path(email_address, "emails", email_id, "raw")
        return cast(RawEmailResponse, await self._get_json(path, not_found=EmailNotFoundError))

    async def mark_email_as_read(self, email_address: str, email_id: str) -> None:
        path = _inbox_path(email_address, "emails", email_id, "read")
        await self._request("PATCH", path, not_found=EmailNotFoundError)

    async def delete_email(self, email_address: str, email_id: str) -> None:
        path = _inbox_path(email_address, "emails", email_id)
        await self._request("DELETE", path, not_found=EmailNotFoundError)
