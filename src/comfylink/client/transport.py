"""
Single-attempt HTTP transport to the workflow server.

No retry and no backoff: one request, one response or one
:class:`TransportError`. Status codes are not interpreted here; callers decide
what a 4xx body means (a rejected submission still carries a decodable body).
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import httpx

from comfylink.client.errors import TransportError
from comfylink.utils.logging import LoggerFactory

logger = LoggerFactory.get_logger("client.transport")


class HttpTransport:
    """Issues requests relative to the server base URL over a shared httpx client."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: Optional[float] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http_transport = http_transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/",
                timeout=httpx.Timeout(self._timeout),
                transport=self._http_transport,
            )
        return self._client

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        json_body: Any = None,
        params: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Send one request; network failures become :class:`TransportError`."""
        client = self._get_client()
        url = path.lstrip("/")
        logger.debug(
            "server_request",
            extra_context={"method": method, "endpoint": url, "has_body": json_body is not None},
        )
        try:
            response = await client.request(
                method,
                url,
                headers=dict(headers) if headers else None,
                json=json_body,
                params=params,
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "server_request_failed",
                extra_context={"method": method, "endpoint": url},
                exception=exc,
            )
            raise TransportError(
                f"{method} {url} failed: {exc}",
                method=method,
                url=f"{self.base_url}/{url}",
            ) from exc

        if response.status_code >= 400:
            logger.debug(
                "server_request_error_status",
                extra_context={
                    "method": method,
                    "endpoint": url,
                    "http_status": response.status_code,
                    "response_text": response.text[:500] if response.content else None,
                },
            )
        return response

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
