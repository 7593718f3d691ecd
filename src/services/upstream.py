"""Client for the trading-data service that admitted requests are forwarded to."""

from collections.abc import Mapping

import httpx

from src.config import settings
from src.exceptions import UpstreamUnavailableError
from src.logging.config import get_logger
from src.models.api_key import ApiKey

logger = get_logger(__name__)

# RFC 7230 hop-by-hop headers plus the caller's credential headers
STRIPPED_REQUEST_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
        "host",
        "content-length",
        "authorization",
        "x-api-key",
    }
)
STRIPPED_RESPONSE_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "transfer-encoding",
        "content-length",
        "content-encoding",
    }
)


def forward_headers(headers: Mapping[str, str], api_key: ApiKey) -> dict[str, str]:
    """Request headers for the upstream call, with the key identity attached."""
    forwarded = {
        name: value
        for name, value in headers.items()
        if name.lower() not in STRIPPED_REQUEST_HEADERS
    }
    forwarded["X-Api-Key-Id"] = api_key.key_id
    forwarded["X-Api-Owner-Id"] = api_key.owner_id
    forwarded["X-Api-Tier"] = api_key.tier.value
    return forwarded


def response_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Upstream response headers safe to relay to the caller."""
    return {
        name: value
        for name, value in headers.items()
        if name.lower() not in STRIPPED_RESPONSE_HEADERS
    }


class UpstreamClient:
    """
    Lazily created httpx.AsyncClient bound to ``upstream_base_url``.

    A transport can be injected for tests (httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or settings.upstream_base_url
        self.timeout = timeout if timeout is not None else settings.upstream_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def forward(
        self,
        method: str,
        path: str,
        api_key: ApiKey,
        headers: Mapping[str, str],
        query: str = "",
        body: bytes = b"",
    ) -> httpx.Response:
        """
        Send one admitted request upstream.

        Raises:
            UpstreamUnavailableError: On connection failure or timeout
        """
        url = f"{path}?{query}" if query else path
        try:
            return await self.client.request(
                method,
                url,
                headers=forward_headers(headers, api_key),
                content=body or None,
            )
        except httpx.HTTPError as exc:
            logger.error(
                "Upstream request failed",
                exc_info=exc,
                extra={
                    "context": {
                        "method": method,
                        "path": path,
                        "key_prefix": api_key.key_prefix,
                    }
                },
            )
            raise UpstreamUnavailableError() from exc

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Global upstream client
upstream_client = UpstreamClient()


def get_upstream_client() -> UpstreamClient:
    """Dependency returning the process-wide upstream client."""
    return upstream_client
