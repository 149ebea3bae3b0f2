"""HTTP client for the requirement catalog provider."""
from __future__ import annotations

from typing import Optional

import httpx

from deal_intake.domain.catalog.models import CatalogRequest, CatalogResponse
from deal_intake.infra.config.settings import settings
from deal_intake.shared.errors import CatalogUnavailable
from deal_intake.shared.logging import get_logger

logger = get_logger(__name__)


class CatalogClient:
    """Fetches the requirement set for one (seller, buyer) pair.

    Any transport error, non-2xx answer or malformed body is reported as
    `CatalogUnavailable` for that single pair.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url if base_url is not None else settings.catalog_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.catalog_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        """Shut down the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def fetch(self, request: CatalogRequest) -> CatalogResponse:
        if not self.base_url:
            raise CatalogUnavailable("CATALOG_BASE_URL is not configured", code="not_configured")
        client = await self._ensure_client()
        try:
            resp = await client.post("/checklist", json=request.to_payload())
        except httpx.TimeoutException as exc:
            raise CatalogUnavailable("Catalog request timed out", code="timeout") from exc
        except httpx.HTTPError as exc:
            raise CatalogUnavailable(f"Catalog request failed: {exc}", code="transport") from exc

        if resp.status_code >= 400:
            raise CatalogUnavailable(
                f"Catalog returned HTTP {resp.status_code}", code=f"http_{resp.status_code}"
            )
        try:
            return CatalogResponse.from_dict(resp.json())
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Malformed catalog response: %s", exc)
            raise CatalogUnavailable("Malformed catalog response", code="malformed") from exc
