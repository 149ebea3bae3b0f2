"""HTTP client for the document service (submission, link, status, removal)."""
from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

import httpx

from deal_intake.domain.documents.models import FileHandle, RemoteStatus
from deal_intake.infra.config.settings import settings
from deal_intake.shared.enums import ArtifactCategory
from deal_intake.shared.errors import (
    IntakeError,
    LinkFailed,
    RemovalFailed,
    StatusTimeout,
    UploadFailed,
)
from deal_intake.shared.logging import get_logger

logger = get_logger(__name__)


def _remote_id(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    for key in ("remote_id", "document_id", "id"):
        value = body.get(key)
        if value:
            return str(value)
    return None


class DocumentServiceClient:
    """Async client for the document backend.

    Every failure is translated into the matching IntakeError subclass;
    httpx exceptions never leak to callers.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        status_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url if base_url is not None else settings.documents_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.documents_api_key
        self.timeout = timeout if timeout is not None else settings.documents_timeout_seconds
        self.status_timeout = (
            status_timeout if status_timeout is not None else settings.ocr_status_timeout_seconds
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
                transport=self._transport,
                headers=self._headers(),
            )
        return self._client

    async def close(self) -> None:
        """Shut down the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        url: str,
        error_cls: type[IntakeError],
        **kwargs: Any,
    ) -> httpx.Response:
        if not self.base_url:
            raise error_cls("DOCUMENTS_BASE_URL is not configured", code="not_configured")
        client = await self._ensure_client()
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise error_cls(f"{method} {url} timed out", code="timeout") from exc
        except httpx.HTTPError as exc:
            raise error_cls(f"{method} {url} failed: {exc}", code="transport") from exc
        if resp.status_code >= 400:
            detail = resp.text[:200]
            raise error_cls(
                f"Document service returned HTTP {resp.status_code}: {detail}",
                code=f"http_{resp.status_code}",
            )
        return resp

    async def submit(
        self,
        file: FileHandle,
        *,
        declared_type: str,
        category: ArtifactCategory,
        party_id: Optional[str],
        local_id: str,
        deal_id: str,
    ) -> str:
        """Upload a file; returns the remote correlation id."""
        try:
            content = await file.read()
        except OSError as exc:
            raise UploadFailed(f"Could not read {file.name}: {exc}", code="unreadable") from exc

        data = {
            "declared_type": declared_type,
            "category": category.value,
            "local_id": local_id,
            "deal_id": deal_id,
        }
        if party_id:
            data["party_id"] = party_id
        resp = await self._request(
            "POST",
            "/documents",
            UploadFailed,
            data=data,
            files={"file": (file.name, content, file.content_type)},
        )
        remote_id = _remote_id(resp.json())
        if not remote_id:
            raise UploadFailed("Submission response carried no document id", code="empty_response")
        logger.info("Submitted %s as %s (%s)", file.name, remote_id, declared_type)
        return remote_id

    async def link(self, source_remote_id: str, requirement_id: str) -> str:
        """Attach another requirement id to a recognised document."""
        resp = await self._request(
            "POST",
            f"/documents/{source_remote_id}/link",
            LinkFailed,
            json={"requirement_id": requirement_id},
        )
        remote_id = _remote_id(resp.json())
        if not remote_id:
            raise LinkFailed("Link response carried no document id", code="empty_response")
        return remote_id

    async def status(self, remote_id: str) -> RemoteStatus:
        """Short-timeout status query. A timeout raises StatusTimeout."""
        if not self.base_url:
            raise StatusTimeout("DOCUMENTS_BASE_URL is not configured", code="not_configured")
        client = await self._ensure_client()
        try:
            resp = await client.get(f"/documents/{remote_id}/status", timeout=self.status_timeout)
        except httpx.TimeoutException as exc:
            raise StatusTimeout(f"Status of {remote_id} timed out", code="timeout") from exc
        except httpx.HTTPError as exc:
            raise StatusTimeout(f"Status of {remote_id} unavailable: {exc}", code="transport") from exc
        if resp.status_code >= 400:
            raise StatusTimeout(
                f"Status of {remote_id} returned HTTP {resp.status_code}",
                code=f"http_{resp.status_code}",
            )
        try:
            return RemoteStatus.from_dict(resp.json())
        except (AttributeError, ValueError) as exc:
            raise StatusTimeout(f"Malformed status for {remote_id}", code="malformed") from exc

    async def process_now(self, remote_ids: Iterable[str]) -> None:
        """Ask the backend to process the given documents immediately."""
        await self._request(
            "POST",
            "/documents/process-now",
            IntakeError,
            json={"document_ids": list(remote_ids)},
        )

    async def remove(self, remote_id: str) -> None:
        await self._request("DELETE", f"/documents/{remote_id}", RemovalFailed)
        logger.info("Removed remote document %s", remote_id)
