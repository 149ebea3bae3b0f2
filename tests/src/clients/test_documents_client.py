"""Tests for the document service HTTP client."""
import json

import httpx
import pytest

from deal_intake.domain.documents.models import FileHandle
from deal_intake.infra.clients.documents import DocumentServiceClient
from deal_intake.shared.enums import ArtifactCategory
from deal_intake.shared.errors import (
    IntakeError,
    LinkFailed,
    RemovalFailed,
    StatusTimeout,
    UploadFailed,
)


def _client(handler, **kwargs):
    return DocumentServiceClient(
        "http://documents.test",
        api_key="secret",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_submit_sends_multipart_with_metadata(tmp_path):
    """Test a spooled file is uploaded with its metadata."""
    path = tmp_path / "rg.pdf"
    path.write_bytes(b"%PDF-rg")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = request.read()
        return httpx.Response(201, json={"document_id": "doc-1"})

    client = _client(handler)
    remote_id = await client.submit(
        FileHandle(name="rg.pdf", content_type="application/pdf", path=path),
        declared_type="RG",
        category=ArtifactCategory.SELLERS,
        party_id="p1",
        local_id="l1",
        deal_id="deal-1",
    )
    await client.close()

    assert remote_id == "doc-1"
    assert seen["path"] == "/documents"
    assert seen["auth"] == "Bearer secret"
    body = seen["body"]
    assert b"%PDF-rg" in body
    for value in (b"RG", b"sellers", b"p1", b"l1", b"deal-1"):
        assert value in body


@pytest.mark.asyncio
async def test_submit_failures_raise_upload_failed(tmp_path):
    """Test HTTP errors, empty bodies and unreadable files."""
    client = _client(lambda request: httpx.Response(422, text="bad type"))
    with pytest.raises(UploadFailed) as exc:
        await client.submit(
            FileHandle(name="a.pdf", content=b"x"),
            declared_type="RG", category=ArtifactCategory.BUYERS, party_id=None, local_id="l", deal_id="d",
        )
    assert exc.value.code == "http_422"

    client = _client(lambda request: httpx.Response(200, json={}))
    with pytest.raises(UploadFailed) as exc:
        await client.submit(
            FileHandle(name="a.pdf", content=b"x"),
            declared_type="RG", category=ArtifactCategory.BUYERS, party_id=None, local_id="l", deal_id="d",
        )
    assert exc.value.code == "empty_response"

    with pytest.raises(UploadFailed) as exc:
        await client.submit(
            FileHandle(name="gone.pdf", path=tmp_path / "gone.pdf"),
            declared_type="RG", category=ArtifactCategory.BUYERS, party_id=None, local_id="l", deal_id="d",
        )
    assert exc.value.code == "unreadable"


@pytest.mark.asyncio
async def test_link_returns_new_remote_id():
    """Test link endpoint call."""
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["json"] = json.loads(request.content)
        return httpx.Response(200, json={"remote_id": "doc-9"})

    client = _client(handler)
    assert await client.link("doc-1", "CPF") == "doc-9"
    assert seen == {"path": "/documents/doc-1/link", "json": {"requirement_id": "CPF"}}

    client = _client(lambda request: httpx.Response(409, text="conflict"))
    with pytest.raises(LinkFailed):
        await client.link("doc-1", "CPF")


@pytest.mark.asyncio
async def test_status_parses_and_times_out():
    """Test status answers and the timeout mapping."""
    def handler(request):
        if request.url.path.startswith("/documents/slow"):
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, json={"status": "completed", "extracted_data": {"a": 1}})

    client = _client(handler, status_timeout=0.1)
    result = await client.status("doc-1")
    assert result.status == "completed"
    assert result.is_terminal
    assert result.extracted_data == {"a": 1}

    with pytest.raises(StatusTimeout) as exc:
        await client.status("slow")
    assert exc.value.code == "timeout"
    await client.close()


@pytest.mark.asyncio
async def test_status_unknown_value_is_processing():
    """Test unknown status values read as still processing."""
    client = _client(lambda request: httpx.Response(200, json={"status": "queued"}))
    result = await client.status("doc-1")
    assert result.status == "processing"
    assert not result.is_terminal


@pytest.mark.asyncio
async def test_process_now_and_remove():
    """Test broadcast and removal calls."""
    calls = []

    def handler(request):
        calls.append((request.method, request.url.path, request.content))
        if request.method == "DELETE" and request.url.path.endswith("bad"):
            return httpx.Response(500)
        return httpx.Response(204)

    client = _client(handler)
    await client.process_now(["doc-1", "doc-2"])
    await client.remove("doc-1")
    with pytest.raises(RemovalFailed):
        await client.remove("bad")

    assert calls[0][:2] == ("POST", "/documents/process-now")
    assert json.loads(calls[0][2]) == {"document_ids": ["doc-1", "doc-2"]}
    assert calls[1][:2] == ("DELETE", "/documents/doc-1")


@pytest.mark.asyncio
async def test_unconfigured_client():
    """Test a client without base URL."""
    client = DocumentServiceClient("")
    with pytest.raises(IntakeError) as exc:
        await client.process_now(["doc-1"])
    assert exc.value.code == "not_configured"
    with pytest.raises(StatusTimeout):
        await client.status("doc-1")
