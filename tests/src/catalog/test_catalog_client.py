"""Tests for the catalog HTTP client."""
import json

import httpx
import pytest

from deal_intake.domain.catalog.models import CatalogRequest, PropertyConfig
from deal_intake.domain.parties.models import Party
from deal_intake.infra.clients.catalog import CatalogClient
from deal_intake.shared.enums import ArtifactCategory, Complexity, RequirementScope, Role
from deal_intake.shared.errors import CatalogUnavailable
from tests.test_utils import catalog_body


def _request():
    return CatalogRequest.for_pair(Party(role=Role.SELLER), Party(role=Role.BUYER), PropertyConfig(state="RJ"))


@pytest.mark.asyncio
async def test_fetch_posts_pair_and_parses_body():
    """Test a successful catalog call."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=catalog_body(
            buyers=[{"id": "RG", "label": "RG", "scope": "spouse", "obligatory": False}],
            complexity="medium_high",
            days=21,
        ))

    client = CatalogClient("http://catalog.test", transport=httpx.MockTransport(handler))
    resp = await client.fetch(_request())
    await client.close()

    assert seen["path"] == "/checklist"
    assert seen["body"]["property_state"] == "RJ"
    assert seen["body"]["seller_type"] == "individual"
    assert resp.complexity == Complexity.MEDIUM_HIGH
    assert resp.estimated_days == 21
    req = resp.sections[ArtifactCategory.BUYERS].requirements[0]
    assert req.scope == RequirementScope.SPOUSE
    assert req.obligatory is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "handler,code",
    [
        (lambda request: httpx.Response(500, text="oops"), "http_500"),
        (lambda request: httpx.Response(200, text="not json"), "malformed"),
        (lambda request: httpx.Response(200, json={"complexity": "extreme"}), "malformed"),
    ],
)
async def test_fetch_failures_raise_catalog_unavailable(handler, code):
    """Test HTTP and parsing failures map to CatalogUnavailable."""
    client = CatalogClient("http://catalog.test", transport=httpx.MockTransport(handler))
    with pytest.raises(CatalogUnavailable) as exc:
        await client.fetch(_request())
    assert exc.value.code == code
    await client.close()


@pytest.mark.asyncio
async def test_fetch_timeout_and_transport_errors():
    """Test transport exceptions map to CatalogUnavailable."""
    def timeout(request):
        raise httpx.ReadTimeout("slow", request=request)

    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    for handler, code in ((timeout, "timeout"), (refused, "transport")):
        client = CatalogClient("http://catalog.test", transport=httpx.MockTransport(handler))
        with pytest.raises(CatalogUnavailable) as exc:
            await client.fetch(_request())
        assert exc.value.code == code
        await client.close()


@pytest.mark.asyncio
async def test_fetch_without_base_url():
    """Test an unconfigured client fails fast."""
    client = CatalogClient("")
    with pytest.raises(CatalogUnavailable) as exc:
        await client.fetch(_request())
    assert exc.value.code == "not_configured"
