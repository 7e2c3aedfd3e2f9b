"""
Tests for HttpDragonPassGateway against an httpx mock transport.
"""

import json

import httpx
import pytest

from cancellation.errors import ProviderFailure
from cancellation.repos.http.dragonpass import HttpDragonPassGateway

PAYLOAD = {"booking_id": "DP-1", "product_id": "product-1"}


def gateway_for(handler, api_key="secret-key") -> HttpDragonPassGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpDragonPassGateway(
        "https://dragonpass.test/", api_key=api_key, client=client
    )


class TestHttpDragonPassGateway:
    @pytest.mark.asyncio
    async def test_posts_payload_with_bearer_token(self) -> None:
        # Arrange
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"status": "success", "cancellation_id": "C-1"}
            )

        # Act
        body = await gateway_for(handler).cancel_booking(PAYLOAD)

        # Assert
        assert body == {"status": "success", "cancellation_id": "C-1"}
        assert seen["url"] == "https://dragonpass.test/api/v1/cancellations"
        assert seen["auth"] == "Bearer secret-key"
        assert seen["body"] == PAYLOAD

    @pytest.mark.asyncio
    async def test_no_authorization_header_without_key(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"status": "success"})

        await gateway_for(handler, api_key=None).cancel_booking(PAYLOAD)

        assert seen["auth"] is None

    @pytest.mark.asyncio
    async def test_error_status_raises_provider_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="maintenance")

        with pytest.raises(ProviderFailure) as exc_info:
            await gateway_for(handler).cancel_booking(PAYLOAD)

        assert str(exc_info.value) == "DragonPass API error: 503"
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_network_error_raises_provider_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderFailure, match="request failed"):
            await gateway_for(handler).cancel_booking(PAYLOAD)

    @pytest.mark.asyncio
    async def test_non_json_body_raises_provider_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>ok</html>")

        with pytest.raises(ProviderFailure, match="invalid JSON"):
            await gateway_for(handler).cancel_booking(PAYLOAD)

    @pytest.mark.asyncio
    async def test_non_object_body_raises_provider_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=["success"])

        with pytest.raises(ProviderFailure, match="unexpected body"):
            await gateway_for(handler).cancel_booking(PAYLOAD)
