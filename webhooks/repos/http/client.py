"""
httpx implementation of WebhookClient.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from cancellation.errors import ProviderFailure
from webhooks.domain import DeliveryResponse
from webhooks.repositories import WebhookClient

logger = logging.getLogger(__name__)

MAX_RESPONSE_BODY_CHARS = 1000


class HttpxWebhookClient(WebhookClient):
    """
    Posts deliveries with a shared ``httpx.AsyncClient``.

    Redirects are not followed: a 3xx counts as a failed delivery.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client or httpx.AsyncClient(follow_redirects=False)

    async def post(
        self,
        url: str,
        body: Dict[str, Any],
        headers: Dict[str, str],
        timeout_seconds: float,
    ) -> DeliveryResponse:
        try:
            response = await self._client.post(
                url, json=body, headers=headers, timeout=timeout_seconds
            )
        except httpx.TimeoutException as e:
            raise ProviderFailure(
                f"Request timeout after {int(timeout_seconds * 1000)}ms"
            ) from e
        except httpx.RequestError as e:
            logger.debug(
                "Webhook request error",
                extra={"url": url, "error": str(e)},
            )
            raise ProviderFailure(f"Request failed: {e}") from e

        return DeliveryResponse(
            status_code=response.status_code,
            body=response.text[:MAX_RESPONSE_BODY_CHARS],
        )

    async def aclose(self) -> None:
        await self._client.aclose()
