"""
httpx implementation of DragonPassGateway.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from cancellation.errors import ProviderFailure
from cancellation.repositories import DragonPassGateway

logger = logging.getLogger(__name__)

CANCELLATIONS_PATH = "/api/v1/cancellations"


class HttpDragonPassGateway(DragonPassGateway):
    """
    Calls the DragonPass cancellation endpoint.

    Pass an ``httpx.AsyncClient`` to share a connection pool (or a mock
    transport in tests); otherwise a client is created per call.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def cancel_booking(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{CANCELLATIONS_PATH}"
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        logger.debug(
            "Calling DragonPass cancellation API",
            extra={"url": url, "booking_id": payload.get("booking_id")},
        )
        try:
            if self._client is not None:
                response = await self._client.post(
                    url,
                    json=payload,
                    headers=headers,
                    timeout=self.timeout_seconds,
                )
            else:
                async with httpx.AsyncClient(
                    timeout=self.timeout_seconds
                ) as client:
                    response = await client.post(
                        url, json=payload, headers=headers
                    )
        except httpx.RequestError as e:
            logger.warning(
                "DragonPass request failed",
                extra={"url": url, "error": str(e)},
            )
            raise ProviderFailure(f"DragonPass request failed: {e}") from e

        if not response.is_success:
            logger.warning(
                "DragonPass returned an error status",
                extra={"url": url, "status_code": response.status_code},
            )
            raise ProviderFailure(
                f"DragonPass API error: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderFailure(
                "DragonPass returned an invalid JSON body",
                status_code=response.status_code,
            ) from e
        if not isinstance(body, dict):
            raise ProviderFailure(
                "DragonPass returned an unexpected body",
                status_code=response.status_code,
            )
        return body
