"""Direct messaging API transport."""
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from otp_gate.core.logging import mask_address
from otp_gate.delivery.gateway import DeliveryError

logger = logging.getLogger(__name__)


class BotApiGateway:
    """POSTs ``{"chat_id", "text"}`` to a messaging API with a bearer token."""

    def __init__(self, *, url: str, token: Optional[str], timeout: float = 5.0) -> None:
        if not url:
            raise ValueError("Messaging API URL must be provided")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.url = url
        self.token = token
        self.timeout = timeout

    async def send(self, address: str, message: str) -> None:
        if not self.token:
            raise DeliveryError("Messaging API token is not configured")
        headers = {"Authorization": f"Bearer {self.token}"}
        payload = {"chat_id": address, "text": message}
        logger.info("Sending code to %s via messaging API %s", mask_address(address), self.url)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, headers=headers, json=payload)
                response.raise_for_status()
                body = self._parse_body(response)
        except httpx.HTTPStatusError as exc:
            raise DeliveryError(f"Messaging API rejected message ({exc.response.status_code})") from exc
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Messaging API request failed: {exc}") from exc

        # Bot APIs report logical failures with HTTP 200 and ok=false.
        if body.get("ok") is False:
            description = body.get("description") or "unknown error"
            raise DeliveryError(f"Messaging API refused message: {description}")

    @staticmethod
    def _parse_body(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
