"""Relay transport: hands the message to an intermediate webhook."""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from otp_gate.core.logging import mask_address
from otp_gate.delivery.gateway import DeliveryError

logger = logging.getLogger(__name__)


class RelayGateway:
    """Sends ``phone``/``code`` parameters to a relay endpoint.

    The relay forwards ``code`` (the full message text) to the chat identified
    by ``phone``. GET passes both as query parameters, POST as a form body.
    """

    def __init__(self, *, url: Optional[str], method: str = "GET", timeout: float = 5.0) -> None:
        method = method.upper()
        if method not in ("GET", "POST"):
            raise ValueError(f"Unsupported relay method '{method}'")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.url = url
        self.method = method
        self.timeout = timeout

    async def send(self, address: str, message: str) -> None:
        if not self.url:
            raise DeliveryError("Relay URL is not configured")
        params = {"phone": address, "code": message}
        logger.info("Sending code to %s via relay %s (%s)", mask_address(address), self.url, self.method)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                if self.method == "GET":
                    response = await client.get(self.url, params=params)
                else:
                    response = await client.post(self.url, data=params)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DeliveryError(f"Relay rejected message ({exc.response.status_code})") from exc
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Relay request failed: {exc}") from exc
