"""Delivery gateway contract shared by the transports."""
from __future__ import annotations

from typing import Optional, Protocol

DEFAULT_CLIENT_ID = "Keycloak"
MESSAGE_TEMPLATE = "Your OTP code for {client_id} is: {code}"


class DeliveryError(RuntimeError):
    """The code could not be handed to the out-of-band channel."""


class DeliveryGateway(Protocol):
    async def send(self, address: str, message: str) -> None:
        """Deliver ``message`` to ``address`` or raise :class:`DeliveryError`."""
        ...


def compose_message(code: str, client_id: Optional[str], *, default_client_id: str = DEFAULT_CLIENT_ID) -> str:
    client = (client_id or "").strip() or default_client_id
    return MESSAGE_TEMPLATE.format(client_id=client, code=code)
