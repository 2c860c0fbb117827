"""Out-of-band delivery transports."""

from .bot_api import BotApiGateway
from .gateway import DeliveryError, DeliveryGateway, compose_message
from .relay import RelayGateway

__all__ = [
    "BotApiGateway",
    "DeliveryError",
    "DeliveryGateway",
    "RelayGateway",
    "compose_message",
]
