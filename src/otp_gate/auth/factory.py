"""Build an authenticator from settings."""
from __future__ import annotations

import logging
import time
from typing import Optional

from otp_gate.auth.challenge import ChallengeAuthenticator
from otp_gate.config.settings import Settings
from otp_gate.delivery.bot_api import BotApiGateway
from otp_gate.delivery.gateway import DeliveryGateway
from otp_gate.delivery.relay import RelayGateway
from otp_gate.otp.strategies import Clock, OtpStrategy, RandomCodeStrategy, TotpStrategy
from otp_gate.storage.attributes import AttributeStore, InMemoryAttributeStore
from otp_gate.storage.challenge_store import ChallengeStore
from otp_gate.storage.sqlite_store import SqliteAttributeStore

logger = logging.getLogger(__name__)


def build_attribute_store(settings: Settings) -> AttributeStore:
    if settings.attribute_store == "sqlite":
        return SqliteAttributeStore(settings.sqlite_path, busy_timeout_ms=settings.sqlite_busy_timeout_ms)
    return InMemoryAttributeStore()


def build_gateway(settings: Settings) -> DeliveryGateway:
    if settings.delivery_transport == "bot_api":
        return BotApiGateway(
            url=settings.bot_api_url,
            token=settings.bot_api_token,
            timeout=settings.delivery_timeout_s,
        )
    if not settings.relay_url:
        logger.warning("Relay transport selected but no relay URL configured; deliveries will fail")
    return RelayGateway(
        url=settings.relay_url,
        method=settings.relay_method,
        timeout=settings.delivery_timeout_s,
    )


def build_strategy(settings: Settings, store: ChallengeStore, *, clock: Clock = time.time) -> OtpStrategy:
    if settings.strategy == "totp":
        return TotpStrategy(
            store,
            step_s=settings.totp_step_s,
            lookback_steps=settings.totp_lookback_steps,
            clock=clock,
        )
    return RandomCodeStrategy(
        store,
        validity_s=settings.otp_validity_s,
        clock_skew_s=settings.otp_clock_skew_s,
        clock=clock,
    )


def build_authenticator(
    settings: Settings,
    *,
    attributes: Optional[AttributeStore] = None,
    gateway: Optional[DeliveryGateway] = None,
    clock: Clock = time.time,
) -> ChallengeAuthenticator:
    """Wire strategy, store and transport as selected in ``settings``.

    Pass ``attributes`` explicitly for SQLite so the caller can initialise and close it.
    """
    store = ChallengeStore(attributes if attributes is not None else build_attribute_store(settings))
    strategy = build_strategy(settings, store, clock=clock)
    logger.info(
        "OTP step using %s strategy with delivery %s",
        strategy.name,
        settings.delivery_summary(),
    )
    return ChallengeAuthenticator(
        strategy,
        gateway if gateway is not None else build_gateway(settings),
        default_client_id=settings.default_client_id,
    )
