"""Challenge entry, resend and submission handling for the OTP step."""
from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Any, Mapping, Optional

from otp_gate.auth.results import ChallengeResult, RESENT_MESSAGE
from otp_gate.core.logging import mask_address
from otp_gate.delivery.gateway import DEFAULT_CLIENT_ID, DeliveryError, DeliveryGateway, compose_message
from otp_gate.otp.models import Principal
from otp_gate.otp.strategies import OtpStrategy
from otp_gate.storage.challenge_store import CorruptChallengeState

logger = logging.getLogger(__name__)

RESEND_FIELD = "resend"
OTP_FIELD = "otp"
CLIENT_ID_FIELD = "client_id"


def _first_value(value: Any) -> Any:
    # Form decoders may hand over every submitted value for a key.
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


class ChallengeAuthenticator:
    """Drives a principal through Idle -> Challenged -> Verified/Failed/Expired.

    Calls for the same principal are serialised in-process, so a resend
    cannot interleave with a submission. Delivery happens before a new code
    is committed: a failed resend leaves the previous code usable.
    """

    def __init__(
        self,
        strategy: OtpStrategy,
        gateway: DeliveryGateway,
        *,
        default_client_id: str = DEFAULT_CLIENT_ID,
    ) -> None:
        self.strategy = strategy
        self.gateway = gateway
        self.default_client_id = default_client_id
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def configured_for(self, principal: Principal) -> bool:
        return principal.has_delivery_address()

    def _lock_for(self, principal: Principal) -> asyncio.Lock:
        lock = self._locks.get(principal.id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[principal.id] = lock
        return lock

    async def on_challenge_entry(self, principal: Principal, client_id: Optional[str] = None) -> ChallengeResult:
        if not self.configured_for(principal):
            logger.info("Principal %s has no delivery address; skipping OTP step", principal.id)
            return ChallengeResult.skipped()

        lock = self._lock_for(principal)
        async with lock:
            try:
                await self._issue_and_deliver(principal, client_id)
            except (DeliveryError, CorruptChallengeState) as exc:
                logger.error("Could not deliver code to principal %s: %s", principal.id, exc)
                return ChallengeResult.fatal()
        return ChallengeResult.challenge()

    async def on_submit(self, principal: Principal, form_fields: Mapping[str, Any]) -> ChallengeResult:
        if not self.configured_for(principal):
            logger.info("Principal %s has no delivery address; ignoring OTP form", principal.id)
            return ChallengeResult.skipped()
        client_id = _first_value(form_fields.get(CLIENT_ID_FIELD))
        lock = self._lock_for(principal)
        async with lock:
            if RESEND_FIELD in form_fields:
                return await self._resend(principal, client_id)
            return await self._verify(principal, _first_value(form_fields.get(OTP_FIELD)))

    async def _resend(self, principal: Principal, client_id: Optional[str]) -> ChallengeResult:
        logger.info("Resend requested by principal %s", principal.id)
        try:
            await self._issue_and_deliver(principal, client_id)
        except (DeliveryError, CorruptChallengeState) as exc:
            logger.error("Could not resend code to principal %s: %s", principal.id, exc)
            return ChallengeResult.resend_failed()
        return ChallengeResult.challenge(RESENT_MESSAGE)

    async def _verify(self, principal: Principal, submitted: Any) -> ChallengeResult:
        outcome = await self.strategy.validate(principal, submitted)
        if outcome.accepted:
            return ChallengeResult.verified()
        logger.warning("Code rejected for principal %s (%s)", principal.id, outcome.reason.value)
        if outcome.expired:
            return ChallengeResult.expired()
        return ChallengeResult.invalid()

    async def _issue_and_deliver(self, principal: Principal, client_id: Optional[str]) -> None:
        if not self.configured_for(principal):
            raise DeliveryError(f"Principal {principal.id} has no delivery address")
        issued = await self.strategy.issue(principal)
        message = compose_message(issued.code, client_id, default_client_id=self.default_client_id)
        await self.gateway.send(principal.delivery_address, message)
        await self.strategy.commit(principal, issued)
        logger.info(
            "Delivered %s code to principal %s at %s",
            self.strategy.name,
            principal.id,
            mask_address(principal.delivery_address),
        )
