"""Interchangeable code strategies: random code with expiry, and TOTP."""
from __future__ import annotations

import hmac
import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from otp_gate.otp.codes import (
    derive_code,
    generate_random_code,
    is_well_formed,
    provision_secret,
    time_counter,
)
from otp_gate.otp.models import Outcome, PendingCode, Principal, RejectReason
from otp_gate.storage.challenge_store import ChallengeStore, CorruptChallengeState

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True, slots=True)
class IssuedCode:
    """A code ready for delivery; not yet binding until committed."""

    code: str
    issued_at: int


class OtpStrategy(Protocol):
    name: str

    async def issue(self, principal: Principal) -> IssuedCode:
        """Produce the code to deliver for ``principal``."""
        ...

    async def commit(self, principal: Principal, issued: IssuedCode) -> None:
        """Make ``issued`` the code that :meth:`validate` accepts. Called after delivery succeeded."""
        ...

    async def validate(self, principal: Principal, submitted: object) -> Outcome:
        ...


class RandomCodeStrategy:
    """Single-use random codes that expire ``validity_s`` seconds after issue.

    An issue time up to ``clock_skew_s`` seconds ahead of the clock counts as
    age zero, so a small backwards clock step does not void a fresh code.
    Anything further ahead is treated as corrupt state.
    """

    name = "random"

    def __init__(
        self,
        store: ChallengeStore,
        *,
        validity_s: int = 120,
        clock_skew_s: int = 5,
        clock: Clock = time.time,
    ) -> None:
        if validity_s <= 0:
            raise ValueError("validity_s must be positive")
        if clock_skew_s < 0:
            raise ValueError("clock_skew_s must not be negative")
        self.store = store
        self.validity_s = validity_s
        self.clock_skew_s = clock_skew_s
        self.clock = clock

    async def issue(self, principal: Principal) -> IssuedCode:
        return IssuedCode(code=generate_random_code(), issued_at=int(self.clock()))

    async def commit(self, principal: Principal, issued: IssuedCode) -> None:
        # Replaces any earlier pending code for the principal.
        await self.store.save_pending(principal.id, PendingCode(code=issued.code, issued_at=issued.issued_at))
        logger.debug("Stored pending code for principal %s", principal.id)

    async def validate(self, principal: Principal, submitted: object) -> Outcome:
        if not is_well_formed(submitted):
            return Outcome.reject(RejectReason.MALFORMED_INPUT)
        try:
            pending = await self.store.load_pending(principal.id)
        except CorruptChallengeState as exc:
            logger.error("Rejecting code for principal %s: %s", principal.id, exc)
            return Outcome.reject(RejectReason.CORRUPT_STATE)
        if pending is None:
            return Outcome.reject(RejectReason.NO_PENDING_CHALLENGE)
        if not hmac.compare_digest(pending.code, submitted):  # type: ignore[arg-type]
            return Outcome.reject(RejectReason.MISMATCH)

        age = pending.age(self.clock())
        if age < -self.clock_skew_s:
            logger.error(
                "Rejecting code for principal %s: issue time %s lies in the future",
                principal.id,
                pending.issued_at,
            )
            return Outcome.reject(RejectReason.CORRUPT_STATE)
        age = max(age, 0)
        if age > self.validity_s:
            logger.info("Code for principal %s expired (age %ss, limit %ss)", principal.id, age, self.validity_s)
            return Outcome.reject(RejectReason.EXPIRED)

        if not await self.store.consume_pending(principal.id, pending):
            logger.warning("Code for principal %s was replaced or used while being checked", principal.id)
            return Outcome.reject(RejectReason.MISMATCH)
        logger.info("Code accepted for principal %s (age %ss)", principal.id, age)
        return Outcome.accept()


class TotpStrategy:
    """RFC 6238 codes derived from a durable per-principal secret.

    Verification is stateless: an accepted code stays acceptable until its
    step leaves the window, so a replay within that window succeeds. The
    window covers the current step and ``lookback_steps`` earlier steps,
    never later ones.
    """

    name = "totp"

    def __init__(
        self,
        store: ChallengeStore,
        *,
        step_s: int = 30,
        lookback_steps: int = 1,
        clock: Clock = time.time,
    ) -> None:
        if step_s <= 0:
            raise ValueError("step_s must be positive")
        if lookback_steps < 0:
            raise ValueError("lookback_steps must not be negative")
        self.store = store
        self.step_s = step_s
        self.lookback_steps = lookback_steps
        self.clock = clock

    async def ensure_secret(self, principal: Principal) -> str:
        secret = await self.store.load_secret(principal.id)
        if secret:
            return secret
        secret = provision_secret()
        await self.store.save_secret(principal.id, secret)
        logger.info("Provisioned TOTP secret for principal %s", principal.id)
        return secret

    async def issue(self, principal: Principal) -> IssuedCode:
        secret = await self.ensure_secret(principal)
        now = int(self.clock())
        try:
            code = derive_code(secret, time_counter(now, self.step_s))
        except ValueError as exc:
            raise CorruptChallengeState(f"Stored TOTP secret for principal {principal.id} is invalid") from exc
        return IssuedCode(code=code, issued_at=now)

    async def commit(self, principal: Principal, issued: IssuedCode) -> None:
        return None

    async def validate(self, principal: Principal, submitted: object) -> Outcome:
        if not is_well_formed(submitted):
            return Outcome.reject(RejectReason.MALFORMED_INPUT)
        secret = await self.store.load_secret(principal.id)
        if not secret:
            return Outcome.reject(RejectReason.NO_SECRET)

        counter = time_counter(self.clock(), self.step_s)
        try:
            for offset in range(self.lookback_steps + 1):
                if counter - offset < 0:
                    break
                expected = derive_code(secret, counter - offset)
                if hmac.compare_digest(expected, submitted):  # type: ignore[arg-type]
                    logger.info("TOTP accepted for principal %s (steps back: %s)", principal.id, offset)
                    return Outcome.accept()
        except ValueError as exc:
            logger.error("Rejecting TOTP for principal %s: stored secret unusable (%s)", principal.id, exc)
            return Outcome.reject(RejectReason.CORRUPT_STATE)
        return Outcome.reject(RejectReason.MISMATCH)
