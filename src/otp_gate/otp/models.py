"""Typed records for challenge state and validation outcomes."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


@dataclass(frozen=True, slots=True)
class Principal:
    """User identity as seen by the challenge step."""

    id: str
    delivery_address: Optional[str] = None

    def has_delivery_address(self) -> bool:
        return bool(self.delivery_address and self.delivery_address.strip())


@dataclass(frozen=True, slots=True)
class PendingCode:
    """A random code awaiting submission, stamped with its issue time (epoch seconds)."""

    code: str
    issued_at: int

    def age(self, now: float) -> int:
        return int(now) - self.issued_at


class RejectReason(str, Enum):
    MALFORMED_INPUT = "malformed_input"
    NO_PENDING_CHALLENGE = "no_pending_challenge"
    MISMATCH = "mismatch"
    EXPIRED = "expired"
    NO_SECRET = "no_secret"
    CORRUPT_STATE = "corrupt_state"


@dataclass(frozen=True, slots=True)
class Outcome:
    """Result of validating a submitted code."""

    accepted: bool
    reason: Optional[RejectReason] = None

    @classmethod
    def accept(cls) -> "Outcome":
        return cls(accepted=True)

    @classmethod
    def reject(cls, reason: RejectReason) -> "Outcome":
        return cls(accepted=False, reason=reason)

    @property
    def expired(self) -> bool:
        return self.reason is RejectReason.EXPIRED
