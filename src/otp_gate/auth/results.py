"""Results handed back to the authentication flow."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

INVALID_CODE_MESSAGE = "Invalid code"
EXPIRED_CODE_MESSAGE = "Code expired, request a new one"
SEND_FAILED_MESSAGE = "Failed to send the code"
RESEND_FAILED_MESSAGE = "Failed to resend the code"
RESENT_MESSAGE = "Code sent again"


class ChallengeStatus(str, Enum):
    SUCCESS = "success"
    CHALLENGE = "challenge"
    RETRY = "retry"
    FATAL = "fatal"


class ChallengeState(str, Enum):
    IDLE = "idle"
    CHALLENGED = "challenged"
    VERIFIED = "verified"
    FAILED = "failed"
    EXPIRED = "expired"


class ErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    EXPIRED_CODE = "expired_code"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True, slots=True)
class ChallengeResult:
    """What the flow should do next, plus the message to render (if any)."""

    status: ChallengeStatus
    state: ChallengeState
    message: Optional[str] = None
    error: Optional[ErrorKind] = None

    @property
    def counts_as_failure(self) -> bool:
        """True when the result should count against credential retry limits."""
        return self.error in (ErrorKind.INVALID_CREDENTIALS, ErrorKind.EXPIRED_CODE)

    @classmethod
    def skipped(cls) -> "ChallengeResult":
        return cls(status=ChallengeStatus.SUCCESS, state=ChallengeState.IDLE)

    @classmethod
    def verified(cls) -> "ChallengeResult":
        return cls(status=ChallengeStatus.SUCCESS, state=ChallengeState.VERIFIED)

    @classmethod
    def challenge(cls, message: Optional[str] = None) -> "ChallengeResult":
        return cls(status=ChallengeStatus.CHALLENGE, state=ChallengeState.CHALLENGED, message=message)

    @classmethod
    def invalid(cls) -> "ChallengeResult":
        return cls(
            status=ChallengeStatus.RETRY,
            state=ChallengeState.FAILED,
            message=INVALID_CODE_MESSAGE,
            error=ErrorKind.INVALID_CREDENTIALS,
        )

    @classmethod
    def expired(cls) -> "ChallengeResult":
        return cls(
            status=ChallengeStatus.RETRY,
            state=ChallengeState.EXPIRED,
            message=EXPIRED_CODE_MESSAGE,
            error=ErrorKind.EXPIRED_CODE,
        )

    @classmethod
    def resend_failed(cls) -> "ChallengeResult":
        return cls(
            status=ChallengeStatus.RETRY,
            state=ChallengeState.CHALLENGED,
            message=RESEND_FAILED_MESSAGE,
            error=ErrorKind.INTERNAL_ERROR,
        )

    @classmethod
    def fatal(cls, message: str = SEND_FAILED_MESSAGE) -> "ChallengeResult":
        return cls(
            status=ChallengeStatus.FATAL,
            state=ChallengeState.FAILED,
            message=message,
            error=ErrorKind.INTERNAL_ERROR,
        )
