"""Challenge orchestration exposed to the authentication flow."""

from .challenge import ChallengeAuthenticator
from .factory import build_authenticator
from .results import ChallengeResult, ChallengeState, ChallengeStatus, ErrorKind

__all__ = [
    "ChallengeAuthenticator",
    "ChallengeResult",
    "ChallengeState",
    "ChallengeStatus",
    "ErrorKind",
    "build_authenticator",
]
