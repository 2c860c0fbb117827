"""Code generation and validation strategies."""

from .models import Outcome, PendingCode, Principal, RejectReason

__all__ = [
    "Outcome",
    "PendingCode",
    "Principal",
    "RejectReason",
]
