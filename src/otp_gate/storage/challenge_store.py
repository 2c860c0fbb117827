"""Typed access to the challenge fields kept on a principal."""
from __future__ import annotations

from typing import Optional

from otp_gate.otp.codes import is_well_formed
from otp_gate.otp.models import PendingCode
from otp_gate.storage.attributes import AttributeStore

CODE_KEY = "otp_code"
ISSUED_AT_KEY = "otp_issued_at"
SECRET_KEY = "totp_secret"


class CorruptChallengeState(RuntimeError):
    """Stored challenge fields exist but cannot be interpreted."""


class ChallengeStore:
    """Reads and writes :class:`PendingCode` and TOTP secrets through an attribute store.

    The code and its timestamp are always written and cleared together.
    """

    def __init__(self, attributes: AttributeStore) -> None:
        self.attributes = attributes

    async def load_pending(self, principal_id: str) -> Optional[PendingCode]:
        stored = await self.attributes.get_attributes(principal_id, (CODE_KEY, ISSUED_AT_KEY))
        code = stored.get(CODE_KEY)
        issued_at_raw = stored.get(ISSUED_AT_KEY)
        if code is None and issued_at_raw is None:
            return None
        if code is None or issued_at_raw is None:
            raise CorruptChallengeState(f"Incomplete pending code for principal {principal_id}")
        if not is_well_formed(code):
            raise CorruptChallengeState(f"Stored code for principal {principal_id} is not six digits")
        try:
            issued_at = int(issued_at_raw)
        except ValueError as exc:
            raise CorruptChallengeState(
                f"Unparseable issue timestamp for principal {principal_id}: {issued_at_raw!r}"
            ) from exc
        return PendingCode(code=code, issued_at=issued_at)

    async def save_pending(self, principal_id: str, pending: PendingCode) -> None:
        await self.attributes.set_attributes(
            principal_id,
            {CODE_KEY: pending.code, ISSUED_AT_KEY: str(pending.issued_at)},
        )

    async def clear_pending(self, principal_id: str) -> None:
        await self.attributes.remove_attributes(principal_id, (CODE_KEY, ISSUED_AT_KEY))

    async def consume_pending(self, principal_id: str, pending: PendingCode) -> bool:
        """Clear ``pending`` if it is still the stored code; False when it was replaced or already used."""
        return await self.attributes.remove_attributes_if(
            principal_id,
            {CODE_KEY: pending.code, ISSUED_AT_KEY: str(pending.issued_at)},
        )

    async def load_secret(self, principal_id: str) -> Optional[str]:
        secret = await self.attributes.get_attribute(principal_id, SECRET_KEY)
        return secret or None

    async def save_secret(self, principal_id: str, secret: str) -> None:
        await self.attributes.set_attribute(principal_id, SECRET_KEY, secret)
