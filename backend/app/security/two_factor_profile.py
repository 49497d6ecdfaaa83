from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional


class TwoFactorStatus(str, enum.Enum):
    DISABLED = "disabled"
    PENDING = "pending"
    CONFIRMED = "confirmed"


@dataclass(frozen=True)
class TwoFactorProfile:
    """
    Decrypted two-factor fields of one account. Only ever held in memory.

    A confirmed profile always has a secret. Its recovery codes start
    non-empty and only shrink through consumption; an exhausted list stays
    empty until the account regenerates codes.
    """

    account_id: int
    secret: Optional[bytes] = None
    recovery_codes: tuple[str, ...] = field(default_factory=tuple)
    confirmed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.confirmed_at is not None and self.secret is None:
            raise ValueError("A confirmed profile needs a secret")
        if len(set(self.recovery_codes)) != len(self.recovery_codes):
            raise ValueError("Recovery codes must be unique")

    @property
    def status(self) -> TwoFactorStatus:
        if self.secret is None:
            return TwoFactorStatus.DISABLED
        if self.confirmed_at is None:
            return TwoFactorStatus.PENDING
        return TwoFactorStatus.CONFIRMED

    def with_changes(self, **changes) -> "TwoFactorProfile":
        if "recovery_codes" in changes:
            changes["recovery_codes"] = tuple(changes["recovery_codes"])
        return replace(self, **changes)
