"""Auto-pay record models — the encrypted payment condition and its ledger views.

A record's payment amount lives on the ledger only as a ciphertext handle.
The cleartext becomes public exactly once, when someone submits a valid
decryption proof on-chain. After that the record is permanently VERIFIED.

Invariants enforced by these models:
- VERIFIED implies clear_amount is present and canonical
- UNVERIFIED records never carry a clear_amount
- local_clear_amount is a client-side preview with no ledger authority
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Optional


DEFAULT_DESCRIPTION = "Auto-Pay Condition"


class VerificationStatus(str, enum.Enum):
    """Verification state of an encrypted amount.

    State machine:
        UNVERIFIED → VERIFIED
    VERIFIED is terminal. There is no un-verify.
    """
    UNVERIFIED = "unverified"
    VERIFIED = "verified"


# Valid verification transitions
VERIFICATION_TRANSITIONS: Dict[VerificationStatus, frozenset] = {
    VerificationStatus.UNVERIFIED: frozenset({VerificationStatus.VERIFIED}),
    VerificationStatus.VERIFIED: frozenset(),
}


@dataclass(frozen=True)
class RawRecord:
    """A record exactly as the ledger contract returns it."""
    name: str
    creator: str
    timestamp: int
    public_value1: int
    public_value2: int = 0
    description: str = DEFAULT_DESCRIPTION
    is_verified: bool = False
    decrypted_value: int = 0


@dataclass(frozen=True)
class EncryptedInput:
    """Ciphertext plus the validity proof that binds it to a contract and sender."""
    ciphertext: bytes
    proof: bytes


@dataclass(frozen=True)
class DecryptionResult:
    """Cleartext values keyed by ciphertext handle."""
    clear_values: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class TxReceipt:
    """Outcome of a transaction that reached finality."""
    tx_hash: str
    block_number: int
    success: bool = True


@dataclass(frozen=True)
class AutoPayRecord:
    """An auto-pay condition as held in the client-side replica.

    Immutable: a refresh replaces records wholesale rather than patching
    them. Use with_local_preview() to derive a copy carrying a local
    decrypt result.
    """
    record_id: str
    name: str
    creator: str
    created_at: datetime
    public_condition: int
    ciphertext_handle: Optional[str] = None
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    clear_amount: Optional[int] = None
    local_clear_amount: Optional[int] = None
    public_value2: int = 0
    description: str = DEFAULT_DESCRIPTION

    def __post_init__(self) -> None:
        if self.verification_status == VerificationStatus.VERIFIED:
            if self.clear_amount is None:
                raise ValueError(
                    f"Record {self.record_id} is verified but has no clear_amount"
                )
        elif self.clear_amount is not None:
            raise ValueError(
                f"Record {self.record_id} is unverified but carries a clear_amount"
            )

    @property
    def is_verified(self) -> bool:
        return self.verification_status == VerificationStatus.VERIFIED

    @property
    def display_amount(self) -> Optional[int]:
        """The amount to show: canonical if verified, else the local preview."""
        if self.is_verified:
            return self.clear_amount
        return self.local_clear_amount

    def with_local_preview(self, amount: Optional[int]) -> AutoPayRecord:
        return replace(self, local_clear_amount=amount)

    @staticmethod
    def from_raw(
        record_id: str,
        raw: RawRecord,
        ciphertext_handle: Optional[str] = None,
    ) -> AutoPayRecord:
        """Build a record from the ledger's view of it."""
        if raw.is_verified:
            status = VerificationStatus.VERIFIED
            clear_amount: Optional[int] = int(raw.decrypted_value)
        else:
            status = VerificationStatus.UNVERIFIED
            clear_amount = None
        return AutoPayRecord(
            record_id=record_id,
            name=raw.name,
            creator=raw.creator,
            created_at=datetime.fromtimestamp(int(raw.timestamp), tz=timezone.utc),
            public_condition=int(raw.public_value1),
            ciphertext_handle=ciphertext_handle,
            verification_status=status,
            clear_amount=clear_amount,
            public_value2=int(raw.public_value2),
            description=raw.description,
        )
