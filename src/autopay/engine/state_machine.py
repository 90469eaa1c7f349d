"""Verification state machine — decides the protocol path for a record.

UNVERIFIED → VERIFIED is the only legal transition. The decision is
always made against the ledger's current view of a record, never the
local replica.

Fail-closed: any observed change other than the legal transition is
reported as an error.
"""

from __future__ import annotations

import enum
from typing import Optional

from autopay.models.record import (
    VERIFICATION_TRANSITIONS,
    AutoPayRecord,
    RawRecord,
    VerificationStatus,
)


class VerificationPath(str, enum.Enum):
    """How verify_record proceeds for a record."""
    SHORT_CIRCUIT = "short_circuit"
    TWO_PHASE = "two_phase"


class VerificationStateMachine:
    """Pure computation over verification states. No I/O."""

    @staticmethod
    def path_for(raw: RawRecord) -> VerificationPath:
        """VERIFIED short-circuits; UNVERIFIED runs the two-phase protocol."""
        if raw.is_verified:
            return VerificationPath.SHORT_CIRCUIT
        return VerificationPath.TWO_PHASE

    @staticmethod
    def validate_transition(
        current: VerificationStatus,
        target: VerificationStatus,
    ) -> list[str]:
        """Check a transition. Returns errors (empty = OK). Staying put is OK."""
        if current == target:
            return []
        if target not in VERIFICATION_TRANSITIONS.get(current, frozenset()):
            return [f"Illegal transition: {current.value} → {target.value}"]
        return []

    @classmethod
    def validate_observed(
        cls,
        previous: Optional[AutoPayRecord],
        observed: AutoPayRecord,
    ) -> list[str]:
        """Compare a freshly read record against its previous replica.

        Checks ciphertext immutability, the transition rules, and that
        a canonical clear_amount never changes once set.
        """
        if previous is None:
            return []
        errors = cls.validate_transition(
            previous.verification_status, observed.verification_status,
        )
        rid = observed.record_id
        if (
            previous.ciphertext_handle is not None
            and observed.ciphertext_handle != previous.ciphertext_handle
        ):
            errors.append(f"{rid}: ciphertext handle changed")
        if previous.creator != observed.creator:
            errors.append(f"{rid}: creator changed")
        if previous.is_verified and observed.clear_amount != previous.clear_amount:
            errors.append(
                f"{rid}: clear amount changed from {previous.clear_amount} "
                f"to {observed.clear_amount}"
            )
        return errors
