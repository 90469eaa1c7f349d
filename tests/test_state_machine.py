"""Tests for the verification state machine — proves transitions are fail-closed."""

from datetime import datetime, timezone

from autopay.engine.state_machine import VerificationPath, VerificationStateMachine
from autopay.models.record import AutoPayRecord, RawRecord, VerificationStatus


def _record(
    verified: bool = False,
    amount: int = 0,
    handle: str = "0xh1",
    creator: str = "0xAAA",
) -> AutoPayRecord:
    raw = RawRecord(
        name="rent", creator=creator, timestamp=0, public_value1=5,
        is_verified=verified, decrypted_value=amount,
    )
    return AutoPayRecord.from_raw("autopay-1", raw, handle)


class TestVerificationPath:
    def test_verified_short_circuits(self) -> None:
        raw = RawRecord(name="a", creator="b", timestamp=0, public_value1=0, is_verified=True)
        assert VerificationStateMachine.path_for(raw) == VerificationPath.SHORT_CIRCUIT

    def test_unverified_runs_two_phase(self) -> None:
        raw = RawRecord(name="a", creator="b", timestamp=0, public_value1=0)
        assert VerificationStateMachine.path_for(raw) == VerificationPath.TWO_PHASE


class TestTransitions:
    def test_unverified_to_verified_allowed(self) -> None:
        assert VerificationStateMachine.validate_transition(
            VerificationStatus.UNVERIFIED, VerificationStatus.VERIFIED,
        ) == []

    def test_staying_put_allowed(self) -> None:
        assert VerificationStateMachine.validate_transition(
            VerificationStatus.VERIFIED, VerificationStatus.VERIFIED,
        ) == []

    def test_unverify_rejected(self) -> None:
        errors = VerificationStateMachine.validate_transition(
            VerificationStatus.VERIFIED, VerificationStatus.UNVERIFIED,
        )
        assert len(errors) == 1
        assert "Illegal transition" in errors[0]


class TestObservedChanges:
    def test_first_sighting_is_fine(self) -> None:
        assert VerificationStateMachine.validate_observed(None, _record()) == []

    def test_verification_is_fine(self) -> None:
        assert VerificationStateMachine.validate_observed(
            _record(), _record(verified=True, amount=42),
        ) == []

    def test_handle_change_flagged(self) -> None:
        errors = VerificationStateMachine.validate_observed(
            _record(handle="0xh1"), _record(handle="0xh2"),
        )
        assert any("ciphertext handle" in e for e in errors)

    def test_creator_change_flagged(self) -> None:
        errors = VerificationStateMachine.validate_observed(
            _record(creator="0xAAA"), _record(creator="0xBBB"),
        )
        assert any("creator" in e for e in errors)

    def test_clear_amount_change_flagged(self) -> None:
        errors = VerificationStateMachine.validate_observed(
            _record(verified=True, amount=42), _record(verified=True, amount=43),
        )
        assert any("clear amount" in e for e in errors)

    def test_unverify_flagged(self) -> None:
        errors = VerificationStateMachine.validate_observed(
            _record(verified=True, amount=42), _record(),
        )
        assert errors
