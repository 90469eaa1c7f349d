"""Operation outcome models — the tagged Pending/Success/Error variant.

Every orchestrator operation returns an OperationResult and publishes
matching OperationStatus values on the status channel. Rendering
concerns (toasts, timers, busy spinners) live entirely with observers.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional


class OperationPhase(str, enum.Enum):
    """Phase of a long-running operation."""
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class ErrorKind(str, enum.Enum):
    """Classification of operation failures."""
    NOT_CONNECTED = "not_connected"
    INVALID_INPUT = "invalid_input"
    ENCRYPTION_FAILURE = "encryption_failure"
    SUBMISSION_FAILED = "submission_failed"
    USER_REJECTED = "user_rejected"
    ORACLE_FAILURE = "oracle_failure"
    ALREADY_VERIFIED = "already_verified"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class OperationStatus:
    """A single status notification."""
    phase: OperationPhase
    message: str
    operation: str = ""
    record_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase != OperationPhase.PENDING


@dataclass(frozen=True)
class OperationResult:
    """Result of an orchestrator operation.

    phase is SUCCESS or ERROR. On SUCCESS, value holds the operation's
    payload (a record, an amount, a record list, or None). On ERROR,
    error names the failure kind. already_verified marks a verification
    that lost the race to another party and was recovered.
    """
    phase: OperationPhase
    message: str
    value: Any = None
    error: Optional[ErrorKind] = None
    already_verified: bool = False

    @property
    def success(self) -> bool:
        return self.phase == OperationPhase.SUCCESS

    @staticmethod
    def ok(
        message: str,
        value: Any = None,
        already_verified: bool = False,
    ) -> OperationResult:
        return OperationResult(
            phase=OperationPhase.SUCCESS,
            message=message,
            value=value,
            already_verified=already_verified,
        )

    @staticmethod
    def failed(error: ErrorKind, message: str) -> OperationResult:
        return OperationResult(
            phase=OperationPhase.ERROR,
            message=message,
            error=error,
        )

    def to_status(
        self,
        operation: str = "",
        record_id: Optional[str] = None,
    ) -> OperationStatus:
        return OperationStatus(
            phase=self.phase,
            message=self.message,
            operation=operation,
            record_id=record_id,
        )
