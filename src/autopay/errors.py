"""Error taxonomy for the record lifecycle.

Collaborators raise these typed exceptions; the orchestrator turns them
into Error results. AlreadyVerified is the one failure the orchestrator
recovers from: a verification that lost the race to another party is
reported as a success after a refresh.
"""

from __future__ import annotations

from typing import Optional

from autopay.models.operation import ErrorKind


class AutoPayError(Exception):
    """Base class for all lifecycle failures."""

    kind: ErrorKind = ErrorKind.SUBMISSION_FAILED

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class NotConnected(AutoPayError):
    """No connected identity is available for the operation."""

    kind = ErrorKind.NOT_CONNECTED

    def __init__(self, message: str = "Please connect wallet first") -> None:
        super().__init__(message)


class InvalidInput(AutoPayError):
    """Operation preconditions were not met."""

    kind = ErrorKind.INVALID_INPUT


class EncryptionFailure(AutoPayError):
    """Encryption failed: value out of range or crypto context uninitialized."""

    kind = ErrorKind.ENCRYPTION_FAILURE


class SubmissionFailed(AutoPayError):
    """The ledger rejected or failed to finalize a transaction."""

    kind = ErrorKind.SUBMISSION_FAILED


class UserRejected(AutoPayError):
    """The signer declined to sign. Not retryable without a new request."""

    kind = ErrorKind.USER_REJECTED

    def __init__(self, message: str = "Transaction rejected by user") -> None:
        super().__init__(message)


class OracleFailure(AutoPayError):
    """Cleartext or decryption proof could not be obtained."""

    kind = ErrorKind.ORACLE_FAILURE


class AlreadyVerified(AutoPayError):
    """The ledger already holds a verified cleartext for this record."""

    kind = ErrorKind.ALREADY_VERIFIED

    def __init__(self, record_id: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Record {record_id} is already verified")
        self.record_id = record_id


class RecordNotFound(AutoPayError):
    """The ledger has no record with the requested id."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Record not found: {record_id}")
        self.record_id = record_id
