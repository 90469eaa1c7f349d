"""Core data models for confidential auto-pay records."""

from autopay.models.record import (
    DEFAULT_DESCRIPTION,
    AutoPayRecord,
    DecryptionResult,
    EncryptedInput,
    RawRecord,
    TxReceipt,
    VerificationStatus,
)
from autopay.models.operation import (
    ErrorKind,
    OperationPhase,
    OperationResult,
    OperationStatus,
)

__all__ = [
    "DEFAULT_DESCRIPTION",
    "AutoPayRecord",
    "DecryptionResult",
    "EncryptedInput",
    "RawRecord",
    "TxReceipt",
    "VerificationStatus",
    "ErrorKind",
    "OperationPhase",
    "OperationResult",
    "OperationStatus",
]
