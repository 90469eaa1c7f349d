"""Collaborator contracts — the capabilities the lifecycle orchestrator drives.

The orchestrator never talks to a chain node, an encryption library, or
a decryption relayer directly. It talks to these Protocols. Swapping a
live web3 ledger for the in-process simulation (or a test double)
requires zero changes to orchestration logic.

All I/O-bound methods are coroutines: the orchestrator suspends only at
these calls, so concurrent operations interleave only here.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol, Sequence, runtime_checkable

from autopay.models.record import (
    DEFAULT_DESCRIPTION,
    DecryptionResult,
    EncryptedInput,
    RawRecord,
    TxReceipt,
)


@runtime_checkable
class PendingTx(Protocol):
    """A submitted transaction that has not necessarily reached finality."""

    @property
    def tx_hash(self) -> str:
        ...

    async def await_finality(self) -> TxReceipt:
        """Wait for one confirmation.

        Raises SubmissionFailed if the transaction reverts, or
        AlreadyVerified if a verification lost the race.
        """
        ...


@runtime_checkable
class LedgerReader(Protocol):
    """Read-only view over the auto-pay contract."""

    async def contract_address(self) -> str:
        ...

    async def get_all_record_ids(self) -> list[str]:
        ...

    async def get_record(self, record_id: str) -> RawRecord:
        """Raises RecordNotFound for an unknown id."""
        ...

    async def get_ciphertext_handle(self, record_id: str) -> str:
        ...


@runtime_checkable
class LedgerWriter(Protocol):
    """Signing view over the auto-pay contract."""

    async def create_record(
        self,
        record_id: str,
        name: str,
        ciphertext: bytes,
        proof: bytes,
        public_condition: int,
        public_value2: int = 0,
        description: str = DEFAULT_DESCRIPTION,
    ) -> PendingTx:
        ...

    async def submit_verification(
        self,
        record_id: str,
        clear_values_encoded: bytes,
        proof: bytes,
    ) -> PendingTx:
        ...


@runtime_checkable
class LedgerClient(LedgerReader, LedgerWriter, Protocol):
    """Combined read and signing views."""


@runtime_checkable
class EncryptionGateway(Protocol):
    """Local homomorphic encryption with input proofs."""

    @property
    def is_initialized(self) -> bool:
        ...

    async def initialize(self) -> None:
        """Load key material. Raises EncryptionFailure on failure."""
        ...

    async def encrypt(
        self,
        contract_address: str,
        requester: str,
        plaintext: int,
    ) -> EncryptedInput:
        """Raises EncryptionFailure if plaintext is out of range or uninitialized."""
        ...


# submit(clear_values_encoded, decryption_proof) -> PendingTx
SubmitCallback = Callable[[bytes, bytes], Awaitable[PendingTx]]


@runtime_checkable
class VerificationOracle(Protocol):
    """Two-phase decryption: cleartext plus proof off-ledger, proof on-ledger."""

    async def decrypt_and_verify(
        self,
        handles: Sequence[str],
        contract_address: str,
        submit: SubmitCallback,
    ) -> DecryptionResult:
        """Obtain cleartext and proof, invoke submit, await its finality.

        Raises OracleFailure on proof-service errors. Errors raised by
        submit (or by the returned transaction's finality) propagate.
        """
        ...

    async def decrypt(
        self,
        handles: Sequence[str],
        contract_address: str,
        requester: str,
    ) -> dict[str, int]:
        """Decrypt for the requester only. Nothing is submitted on-chain."""
        ...


@runtime_checkable
class IdentityProvider(Protocol):
    """Exposes the currently connected account, if any."""

    def current_identity(self) -> Optional[str]:
        ...
