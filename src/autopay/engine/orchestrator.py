"""Lifecycle orchestrator — creation and two-phase verification of records.

The orchestrator is a coordination layer. It owns no cryptography and no
ledger state: it calls the encryption gateway, the ledger client and the
verification oracle in a fixed protocol order, refreshes the record
store, and reports through the status channel.

Creation protocol (strict order):
    1. Resolve the contract identity (read-only).
    2. Encrypt the amount with an input proof.
    3. Submit the signed creation transaction.
    4. Await finality (one confirmation).
    5. Full refresh of the record store.

Verification protocol (UNVERIFIED records, state read fresh from ledger):
    1. Read the ciphertext handle.
    2. Oracle: cleartext + proof → submit callback → finality.
    3. Take clear_values[handle] as the authoritative amount.
    4. Full refresh of the record store.

Any failure aborts the remaining steps. Nothing is written to the store
except by a full refresh. Nothing is retried. The single recovered
failure is AlreadyVerified: another party won the verification race,
so the caller refreshes and gets a success with no value.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Callable, Optional

from autopay.config import AutoPayConfig
from autopay.engine.state_machine import VerificationPath, VerificationStateMachine
from autopay.errors import (
    AlreadyVerified,
    AutoPayError,
    EncryptionFailure,
    InvalidInput,
    NotConnected,
    OracleFailure,
    SubmissionFailed,
)
from autopay.interfaces import (
    EncryptionGateway,
    IdentityProvider,
    LedgerClient,
    PendingTx,
    VerificationOracle,
)
from autopay.models.operation import ErrorKind, OperationResult
from autopay.models.record import AutoPayRecord
from autopay.status import OperationReporter, StatusChannel
from autopay.store import RecordStore

logger = logging.getLogger(__name__)


def new_record_id() -> str:
    return f"autopay-{uuid.uuid4().hex}"


class LifecycleOrchestrator:
    """Drives record creation and verification against the collaborators.

    Usage:
        orch = LifecycleOrchestrator(ledger, encryption, oracle, identity=provider)
        await orch.initialize()
        result = await orch.create_record("rent", 100, 5)
        result = await orch.verify_record(result.value.record_id)
        result.value  # 100
    """

    def __init__(
        self,
        ledger: LedgerClient,
        encryption: EncryptionGateway,
        oracle: VerificationOracle,
        store: Optional[RecordStore] = None,
        status: Optional[StatusChannel] = None,
        identity: Optional[IdentityProvider] = None,
        config: Optional[AutoPayConfig] = None,
        id_factory: Callable[[], str] = new_record_id,
    ) -> None:
        self._ledger = ledger
        self._encryption = encryption
        self._oracle = oracle
        self._store = store if store is not None else RecordStore(ledger)
        self._status = status if status is not None else StatusChannel()
        self._identity = identity
        self._config = config if config is not None else AutoPayConfig()
        self._id_factory = id_factory
        self._contract_address: Optional[str] = None
        self._init_lock: Optional[asyncio.Lock] = None

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def status(self) -> StatusChannel:
        return self._status

    async def contract_identity(self) -> str:
        """Resolve (and cache) the target contract address."""
        if self._contract_address is None:
            self._contract_address = await self._ledger.contract_address()
        return self._contract_address

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    async def initialize(self, identity: Optional[str] = None) -> OperationResult:
        """Initialize the encryption context once an identity is connected.

        Concurrent calls initialize the gateway only once.
        """
        reporter = OperationReporter(self._status, "initialize")
        try:
            self._resolve_identity(identity)
        except AutoPayError as exc:
            return self._fail(reporter, exc)
        if self._encryption.is_initialized:
            return self._succeed(reporter, "Encryption context ready")

        reporter.pending("Initializing FHE encryption context...")
        try:
            await self._ensure_initialized()
        except AutoPayError as exc:
            return self._fail(reporter, exc, prefix="FHE initialization failed: ")
        return self._succeed(reporter, "Encryption context ready")

    async def _ensure_initialized(self) -> None:
        if self._encryption.is_initialized:
            return
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        async with self._init_lock:
            if self._encryption.is_initialized:
                return
            logger.info("Initializing encryption context")
            try:
                await self._encryption.initialize()
            except AutoPayError:
                raise
            except Exception as exc:
                raise EncryptionFailure(str(exc)) from exc

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self) -> OperationResult:
        """Re-enumerate records from the ledger into the store."""
        reporter = OperationReporter(self._status, "refresh")
        reporter.pending("Loading records...")
        try:
            records = await self._store.refresh()
        except Exception as exc:
            logger.exception("Record refresh failed")
            return self._finish(reporter, OperationResult.failed(
                getattr(exc, "kind", ErrorKind.SUBMISSION_FAILED),
                f"Failed to load data: {exc}",
            ))
        return self._succeed(reporter, f"Loaded {len(records)} records", value=records)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_record(
        self,
        name: str,
        plaintext_amount: int,
        public_condition: int,
        creator: Optional[str] = None,
    ) -> OperationResult:
        """Encrypt an amount and register a new record on the ledger.

        Returns a SUCCESS result whose value is the new AutoPayRecord as
        read back from the ledger, or an ERROR result. The store is only
        touched by the final full refresh.
        """
        reporter = OperationReporter(self._status, "create")
        try:
            identity = self._resolve_identity(creator)
            self._validate_creation(name, plaintext_amount, public_condition)
        except AutoPayError as exc:
            return self._fail(reporter, exc, prefix="Submission failed: ")

        record_id = self._id_factory()
        reporter = OperationReporter(self._status, "create", record_id)
        reporter.pending("Creating auto-pay with FHE encryption...")
        try:
            await self._ensure_initialized()
            contract = await self.contract_identity()
            logger.debug("Encrypting amount for %s under %s", identity, contract)
            encrypted = await self._encryption.encrypt(contract, identity, plaintext_amount)
            tx = await self._ledger.create_record(
                record_id,
                name,
                encrypted.ciphertext,
                encrypted.proof,
                public_condition,
            )
            logger.info("Submitted record %s in tx %s", record_id, tx.tx_hash)
            receipt = await tx.await_finality()
            if not receipt.success:
                raise SubmissionFailed(f"Transaction {receipt.tx_hash} reverted")
            logger.info("Record %s final in block %d", record_id, receipt.block_number)
            await self._store.refresh()
        except AutoPayError as exc:
            return self._fail(reporter, exc, prefix="Submission failed: ")
        except Exception as exc:
            logger.exception("Record creation failed")
            return self._fail(reporter, SubmissionFailed(str(exc)), prefix="Submission failed: ")

        return self._succeed(
            reporter,
            "Auto-pay created successfully!",
            value=self._store.get(record_id),
        )

    def _validate_creation(self, name: str, amount: int, condition: int) -> None:
        errors: list[str] = []
        if not isinstance(name, str) or not name.strip():
            errors.append("name must be non-empty")
        if isinstance(amount, bool) or not isinstance(amount, int):
            errors.append("amount must be an integer")
        elif amount < 0:
            errors.append("amount must be non-negative")
        if isinstance(condition, bool) or not isinstance(condition, int):
            errors.append("condition must be an integer")
        elif not self._config.min_condition <= condition <= self._config.max_condition:
            errors.append(
                f"condition must be between {self._config.min_condition} "
                f"and {self._config.max_condition}"
            )
        if errors:
            raise InvalidInput("; ".join(errors))

    # ------------------------------------------------------------------
    # Verification (two-phase decrypt)
    # ------------------------------------------------------------------

    async def verify_record(
        self,
        record_id: str,
        requester: Optional[str] = None,
    ) -> OperationResult:
        """Publicly decrypt a record's amount and record the proof on-chain.

        SUCCESS value:
            int  — the authoritative amount
            None — another party verified first (already_verified=True);
                   re-read the record from the store for the amount
        """
        reporter = OperationReporter(self._status, "verify", record_id)
        try:
            self._resolve_identity(requester)
        except AutoPayError as exc:
            return self._fail(reporter, exc, prefix="Decryption failed: ")

        reporter.pending("Verifying decryption on-chain...")
        try:
            raw = await self._ledger.get_record(record_id)
            if VerificationStateMachine.path_for(raw) == VerificationPath.SHORT_CIRCUIT:
                stored = AutoPayRecord.from_raw(record_id, raw)
                return self._succeed(
                    reporter, "Data already verified on-chain", value=stored.clear_amount,
                )

            handle = await self._ledger.get_ciphertext_handle(record_id)
            contract = await self.contract_identity()

            async def submit(clear_values_encoded: bytes, proof: bytes) -> PendingTx:
                tx = await self._ledger.submit_verification(
                    record_id, clear_values_encoded, proof,
                )
                logger.info("Submitted verification of %s in tx %s", record_id, tx.tx_hash)
                return tx

            result = await self._oracle.decrypt_and_verify([handle], contract, submit)
            if handle not in result.clear_values:
                raise OracleFailure(f"Oracle returned no value for handle {handle}")
            amount = int(result.clear_values[handle])
            logger.info("Verification of %s accepted", record_id)
            await self._store.refresh()
        except AlreadyVerified:
            logger.info("Record %s was verified by another party; refreshing", record_id)
            return await self._recover_already_verified(reporter)
        except AutoPayError as exc:
            return self._fail(reporter, exc, prefix="Decryption failed: ")
        except Exception as exc:
            logger.exception("Verification of %s failed", record_id)
            return self._fail(reporter, OracleFailure(str(exc)), prefix="Decryption failed: ")

        return self._succeed(
            reporter, "Data decrypted and verified successfully!", value=amount,
        )

    async def _recover_already_verified(
        self,
        reporter: OperationReporter,
    ) -> OperationResult:
        try:
            await self._store.refresh()
        except AutoPayError as exc:
            return self._fail(reporter, exc, prefix="Decryption failed: ")
        except Exception as exc:
            logger.exception("Refresh after already-verified recovery failed")
            return self._fail(reporter, OracleFailure(str(exc)), prefix="Decryption failed: ")
        return self._finish(reporter, OperationResult.ok(
            "Data is already verified on-chain", value=None, already_verified=True,
        ))

    # ------------------------------------------------------------------
    # Local preview (decrypt without submit)
    # ------------------------------------------------------------------

    async def preview_record(
        self,
        record_id: str,
        requester: Optional[str] = None,
    ) -> OperationResult:
        """Decrypt a record's amount for the requester only.

        The value is kept as the record's local_clear_amount and never
        becomes its clear_amount. Verified records return their canonical
        amount without contacting the oracle.
        """
        reporter = OperationReporter(self._status, "preview", record_id)
        try:
            identity = self._resolve_identity(requester)
        except AutoPayError as exc:
            return self._fail(reporter, exc, prefix="Decryption failed: ")

        reporter.pending("Decrypting locally...")
        try:
            raw = await self._ledger.get_record(record_id)
            if VerificationStateMachine.path_for(raw) == VerificationPath.SHORT_CIRCUIT:
                stored = AutoPayRecord.from_raw(record_id, raw)
                return self._succeed(
                    reporter, "Data already verified on-chain", value=stored.clear_amount,
                )
            handle = await self._ledger.get_ciphertext_handle(record_id)
            contract = await self.contract_identity()
            values = await self._oracle.decrypt([handle], contract, identity)
            if handle not in values:
                raise OracleFailure(f"Oracle returned no value for handle {handle}")
            amount = int(values[handle])
            if record_id not in self._store:
                await self._store.refresh()
            self._store.set_local_preview(record_id, amount)
        except AutoPayError as exc:
            return self._fail(reporter, exc, prefix="Decryption failed: ")
        except Exception as exc:
            logger.exception("Local decryption of %s failed", record_id)
            return self._fail(reporter, OracleFailure(str(exc)), prefix="Decryption failed: ")

        return self._succeed(reporter, "Data decrypted locally", value=amount)

    def clear_preview(self, record_id: str) -> bool:
        """Forget a local decrypt preview. Returns True if one existed."""
        return self._store.clear_local_preview(record_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_identity(self, explicit: Optional[str]) -> str:
        """Return the acting identity, which must be the connected one."""
        connected = self._identity.current_identity() if self._identity else None
        identity = explicit or connected
        if not identity:
            raise NotConnected()
        if self._identity is not None and connected is None:
            raise NotConnected()
        if connected is not None and identity.lower() != connected.lower():
            raise NotConnected(f"Identity {identity} is not the connected account")
        return identity

    def _fail(
        self,
        reporter: OperationReporter,
        exc: AutoPayError,
        prefix: str = "",
    ) -> OperationResult:
        if exc.kind in (
            ErrorKind.USER_REJECTED,
            ErrorKind.NOT_CONNECTED,
            ErrorKind.INVALID_INPUT,
        ):
            message = exc.message
        else:
            message = prefix + (exc.message or "Unknown error")
        logger.info("Operation failed (%s): %s", exc.kind.value, message)
        return self._finish(reporter, OperationResult.failed(exc.kind, message))

    def _succeed(
        self,
        reporter: OperationReporter,
        message: str,
        value: object = None,
    ) -> OperationResult:
        return self._finish(reporter, OperationResult.ok(message, value=value))

    @staticmethod
    def _finish(reporter: OperationReporter, result: OperationResult) -> OperationResult:
        reporter.finish(result.to_status(reporter.operation, reporter.record_id))
        return result
