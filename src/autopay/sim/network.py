"""Simulated confidential-computing network — ledger, encryption and oracle.

An in-process stand-in for a chain plus its FHE coprocessor and
decryption relayer. It implements the same capability interfaces as the
live stack, so the orchestrator runs unchanged against it.

Model:
- A ciphertext handle references a value held by the coprocessor. The
  handle reveals nothing; the value never leaves the network except
  through the oracle.
- Input proofs and decryption proofs are HMAC-SHA256 tags under the
  network secret. The ledger rejects any tag it cannot recompute.
- A second verification of the same record is rejected with
  AlreadyVerified, both at submission and at finality. Exactly one
  verification per record is ever accepted.
- Every I/O method yields to the event loop once, so concurrent
  operations interleave the way they would against a remote node.

State can be persisted to a JSON file (rewritten after every finalized
transaction) so the CLI can keep a simulated ledger across runs.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
import secrets
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence

from autopay.config import UINT32_MAX
from autopay.errors import (
    AlreadyVerified,
    EncryptionFailure,
    NotConnected,
    OracleFailure,
    RecordNotFound,
    SubmissionFailed,
)
from autopay.interfaces import SubmitCallback
from autopay.models.record import (
    DEFAULT_DESCRIPTION,
    DecryptionResult,
    EncryptedInput,
    RawRecord,
    TxReceipt,
)

logger = logging.getLogger(__name__)

DEFAULT_SIM_CONTRACT = "0x5151515151515151515151515151515151515151"


@dataclass
class _LedgerEntry:
    record_id: str
    name: str
    creator: str
    timestamp: int
    public_value1: int
    public_value2: int
    description: str
    handle: str
    is_verified: bool = False
    decrypted_value: int = 0

    def to_raw(self) -> RawRecord:
        return RawRecord(
            name=self.name,
            creator=self.creator,
            timestamp=self.timestamp,
            public_value1=self.public_value1,
            public_value2=self.public_value2,
            description=self.description,
            is_verified=self.is_verified,
            decrypted_value=self.decrypted_value,
        )


@dataclass
class _Ciphertext:
    value: int
    allowed: list[str] = field(default_factory=list)
    bound_to: Optional[str] = None


class SimulatedNetwork:
    """Shared state behind the simulated ledger, gateway and oracle.

    Usage:
        network = SimulatedNetwork()
        ledger = network.ledger("0xAAA")
        gateway = network.encryption_gateway()
        oracle = network.oracle()

    Fault injection (each applies to the next call of that kind only):
        network.fail_next_write(UserRejected())
        network.fail_next_encrypt(EncryptionFailure("boom"))
        network.fail_next_oracle(OracleFailure("relayer down"))
        network.fail_next_initialize(EncryptionFailure("no keys"))
    """

    def __init__(
        self,
        contract_address: str = DEFAULT_SIM_CONTRACT,
        secret: Optional[bytes] = None,
        storage_path: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
        max_plaintext: int = UINT32_MAX,
    ) -> None:
        self.contract_address = contract_address
        self.max_plaintext = max_plaintext
        self._secret = secret if secret is not None else secrets.token_bytes(32)
        self._storage_path = storage_path
        self._clock = clock
        self._entries: dict[str, _LedgerEntry] = {}
        self._ciphertexts: dict[str, _Ciphertext] = {}
        self._accepted: dict[str, int] = {}
        self._block_number = 0
        self._nonce = 0
        self._faults: dict[str, list[BaseException]] = {}

        if storage_path is not None and storage_path.exists():
            self._load(storage_path)

    # ------------------------------------------------------------------
    # Capability views
    # ------------------------------------------------------------------

    def ledger(self, sender: Optional[str] = None) -> SimulatedLedger:
        return SimulatedLedger(self, sender)

    def encryption_gateway(self, initialized: bool = False) -> SimulatedEncryptionGateway:
        return SimulatedEncryptionGateway(self, initialized)

    def oracle(self) -> SimulatedOracle:
        return SimulatedOracle(self)

    # ------------------------------------------------------------------
    # Inspection and fault injection
    # ------------------------------------------------------------------

    @property
    def block_number(self) -> int:
        return self._block_number

    def accepted_verifications(self, record_id: str) -> int:
        return self._accepted.get(record_id, 0)

    def record_ids(self) -> list[str]:
        return list(self._entries)

    def fail_next_write(self, exc: BaseException) -> None:
        self._faults.setdefault("write", []).append(exc)

    def fail_next_encrypt(self, exc: BaseException) -> None:
        self._faults.setdefault("encrypt", []).append(exc)

    def fail_next_oracle(self, exc: BaseException) -> None:
        self._faults.setdefault("oracle", []).append(exc)

    def fail_next_initialize(self, exc: BaseException) -> None:
        self._faults.setdefault("initialize", []).append(exc)

    def _take_fault(self, kind: str) -> None:
        pending = self._faults.get(kind)
        if pending:
            raise pending.pop(0)

    # ------------------------------------------------------------------
    # Coprocessor
    # ------------------------------------------------------------------

    def _tag(self, *parts: str) -> bytes:
        message = "|".join(parts).encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).digest()

    def _register_ciphertext(self, value: int, requester: str) -> str:
        self._nonce += 1
        digest = hashlib.sha256(
            self._secret + self._nonce.to_bytes(8, "big") + requester.lower().encode("utf-8")
        ).hexdigest()
        handle = f"0x{digest}"
        self._ciphertexts[handle] = _Ciphertext(value=value, allowed=[requester.lower()])
        return handle

    def _input_proof(self, handle: str, contract: str, requester: str) -> bytes:
        return self._tag("input", handle, contract.lower(), requester.lower())

    def _decryption_proof(self, handles: Sequence[str], encoded: bytes) -> bytes:
        return self._tag("decrypt", ",".join(handles), encoded.hex())

    def _cleartext(self, handle: str) -> _Ciphertext:
        ciphertext = self._ciphertexts.get(handle)
        if ciphertext is None:
            raise OracleFailure(f"Unknown ciphertext handle: {handle}")
        return ciphertext

    @staticmethod
    def _encode_values(values: Sequence[int]) -> bytes:
        return json.dumps(list(values)).encode("utf-8")

    @staticmethod
    def _decode_values(encoded: bytes) -> list[int]:
        try:
            values = json.loads(encoded.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SubmissionFailed("Malformed clear values") from exc
        if not isinstance(values, list) or not all(isinstance(v, int) for v in values):
            raise SubmissionFailed("Malformed clear values")
        return values

    # ------------------------------------------------------------------
    # Ledger rules
    # ------------------------------------------------------------------

    def _entry(self, record_id: str) -> _LedgerEntry:
        entry = self._entries.get(record_id)
        if entry is None:
            raise RecordNotFound(record_id)
        return entry

    def _check_create(self, record_id: str, handle: str, proof: bytes, sender: str) -> None:
        if record_id in self._entries:
            raise SubmissionFailed(f"Record already exists: {record_id}")
        ciphertext = self._ciphertexts.get(handle)
        if ciphertext is None:
            raise SubmissionFailed("Unknown ciphertext")
        if ciphertext.bound_to is not None:
            raise SubmissionFailed("Ciphertext already bound to a record")
        expected = self._input_proof(handle, self.contract_address, sender)
        if not hmac.compare_digest(expected, proof):
            raise SubmissionFailed("Invalid input proof")

    def _check_verification(self, entry: _LedgerEntry, encoded: bytes, proof: bytes) -> int:
        if entry.is_verified:
            raise AlreadyVerified(entry.record_id)
        expected = self._decryption_proof([entry.handle], encoded)
        if not hmac.compare_digest(expected, proof):
            raise SubmissionFailed("Invalid decryption proof")
        values = self._decode_values(encoded)
        if len(values) != 1:
            raise SubmissionFailed("Expected exactly one clear value")
        return values[0]

    def _next_tx_hash(self) -> str:
        self._nonce += 1
        return "0x" + hashlib.sha256(
            b"tx" + self._secret + self._nonce.to_bytes(8, "big")
        ).hexdigest()

    def _finalize(self) -> int:
        self._block_number += 1
        self._save()
        return self._block_number

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _save(self) -> None:
        if self._storage_path is None:
            return
        state = {
            "contract_address": self.contract_address,
            "secret": self._secret.hex(),
            "block_number": self._block_number,
            "nonce": self._nonce,
            "records": [asdict(e) for e in self._entries.values()],
            "ciphertexts": {h: asdict(c) for h, c in self._ciphertexts.items()},
            "accepted": self._accepted,
        }
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._storage_path.write_text(
            json.dumps(state, indent=2, sort_keys=True), encoding="utf-8",
        )

    def _load(self, path: Path) -> None:
        state = json.loads(path.read_text(encoding="utf-8"))
        self.contract_address = state["contract_address"]
        self._secret = bytes.fromhex(state["secret"])
        self._block_number = state["block_number"]
        self._nonce = state["nonce"]
        self._entries = {r["record_id"]: _LedgerEntry(**r) for r in state["records"]}
        self._ciphertexts = {
            h: _Ciphertext(**c) for h, c in state["ciphertexts"].items()
        }
        self._accepted = dict(state["accepted"])
        logger.debug("Loaded simulated ledger with %d records from %s", len(self._entries), path)


class SimulatedPendingTx:
    """A transaction whose effect is applied when finality is awaited."""

    def __init__(
        self,
        network: SimulatedNetwork,
        apply: Callable[[], None],
    ) -> None:
        self._network = network
        self._apply = apply
        self._tx_hash = network._next_tx_hash()
        self._receipt: Optional[TxReceipt] = None
        self._error: Optional[BaseException] = None

    @property
    def tx_hash(self) -> str:
        return self._tx_hash

    async def await_finality(self) -> TxReceipt:
        if self._receipt is None and self._error is None:
            await asyncio.sleep(0)
            try:
                self._apply()
            except Exception as exc:
                self._error = exc
            else:
                block = self._network._finalize()
                self._receipt = TxReceipt(tx_hash=self._tx_hash, block_number=block)
        if self._error is not None:
            raise self._error
        return self._receipt


class SimulatedLedger:
    """Ledger read/write views; writes are sent from one sender account."""

    def __init__(self, network: SimulatedNetwork, sender: Optional[str] = None) -> None:
        self._network = network
        self._sender = sender

    async def contract_address(self) -> str:
        await asyncio.sleep(0)
        return self._network.contract_address

    async def get_all_record_ids(self) -> list[str]:
        await asyncio.sleep(0)
        return self._network.record_ids()

    async def get_record(self, record_id: str) -> RawRecord:
        await asyncio.sleep(0)
        return self._network._entry(record_id).to_raw()

    async def get_ciphertext_handle(self, record_id: str) -> str:
        await asyncio.sleep(0)
        return self._network._entry(record_id).handle

    async def create_record(
        self,
        record_id: str,
        name: str,
        ciphertext: bytes,
        proof: bytes,
        public_condition: int,
        public_value2: int = 0,
        description: str = DEFAULT_DESCRIPTION,
    ) -> SimulatedPendingTx:
        await asyncio.sleep(0)
        self._network._take_fault("write")
        sender = self._require_sender()
        network = self._network
        handle = "0x" + bytes(ciphertext).hex()
        network._check_create(record_id, handle, proof, sender)

        def apply() -> None:
            network._check_create(record_id, handle, proof, sender)
            network._ciphertexts[handle].bound_to = record_id
            network._entries[record_id] = _LedgerEntry(
                record_id=record_id,
                name=name,
                creator=sender,
                timestamp=int(network._clock()),
                public_value1=public_condition,
                public_value2=public_value2,
                description=description,
                handle=handle,
            )

        return SimulatedPendingTx(network, apply)

    async def submit_verification(
        self,
        record_id: str,
        clear_values_encoded: bytes,
        proof: bytes,
    ) -> SimulatedPendingTx:
        await asyncio.sleep(0)
        self._network._take_fault("write")
        self._require_sender()
        network = self._network
        entry = network._entry(record_id)
        network._check_verification(entry, clear_values_encoded, proof)

        def apply() -> None:
            value = network._check_verification(entry, clear_values_encoded, proof)
            entry.is_verified = True
            entry.decrypted_value = value
            network._accepted[record_id] = network._accepted.get(record_id, 0) + 1

        return SimulatedPendingTx(network, apply)

    def _require_sender(self) -> str:
        if not self._sender:
            raise NotConnected()
        return self._sender


class SimulatedEncryptionGateway:
    """Encrypts into the coprocessor and issues input proofs."""

    def __init__(self, network: SimulatedNetwork, initialized: bool = False) -> None:
        self._network = network
        self._initialized = initialized

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        await asyncio.sleep(0)
        self._network._take_fault("initialize")
        self._initialized = True

    async def encrypt(
        self,
        contract_address: str,
        requester: str,
        plaintext: int,
    ) -> EncryptedInput:
        await asyncio.sleep(0)
        network = self._network
        network._take_fault("encrypt")
        if not self._initialized:
            raise EncryptionFailure("Encryption context is not initialized")
        if contract_address.lower() != network.contract_address.lower():
            raise EncryptionFailure(f"Unknown contract: {contract_address}")
        if (
            isinstance(plaintext, bool)
            or not isinstance(plaintext, int)
            or not 0 <= plaintext <= network.max_plaintext
        ):
            raise EncryptionFailure(
                f"Plaintext {plaintext!r} outside supported range 0..{network.max_plaintext}"
            )
        handle = network._register_ciphertext(plaintext, requester)
        return EncryptedInput(
            ciphertext=bytes.fromhex(handle[2:]),
            proof=network._input_proof(handle, contract_address, requester),
        )


class SimulatedOracle:
    """Decryption relayer: public decrypt with proof, or private decrypt."""

    def __init__(self, network: SimulatedNetwork) -> None:
        self._network = network

    async def decrypt_and_verify(
        self,
        handles: Sequence[str],
        contract_address: str,
        submit: SubmitCallback,
    ) -> DecryptionResult:
        await asyncio.sleep(0)
        network = self._network
        network._take_fault("oracle")
        self._check_contract(contract_address)
        values = {h: network._cleartext(h).value for h in handles}
        encoded = network._encode_values([values[h] for h in handles])
        proof = network._decryption_proof(list(handles), encoded)

        tx = await submit(encoded, proof)
        await tx.await_finality()
        return DecryptionResult(clear_values=values)

    async def decrypt(
        self,
        handles: Sequence[str],
        contract_address: str,
        requester: str,
    ) -> dict[str, int]:
        await asyncio.sleep(0)
        network = self._network
        network._take_fault("oracle")
        self._check_contract(contract_address)
        result: dict[str, int] = {}
        for handle in handles:
            ciphertext = network._cleartext(handle)
            if requester.lower() not in ciphertext.allowed:
                raise OracleFailure(f"{requester} is not allowed to decrypt {handle}")
            result[handle] = ciphertext.value
        return result

    def _check_contract(self, contract_address: str) -> None:
        if contract_address.lower() != self._network.contract_address.lower():
            raise OracleFailure(f"Unknown contract: {contract_address}")
