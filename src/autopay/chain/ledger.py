"""Web3 ledger client — reads and writes the auto-pay contract over JSON-RPC.

Writes are signed locally (see autopay.chain.accounts) and sent as raw
transactions. Finality means one confirmation: the receipt is awaited
and nothing deeper.

A reverted verification is classified by re-reading the record: if the
ledger now shows it verified, the revert is AlreadyVerified, otherwise
SubmissionFailed. Revert reason strings are never parsed.

Sends from one client are serialized: the nonce is read from the pending
block, never reused locally, and only consumed once the node accepts
the raw transaction.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted

from autopay.chain.abi import AUTOPAY_ABI
from autopay.chain.accounts import TransactionSigner
from autopay.config import SEPOLIA_CHAIN_ID, AutoPayConfig
from autopay.errors import (
    AlreadyVerified,
    AutoPayError,
    NotConnected,
    RecordNotFound,
    SubmissionFailed,
)
from autopay.models.record import DEFAULT_DESCRIPTION, RawRecord, TxReceipt

logger = logging.getLogger(__name__)

# Produces the error to raise when a transaction reverts.
RevertClassifier = Callable[[str], Awaitable[AutoPayError]]


def _hex(value: Any) -> str:
    if isinstance(value, str):
        return value if value.startswith("0x") else f"0x{value}"
    return "0x" + bytes(value).hex()


async def _submission_failed(reason: str) -> AutoPayError:
    return SubmissionFailed(reason)


class Web3PendingTx:
    """A sent transaction awaiting its receipt."""

    def __init__(
        self,
        w3: AsyncWeb3,
        tx_hash: Any,
        timeout: float,
        on_revert: RevertClassifier = _submission_failed,
    ) -> None:
        self._w3 = w3
        self._tx_hash = tx_hash
        self._timeout = timeout
        self._on_revert = on_revert

    @property
    def tx_hash(self) -> str:
        return _hex(self._tx_hash)

    async def await_finality(self) -> TxReceipt:
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                self._tx_hash, timeout=self._timeout,
            )
        except TimeExhausted as exc:
            raise SubmissionFailed(
                f"Transaction {self.tx_hash} not confirmed within {self._timeout}s"
            ) from exc

        if receipt["status"] != 1:
            raise await self._on_revert(f"Transaction {self.tx_hash} reverted")
        return TxReceipt(
            tx_hash=self.tx_hash,
            block_number=int(receipt["blockNumber"]),
            success=True,
        )


class Web3LedgerClient:
    """Ledger read and write views backed by a deployed contract.

    Usage:
        ledger = Web3LedgerClient.from_config(config, signer)
        ids = await ledger.get_all_record_ids()
        tx = await ledger.create_record(...)
        receipt = await tx.await_finality()
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        contract: Any,
        signer: Optional[TransactionSigner] = None,
        chain_id: int = SEPOLIA_CHAIN_ID,
        receipt_timeout: float = 300.0,
    ) -> None:
        self._w3 = w3
        self._contract = contract
        self._signer = signer
        self._chain_id = chain_id
        self._receipt_timeout = receipt_timeout
        self._send_lock: Optional[asyncio.Lock] = None
        self._next_nonce: Optional[int] = None

    @classmethod
    def from_config(
        cls,
        config: AutoPayConfig,
        signer: Optional[TransactionSigner] = None,
    ) -> Web3LedgerClient:
        if not config.ledger_configured:
            raise ValueError("rpc_url and contract_address are required for a web3 ledger")
        w3 = AsyncWeb3(AsyncHTTPProvider(config.rpc_url))
        contract = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(config.contract_address),
            abi=AUTOPAY_ABI,
        )
        return cls(
            w3,
            contract,
            signer=signer,
            chain_id=config.chain_id,
            receipt_timeout=config.receipt_timeout,
        )

    # ------------------------------------------------------------------
    # Read view
    # ------------------------------------------------------------------

    async def contract_address(self) -> str:
        return self._contract.address

    async def get_all_record_ids(self) -> list[str]:
        return list(await self._contract.functions.getAllBusinessIds().call())

    async def get_record(self, record_id: str) -> RawRecord:
        try:
            data = await self._contract.functions.getBusinessData(record_id).call()
        except ContractLogicError as exc:
            raise RecordNotFound(record_id) from exc
        (name, public1, public2, description, creator,
         timestamp, is_verified, decrypted) = data
        return RawRecord(
            name=name,
            creator=creator,
            timestamp=int(timestamp),
            public_value1=int(public1),
            public_value2=int(public2),
            description=description,
            is_verified=bool(is_verified),
            decrypted_value=int(decrypted),
        )

    async def get_ciphertext_handle(self, record_id: str) -> str:
        try:
            handle = await self._contract.functions.getEncryptedValue(record_id).call()
        except ContractLogicError as exc:
            raise RecordNotFound(record_id) from exc
        return _hex(handle)

    # ------------------------------------------------------------------
    # Write view
    # ------------------------------------------------------------------

    async def create_record(
        self,
        record_id: str,
        name: str,
        ciphertext: bytes,
        proof: bytes,
        public_condition: int,
        public_value2: int = 0,
        description: str = DEFAULT_DESCRIPTION,
    ) -> Web3PendingTx:
        fn = self._contract.functions.createBusinessData(
            record_id, name, ciphertext, proof,
            public_condition, public_value2, description,
        )
        return await self._send(fn, _submission_failed)

    async def submit_verification(
        self,
        record_id: str,
        clear_values_encoded: bytes,
        proof: bytes,
    ) -> Web3PendingTx:
        fn = self._contract.functions.verifyDecryption(
            record_id, clear_values_encoded, proof,
        )

        async def classify(reason: str) -> AutoPayError:
            raw = await self.get_record(record_id)
            if raw.is_verified:
                return AlreadyVerified(record_id)
            return SubmissionFailed(reason)

        return await self._send(fn, classify)

    async def _send(self, fn: Any, on_revert: RevertClassifier) -> Web3PendingTx:
        if self._signer is None:
            raise NotConnected()
        sender = self._signer.address
        if self._send_lock is None:
            self._send_lock = asyncio.Lock()
        # Nonce allocation through broadcast is serialized per client.
        async with self._send_lock:
            nonce = await self._w3.eth.get_transaction_count(sender, "pending")
            if self._next_nonce is not None:
                nonce = max(nonce, self._next_nonce)
            try:
                tx = await fn.build_transaction({
                    "from": sender,
                    "nonce": nonce,
                    "chainId": self._chain_id,
                })
            except ContractLogicError as exc:
                # Gas estimation executes the call; a revert here is a rejection.
                raise await on_revert(str(exc)) from exc

            # The signer may prompt; keep the event loop free while it waits.
            signed = await asyncio.to_thread(self._signer.sign_transaction, tx)
            tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
            self._next_nonce = nonce + 1
        logger.debug("Sent tx %s from %s with nonce %d", _hex(tx_hash), sender, nonce)
        return Web3PendingTx(self._w3, tx_hash, self._receipt_timeout, on_revert)
