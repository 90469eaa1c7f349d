"""Accounts — transaction signing and connected-identity providers."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Protocol

from eth_account import Account
from eth_account.signers.local import LocalAccount

from autopay.errors import UserRejected

logger = logging.getLogger(__name__)

# Called with the unsigned transaction; return False to refuse signing.
ApprovalPrompt = Callable[[dict[str, Any]], bool]


class TransactionSigner(Protocol):
    """Signs transactions for one account."""

    @property
    def address(self) -> str:
        ...

    def sign_transaction(self, tx: dict[str, Any]) -> Any:
        """Return a signed transaction exposing raw_transaction.

        Called from a worker thread, so it may block on a prompt.
        Raises UserRejected if the holder declines.
        """
        ...


class LocalAccountSigner:
    """Signs with a local private key, optionally behind an approval prompt."""

    def __init__(
        self,
        account: LocalAccount,
        approve: Optional[ApprovalPrompt] = None,
    ) -> None:
        self._account = account
        self._approve = approve

    @classmethod
    def from_key(
        cls,
        private_key: str,
        approve: Optional[ApprovalPrompt] = None,
    ) -> LocalAccountSigner:
        return cls(Account.from_key(private_key), approve)

    @property
    def address(self) -> str:
        return self._account.address

    def sign_transaction(self, tx: dict[str, Any]) -> Any:
        if self._approve is not None and not self._approve(tx):
            logger.info("Signature declined for %s", self.address)
            raise UserRejected()
        return self._account.sign_transaction(tx)


class SignerIdentityProvider:
    """The connected identity is the signer's account."""

    def __init__(self, signer: Optional[TransactionSigner]) -> None:
        self._signer = signer

    def current_identity(self) -> Optional[str]:
        return self._signer.address if self._signer is not None else None


class StaticIdentityProvider:
    """An identity that is connected and disconnected explicitly."""

    def __init__(self, identity: Optional[str] = None) -> None:
        self._identity = identity

    def connect(self, identity: str) -> None:
        self._identity = identity

    def disconnect(self) -> None:
        self._identity = None

    def current_identity(self) -> Optional[str]:
        return self._identity
