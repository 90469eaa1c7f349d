"""Chain access — web3 ledger client, contract ABI, signers and identities."""

from autopay.chain.accounts import (
    LocalAccountSigner,
    SignerIdentityProvider,
    StaticIdentityProvider,
)
from autopay.chain.ledger import Web3LedgerClient, Web3PendingTx

__all__ = [
    "LocalAccountSigner",
    "SignerIdentityProvider",
    "StaticIdentityProvider",
    "Web3LedgerClient",
    "Web3PendingTx",
]
