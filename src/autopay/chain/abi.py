"""ABI of the confidential auto-pay contract (the subset this client uses)."""

from __future__ import annotations

from typing import Any


def _fn(
    name: str,
    inputs: list[tuple[str, str]],
    outputs: list[tuple[str, str]],
    mutability: str,
) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t, "internalType": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t, "internalType": t} for n, t in outputs],
        "stateMutability": mutability,
    }


AUTOPAY_ABI: list[dict[str, Any]] = [
    _fn("getAllBusinessIds", [], [("", "string[]")], "view"),
    _fn(
        "getBusinessData",
        [("businessId", "string")],
        [
            ("name", "string"),
            ("publicValue1", "uint256"),
            ("publicValue2", "uint256"),
            ("description", "string"),
            ("creator", "address"),
            ("timestamp", "uint256"),
            ("isVerified", "bool"),
            ("decryptedValue", "uint32"),
        ],
        "view",
    ),
    _fn("getEncryptedValue", [("businessId", "string")], [("", "bytes32")], "view"),
    _fn(
        "createBusinessData",
        [
            ("businessId", "string"),
            ("name", "string"),
            ("encryptedValue", "bytes32"),
            ("inputProof", "bytes"),
            ("publicValue1", "uint256"),
            ("publicValue2", "uint256"),
            ("description", "string"),
        ],
        [],
        "nonpayable",
    ),
    _fn(
        "verifyDecryption",
        [
            ("businessId", "string"),
            ("abiEncodedClearValue", "bytes"),
            ("decryptionProof", "bytes"),
        ],
        [],
        "nonpayable",
    ),
]
