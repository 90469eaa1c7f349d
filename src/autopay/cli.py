"""Auto-pay CLI — command-line interface for confidential auto-pay records.

Usage:
    python -m autopay.cli --sim data/ledger.json create --name rent --amount 100 --condition 5
    python -m autopay.cli --sim data/ledger.json list
    python -m autopay.cli --sim data/ledger.json verify --id autopay-...
    python -m autopay.cli --sim data/ledger.json preview --id autopay-...
    python -m autopay.cli --sim data/ledger.json search rent
    python -m autopay.cli --sim data/ledger.json stats
    python -m autopay.cli status

Without --sim, the web3 ledger from AUTOPAY_RPC_URL / AUTOPAY_CONTRACT_ADDRESS
is used. Creating and verifying records on a live chain needs an FHE
backend: --backend module:factory, where factory(config) returns
(encryption_gateway, verification_oracle).
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from autopay.chain.accounts import (
    LocalAccountSigner,
    SignerIdentityProvider,
    StaticIdentityProvider,
)
from autopay.chain.ledger import Web3LedgerClient
from autopay.config import AutoPayConfig, load_config
from autopay.engine.orchestrator import LifecycleOrchestrator
from autopay.errors import EncryptionFailure, OracleFailure
from autopay.interfaces import SubmitCallback
from autopay.models.operation import OperationResult, OperationStatus
from autopay.models.record import AutoPayRecord, DecryptionResult, EncryptedInput
from autopay.sim.network import SimulatedNetwork

DEFAULT_SIM_IDENTITY = "0x00000000000000000000000000000000000000a1"


class _UnconfiguredBackend:
    """Stands in for the FHE gateway and oracle when none is configured."""

    _MESSAGE = "No FHE backend configured (use --backend module:factory)"

    @property
    def is_initialized(self) -> bool:
        return False

    async def initialize(self) -> None:
        raise EncryptionFailure(self._MESSAGE)

    async def encrypt(self, contract_address: str, requester: str, plaintext: int) -> EncryptedInput:
        raise EncryptionFailure(self._MESSAGE)

    async def decrypt_and_verify(
        self,
        handles: Sequence[str],
        contract_address: str,
        submit: SubmitCallback,
    ) -> DecryptionResult:
        raise OracleFailure(self._MESSAGE)

    async def decrypt(
        self,
        handles: Sequence[str],
        contract_address: str,
        requester: str,
    ) -> dict[str, int]:
        raise OracleFailure(self._MESSAGE)


def _prompt_approval(tx: dict[str, Any]) -> bool:
    """Ask on the terminal. Runs in a worker thread, off the event loop."""
    answer = input(f"Sign transaction to {tx.get('to')} (nonce {tx.get('nonce')})? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def _load_backend(target: str, config: AutoPayConfig) -> tuple[Any, Any]:
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Backend must be given as module:factory, got {target!r}")
    factory = getattr(importlib.import_module(module_name), attr)
    encryption, oracle = factory(config)
    return encryption, oracle


def _make_orchestrator(args: argparse.Namespace, config: AutoPayConfig) -> LifecycleOrchestrator:
    """Wire an orchestrator for the simulated or the web3 backend."""
    sim_path = args.sim or config.sim_state_path
    if sim_path is not None:
        network = SimulatedNetwork(storage_path=Path(sim_path), max_plaintext=config.max_amount)
        identity = args.identity or DEFAULT_SIM_IDENTITY
        return LifecycleOrchestrator(
            network.ledger(identity),
            network.encryption_gateway(),
            network.oracle(),
            identity=StaticIdentityProvider(identity),
            config=config,
        )

    if not config.ledger_configured:
        raise ValueError(
            "No ledger configured: pass --sim PATH or set "
            "AUTOPAY_RPC_URL and AUTOPAY_CONTRACT_ADDRESS"
        )
    signer = None
    if config.private_key:
        signer = LocalAccountSigner.from_key(
            config.private_key, approve=None if args.yes else _prompt_approval,
        )
    ledger = Web3LedgerClient.from_config(config, signer)
    if args.backend:
        encryption, oracle = _load_backend(args.backend, config)
    else:
        encryption = oracle = _UnconfiguredBackend()
    return LifecycleOrchestrator(
        ledger,
        encryption,
        oracle,
        identity=SignerIdentityProvider(signer),
        config=config,
    )


def _print_status(status: Optional[OperationStatus]) -> None:
    if status is not None and not status.is_terminal:
        print(f"... {status.message}", file=sys.stderr)


def _format_record(record: AutoPayRecord) -> str:
    if record.is_verified:
        amount = f"{record.clear_amount} (verified)"
    elif record.local_clear_amount is not None:
        amount = f"{record.local_clear_amount} (local)"
    else:
        amount = "encrypted"
    return (
        f"{record.record_id}  {record.name}  condition={record.public_condition}  "
        f"amount={amount}  creator={record.creator}  "
        f"created={record.created_at.strftime('%Y-%m-%dT%H:%M:%SZ')}"
    )


def _report(result: OperationResult) -> int:
    if result.success:
        print(result.message)
        return 0
    print(f"Failed: {result.message}", file=sys.stderr)
    return 1


def cmd_list(orch: LifecycleOrchestrator, args: argparse.Namespace) -> int:
    result = asyncio.run(orch.refresh())
    if not result.success:
        return _report(result)
    for record in result.value:
        print(_format_record(record))
    if not result.value:
        print("No auto-pay records")
    return 0


def cmd_search(orch: LifecycleOrchestrator, args: argparse.Namespace) -> int:
    result = asyncio.run(orch.refresh())
    if not result.success:
        return _report(result)
    matches = orch.store.search(args.term)
    for record in matches:
        print(_format_record(record))
    if not matches:
        print(f"No records match {args.term!r}")
    return 0


def cmd_stats(orch: LifecycleOrchestrator, args: argparse.Namespace) -> int:
    result = asyncio.run(orch.refresh())
    if not result.success:
        return _report(result)
    stats = orch.store.stats()
    print(json.dumps({
        "total_payments": stats.total,
        "verified": stats.verified,
        "pending": stats.pending,
        "active_subscriptions": stats.active,
        "avg_amount": round(stats.average_amount, 1),
        "success_rate": round(stats.success_rate, 1),
    }, indent=2))
    return 0


def cmd_create(orch: LifecycleOrchestrator, args: argparse.Namespace) -> int:
    result = asyncio.run(orch.create_record(args.name, args.amount, args.condition))
    code = _report(result)
    if code == 0 and result.value is not None:
        print(_format_record(result.value))
    return code


def cmd_verify(orch: LifecycleOrchestrator, args: argparse.Namespace) -> int:
    result = asyncio.run(orch.verify_record(args.id))
    code = _report(result)
    if code == 0:
        record = orch.store.get(args.id)
        amount = result.value if result.value is not None else (
            record.clear_amount if record is not None else None
        )
        print(f"Amount: {amount}")
    return code


def cmd_preview(orch: LifecycleOrchestrator, args: argparse.Namespace) -> int:
    result = asyncio.run(orch.preview_record(args.id))
    code = _report(result)
    if code == 0:
        print(f"Amount: {result.value}")
    return code


def cmd_status(config: AutoPayConfig, args: argparse.Namespace) -> int:
    sim_path = args.sim or config.sim_state_path
    status = {
        "backend": "simulated" if sim_path is not None else (
            "web3" if config.ledger_configured else "unconfigured"
        ),
        "sim_state_path": str(sim_path) if sim_path is not None else None,
        "rpc_url": config.rpc_url,
        "contract_address": config.contract_address,
        "chain_id": config.chain_id,
        "signer_configured": bool(config.private_key),
        "condition_range": [config.min_condition, config.max_condition],
        "max_amount": config.max_amount,
        "config_errors": config.validate(),
    }
    print(json.dumps(status, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autopay",
        description="Confidential auto-pay records on an FHE-enabled ledger",
    )
    parser.add_argument("--config", type=Path, help="JSON config file")
    parser.add_argument("--env-file", type=Path, help=".env file (default: ./.env)")
    parser.add_argument("--sim", type=Path, help="Use a simulated ledger persisted at PATH")
    parser.add_argument("--identity", help="Acting identity on the simulated ledger")
    parser.add_argument("--backend", help="FHE backend factory as module:factory")
    parser.add_argument("--yes", action="store_true", help="Sign without prompting")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show configuration")
    sub.add_parser("list", help="List all records")

    p_search = sub.add_parser("search", help="Search records by name or creator")
    p_search.add_argument("term", help="Case-insensitive search term")

    sub.add_parser("stats", help="Show payment statistics")

    p_create = sub.add_parser("create", help="Create an encrypted auto-pay record")
    p_create.add_argument("--name", required=True, help="Record name")
    p_create.add_argument("--amount", required=True, type=int, help="Payment amount (encrypted)")
    p_create.add_argument("--condition", required=True, type=int, help="Public trigger condition")

    p_verify = sub.add_parser("verify", help="Decrypt and verify a record on-chain")
    p_verify.add_argument("--id", required=True, help="Record ID")

    p_preview = sub.add_parser("preview", help="Decrypt a record locally without submitting")
    p_preview.add_argument("--id", required=True, help="Record ID")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        config = load_config(config_file=args.config, env_file=args.env_file)
    except (OSError, ValueError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    level = logging.DEBUG if args.verbose else logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "status":
        return cmd_status(config, args)

    errors = config.validate()
    if errors:
        print(f"Configuration error: {'; '.join(errors)}", file=sys.stderr)
        return 1

    commands = {
        "list": cmd_list,
        "search": cmd_search,
        "stats": cmd_stats,
        "create": cmd_create,
        "verify": cmd_verify,
        "preview": cmd_preview,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        orch = _make_orchestrator(args, config)
    except (ImportError, AttributeError, ValueError) as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1
    orch.status.subscribe(_print_status)
    return handler(orch, args)


if __name__ == "__main__":
    raise SystemExit(main())
