"""Runtime configuration — defaults, JSON config file, .env, environment.

Precedence, lowest to highest:
    1. dataclass defaults
    2. JSON config file (keys are field names)
    3. .env file (AUTOPAY_* names)
    4. process environment (AUTOPAY_* names)

The .env file is read with python-dotenv without touching os.environ.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from dotenv import dotenv_values


SEPOLIA_CHAIN_ID = 11155111
UINT32_MAX = 2**32 - 1


@dataclass(frozen=True)
class AutoPayConfig:
    """Typed configuration for ledger access and input limits."""
    rpc_url: Optional[str] = None
    private_key: Optional[str] = None
    contract_address: Optional[str] = None
    chain_id: int = SEPOLIA_CHAIN_ID
    receipt_timeout: float = 300.0
    min_condition: int = 0
    max_condition: int = UINT32_MAX
    max_amount: int = UINT32_MAX
    log_level: str = "WARNING"
    sim_state_path: Optional[Path] = None

    @property
    def ledger_configured(self) -> bool:
        return bool(self.rpc_url and self.contract_address)

    def validate(self) -> list[str]:
        """Return configuration problems. Empty list means valid."""
        errors: list[str] = []
        if self.min_condition > self.max_condition:
            errors.append(
                f"min_condition ({self.min_condition}) exceeds "
                f"max_condition ({self.max_condition})"
            )
        if self.max_amount < 0:
            errors.append("max_amount must be non-negative")
        if self.receipt_timeout <= 0:
            errors.append("receipt_timeout must be positive")
        if bool(self.rpc_url) != bool(self.contract_address):
            errors.append("rpc_url and contract_address must be set together")
        if self.private_key and not self.rpc_url:
            errors.append("private_key given without rpc_url")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"unknown log_level: {self.log_level}")
        return errors


def _path(value: str) -> Path:
    return Path(value).expanduser()


# field name -> (environment variable, parser)
_ENV_FIELDS: dict[str, tuple[str, Callable[[str], Any]]] = {
    "rpc_url": ("AUTOPAY_RPC_URL", str),
    "private_key": ("AUTOPAY_PRIVATE_KEY", str),
    "contract_address": ("AUTOPAY_CONTRACT_ADDRESS", str),
    "chain_id": ("AUTOPAY_CHAIN_ID", int),
    "receipt_timeout": ("AUTOPAY_RECEIPT_TIMEOUT", float),
    "min_condition": ("AUTOPAY_MIN_CONDITION", int),
    "max_condition": ("AUTOPAY_MAX_CONDITION", int),
    "max_amount": ("AUTOPAY_MAX_AMOUNT", int),
    "log_level": ("AUTOPAY_LOG_LEVEL", str),
    "sim_state_path": ("AUTOPAY_SIM_STATE", _path),
}


def _parse(field_name: str, source: str, raw: Any) -> Any:
    parser = _ENV_FIELDS[field_name][1]
    try:
        return parser(raw) if isinstance(raw, str) else parser(str(raw))
    except ValueError as exc:
        raise ValueError(f"Invalid value for {source}: {raw!r}") from exc


def _overlay(values: dict[str, Any], env: Mapping[str, Optional[str]]) -> None:
    for field_name, (var, _) in _ENV_FIELDS.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        values[field_name] = _parse(field_name, var, raw)


def load_config(
    config_file: Optional[Path] = None,
    env_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AutoPayConfig:
    """Build an AutoPayConfig from file, .env and environment.

    Args:
        config_file: Optional JSON file of field-name keys.
        env_file: .env path (default: ./.env if it exists).
        environ: Environment mapping (default: os.environ).
    """
    values: dict[str, Any] = {}
    known = {f.name for f in fields(AutoPayConfig)}

    if config_file is not None:
        data = json.loads(Path(config_file).read_text(encoding="utf-8"))
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys in {config_file}: {', '.join(unknown)}")
        for key, raw in data.items():
            values[key] = None if raw is None else _parse(key, f"{config_file}:{key}", raw)

    if env_file is None:
        default_env = Path.cwd() / ".env"
        env_file = default_env if default_env.exists() else None
    if env_file is not None and Path(env_file).exists():
        _overlay(values, dotenv_values(env_file))

    _overlay(values, os.environ if environ is None else environ)
    return AutoPayConfig(**values)
