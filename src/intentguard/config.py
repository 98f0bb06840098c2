"""
Environment configuration and engine wiring.

Variables:
    MIN_SINGLE_TX_SATS, MAX_SINGLE_TX_SATS, DAILY_SPEND_LIMIT_SATS
    INTENTGUARD_RECIPIENTS        JSON list of {id, address, name?}
    INTENTGUARD_RECIPIENTS_FILE   path to a JSON file with the same shape
    INTENTGUARD_DIRECTORY_URL     optional HTTP recipient directory
    INTENTGUARD_SIGNER            "dry-run" (default) or "local"
    INTENTGUARD_SIGNER_KEYS       JSON object source_id -> private key
    INTENTGUARD_RPC_URL, INTENTGUARD_CHAIN_ID
    INTENTGUARD_AUDIT_PATH        enables the audit trail
    REAL_USER_ID, REAL_WALLET_ID  defaults for the interactive shell
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .audit import AuditTrail
from .directory import HttpRecipientDirectory, Recipient
from .engine import AuthorizationEngine
from .errors import ConfigError
from .intents import IntentStore
from .ledger import SpendLedger
from .policy import PolicyEvaluator
from .signing import DryRunSigner, EthAccountSigner, SigningCollaborator, TransferParams


DEFAULT_MIN_TX_SATS = 500
DEFAULT_MAX_TX_SATS = 10_000
DEFAULT_DAILY_LIMIT_SATS = 50_000

DEFAULT_PRINCIPAL_ID = "local-user"
DEFAULT_SOURCE_ID = "default-wallet"

SIGNER_DRY_RUN = "dry-run"
SIGNER_LOCAL = "local"


@dataclass
class EngineConfig:
    min_tx_amount: int = DEFAULT_MIN_TX_SATS
    max_tx_amount: int = DEFAULT_MAX_TX_SATS
    daily_spend_limit: int = DEFAULT_DAILY_LIMIT_SATS
    recipients: list[Recipient] = field(default_factory=list)
    directory_url: Optional[str] = None
    signer: str = SIGNER_DRY_RUN
    signer_keys: dict[str, str] = field(default_factory=dict)
    rpc_url: Optional[str] = None
    chain_id: int = 1
    audit_path: Optional[Path] = None
    principal_id: str = DEFAULT_PRINCIPAL_ID
    source_id: str = DEFAULT_SOURCE_ID

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> EngineConfig:
        env = os.environ if environ is None else environ

        recipients_raw = env.get("INTENTGUARD_RECIPIENTS")
        recipients_file = env.get("INTENTGUARD_RECIPIENTS_FILE")
        if recipients_raw is None and recipients_file:
            try:
                recipients_raw = Path(recipients_file).read_text(encoding="utf-8")
            except OSError as exc:
                raise ConfigError(f"Cannot read INTENTGUARD_RECIPIENTS_FILE: {exc}") from exc

        signer = env.get("INTENTGUARD_SIGNER", SIGNER_DRY_RUN).strip().lower()
        if signer not in {SIGNER_DRY_RUN, SIGNER_LOCAL}:
            raise ConfigError(f"INTENTGUARD_SIGNER must be '{SIGNER_DRY_RUN}' or '{SIGNER_LOCAL}', got '{signer}'")

        signer_keys = _parse_json(env.get("INTENTGUARD_SIGNER_KEYS"), "INTENTGUARD_SIGNER_KEYS", {})
        if not isinstance(signer_keys, dict):
            raise ConfigError("INTENTGUARD_SIGNER_KEYS must be a JSON object")
        if signer == SIGNER_LOCAL and not signer_keys:
            raise ConfigError("INTENTGUARD_SIGNER=local requires INTENTGUARD_SIGNER_KEYS")

        audit_path = env.get("INTENTGUARD_AUDIT_PATH")

        return cls(
            min_tx_amount=_int_env(env, "MIN_SINGLE_TX_SATS", DEFAULT_MIN_TX_SATS),
            max_tx_amount=_int_env(env, "MAX_SINGLE_TX_SATS", DEFAULT_MAX_TX_SATS),
            daily_spend_limit=_int_env(env, "DAILY_SPEND_LIMIT_SATS", DEFAULT_DAILY_LIMIT_SATS),
            recipients=parse_recipients(recipients_raw) if recipients_raw else [],
            directory_url=env.get("INTENTGUARD_DIRECTORY_URL") or None,
            signer=signer,
            signer_keys={str(k): str(v) for k, v in signer_keys.items()},
            rpc_url=env.get("INTENTGUARD_RPC_URL") or None,
            chain_id=_int_env(env, "INTENTGUARD_CHAIN_ID", 1),
            audit_path=Path(audit_path) if audit_path else None,
            principal_id=env.get("REAL_USER_ID", DEFAULT_PRINCIPAL_ID),
            source_id=env.get("REAL_WALLET_ID", DEFAULT_SOURCE_ID),
        )


def parse_recipients(raw: str) -> list[Recipient]:
    data = _parse_json(raw, "recipients", [])
    if not isinstance(data, list):
        raise ConfigError("Recipients must be a JSON list")
    try:
        return [Recipient.from_dict(entry) for entry in data]
    except (ValueError, AttributeError) as exc:
        raise ConfigError(f"Invalid recipient entry: {exc}") from exc


def build_signer(config: EngineConfig) -> SigningCollaborator:
    if config.signer == SIGNER_LOCAL:
        return EthAccountSigner(
            keys=config.signer_keys,
            params=TransferParams(chain_id=config.chain_id),
            rpc_url=config.rpc_url,
        )
    return DryRunSigner()


def build_engine(
    config: EngineConfig,
    signer: Optional[SigningCollaborator] = None,
) -> AuthorizationEngine:
    """Wire ledger, evaluator, store, signer and audit trail."""
    ledger = SpendLedger()
    directory = HttpRecipientDirectory(config.directory_url) if config.directory_url else None
    try:
        evaluator = PolicyEvaluator(
            ledger=ledger,
            min_tx_amount=config.min_tx_amount,
            max_tx_amount=config.max_tx_amount,
            daily_spend_limit=config.daily_spend_limit,
            recipients=config.recipients,
            directory=directory,
        )
    except ValueError as exc:
        raise ConfigError(f"Invalid policy limits: {exc}") from exc
    audit = AuditTrail(config.audit_path) if config.audit_path else None
    return AuthorizationEngine(
        evaluator=evaluator,
        store=IntentStore(ledger=ledger),
        signer=signer or build_signer(config),
        audit=audit,
    )


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got '{raw}'") from exc


def _parse_json(raw: Optional[str], name: str, default):
    if raw is None or raw.strip() == "":
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{name} is not valid JSON: {exc}") from exc
