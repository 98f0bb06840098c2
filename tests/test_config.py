"""Tests for environment configuration and engine wiring."""

import json

import pytest
from eth_account import Account

from intentguard.audit import AuditTrail
from intentguard.config import (
    DEFAULT_DAILY_LIMIT_SATS,
    EngineConfig,
    build_engine,
    build_signer,
    parse_recipients,
)
from intentguard.errors import ConfigError
from intentguard.signing import DryRunSigner, EthAccountSigner


RECIPIENTS = json.dumps([
    {"id": "ritesh", "address": Account.create().address, "name": "Ritesh"},
    {"id": "wallet", "address": Account.create().address},
])


class TestFromEnv:
    def test_defaults(self):
        config = EngineConfig.from_env({})
        assert config.min_tx_amount == 500
        assert config.max_tx_amount == 10_000
        assert config.daily_spend_limit == DEFAULT_DAILY_LIMIT_SATS
        assert config.recipients == []
        assert config.signer == "dry-run"
        assert config.principal_id == "local-user"
        assert config.source_id == "default-wallet"
        assert config.audit_path is None

    def test_overrides(self, tmp_path):
        config = EngineConfig.from_env({
            "MIN_SINGLE_TX_SATS": "100",
            "MAX_SINGLE_TX_SATS": "2000",
            "DAILY_SPEND_LIMIT_SATS": "9000",
            "INTENTGUARD_RECIPIENTS": RECIPIENTS,
            "INTENTGUARD_AUDIT_PATH": str(tmp_path / "audit.jsonl"),
            "REAL_USER_ID": "user-42",
            "REAL_WALLET_ID": "wallet-42",
        })
        assert (config.min_tx_amount, config.max_tx_amount, config.daily_spend_limit) == (100, 2000, 9000)
        assert [r.id for r in config.recipients] == ["ritesh", "wallet"]
        assert config.audit_path == tmp_path / "audit.jsonl"
        assert config.principal_id == "user-42"
        assert config.source_id == "wallet-42"

    def test_recipients_file(self, tmp_path):
        path = tmp_path / "recipients.json"
        path.write_text(RECIPIENTS)
        config = EngineConfig.from_env({"INTENTGUARD_RECIPIENTS_FILE": str(path)})
        assert len(config.recipients) == 2

    def test_missing_recipients_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Cannot read"):
            EngineConfig.from_env({"INTENTGUARD_RECIPIENTS_FILE": str(tmp_path / "missing.json")})

    def test_bad_integer(self):
        with pytest.raises(ConfigError, match="MAX_SINGLE_TX_SATS must be an integer"):
            EngineConfig.from_env({"MAX_SINGLE_TX_SATS": "lots"})

    def test_bad_recipients_json(self):
        with pytest.raises(ConfigError, match="not valid JSON"):
            EngineConfig.from_env({"INTENTGUARD_RECIPIENTS": "[{"})

    def test_bad_recipient_entry(self):
        with pytest.raises(ConfigError, match="Invalid recipient entry"):
            parse_recipients(json.dumps([{"id": "x"}]))

    def test_unknown_signer(self):
        with pytest.raises(ConfigError, match="INTENTGUARD_SIGNER"):
            EngineConfig.from_env({"INTENTGUARD_SIGNER": "hsm"})

    def test_local_signer_needs_keys(self):
        with pytest.raises(ConfigError, match="requires INTENTGUARD_SIGNER_KEYS"):
            EngineConfig.from_env({"INTENTGUARD_SIGNER": "local"})


class TestBuild:
    def test_build_signer(self):
        assert isinstance(build_signer(EngineConfig()), DryRunSigner)

        key = Account.create().key.hex()
        config = EngineConfig.from_env({
            "INTENTGUARD_SIGNER": "local",
            "INTENTGUARD_SIGNER_KEYS": json.dumps({"wallet": key}),
            "INTENTGUARD_CHAIN_ID": "8453",
        })
        signer = build_signer(config)
        assert isinstance(signer, EthAccountSigner)
        assert signer.params.chain_id == 8453

    def test_build_engine(self, tmp_path, monkeypatch):
        monkeypatch.delenv("INTENTGUARD_AUDIT_HMAC_KEY", raising=False)
        config = EngineConfig.from_env({
            "INTENTGUARD_RECIPIENTS": RECIPIENTS,
            "INTENTGUARD_AUDIT_PATH": str(tmp_path / "audit.jsonl"),
        })
        engine = build_engine(config)
        assert isinstance(engine.audit, AuditTrail)

        result = engine.propose("local-user", "default-wallet", "ritesh", 700)
        assert result.allowed
        assert engine.confirm("local-user", result.intent_id).executed
        assert engine.get_daily_spend("local-user") == 700

    def test_build_engine_rejects_inverted_limits(self):
        with pytest.raises(ConfigError, match="Invalid policy limits"):
            build_engine(EngineConfig(min_tx_amount=2000, max_tx_amount=1000))
