"""Tests for the tamper-evident intent journal."""

import json

import pytest
from eth_account import Account

from intentguard.audit import AUDIT_KEY_ENV, AuditEntry, AuditTrail, EventType
from intentguard.directory import Recipient
from intentguard.engine import AuthorizationEngine
from intentguard.errors import AuditIntegrityError
from intentguard.intents import IntentStatus, IntentStore
from intentguard.ledger import SpendLedger
from intentguard.policy import PolicyEvaluator
from intentguard.signing import DryRunSigner


@pytest.fixture(autouse=True)
def no_env_key(monkeypatch):
    monkeypatch.delenv(AUDIT_KEY_ENV, raising=False)


def make_trail(tmp_path):
    return AuditTrail(
        path=tmp_path / "audit.jsonl",
        key_path=tmp_path / "secret" / "audit_hmac.key",
    )


def make_engine(trail, signer=None):
    ledger = SpendLedger()
    return AuthorizationEngine(
        evaluator=PolicyEvaluator(
            ledger=ledger,
            min_tx_amount=500,
            max_tx_amount=1000,
            daily_spend_limit=5000,
            recipients=[Recipient("alice", Account.create().address)],
        ),
        store=IntentStore(ledger=ledger),
        signer=signer or DryRunSigner(),
        audit=trail,
    )


def rewrite(path, edit):
    lines = path.read_text().splitlines()
    edit(lines)
    path.write_text("\n".join(lines) + "\n")


class TestChain:
    def test_edited_amount_is_detected(self, tmp_path):
        trail = make_trail(tmp_path)
        trail.append(AuditEntry.denied("u-1", "alice", 1200, "too much"))
        trail.append(AuditEntry.approval_requested("u-1", "i-1"))

        def inflate(lines):
            first = json.loads(lines[0])
            first["amount_sats"] = 9999
            lines[0] = json.dumps(first, separators=(",", ":"))

        rewrite(tmp_path / "audit.jsonl", inflate)
        with pytest.raises(AuditIntegrityError, match="line 1: entry hash mismatch"):
            trail.entries()

    def test_dropped_entry_is_detected(self, tmp_path):
        trail = make_trail(tmp_path)
        for i in range(3):
            trail.append(AuditEntry.approval_requested("u-1", f"i-{i}"))

        rewrite(tmp_path / "audit.jsonl", lambda lines: lines.pop(1))
        with pytest.raises(AuditIntegrityError, match="previous hash mismatch") as exc_info:
            trail.entries()
        assert exc_info.value.line == 2

    def test_garbage_line_is_detected(self, tmp_path):
        trail = make_trail(tmp_path)
        trail.append(AuditEntry.approval_requested("u-1", "i-1"))
        rewrite(tmp_path / "audit.jsonl", lambda lines: lines.append("{not json"))
        with pytest.raises(AuditIntegrityError, match="unreadable entry"):
            trail.entries()

    def test_tampered_journal_is_refused_on_open(self, tmp_path):
        trail = make_trail(tmp_path)
        trail.append(AuditEntry.approval_requested("u-1", "i-1"))
        rewrite(tmp_path / "audit.jsonl", lambda lines: lines.insert(0, lines[0]))
        with pytest.raises(AuditIntegrityError):
            make_trail(tmp_path)

    def test_chain_continues_after_reopen(self, tmp_path):
        make_trail(tmp_path).append(AuditEntry.approval_requested("u-1", "i-1"))

        reopened = make_trail(tmp_path)
        reopened.append(AuditEntry.approval_requested("u-1", "i-2"))
        entries = reopened.entries()
        assert [e.intent_id for e in entries] == ["i-1", "i-2"]
        assert entries[0].prev_hash is None
        assert entries[1].prev_hash == entries[0].entry_hash

    def test_filters_and_limit(self, tmp_path):
        trail = make_trail(tmp_path)
        trail.append(AuditEntry.approval_requested("u-1", "i-1"))
        trail.append(AuditEntry.denied("u-2", "mallory", 700, "nope"))
        trail.append(AuditEntry.approval_requested("u-1", "i-2"))

        assert len(trail.entries(principal_id="u-1")) == 2
        assert [e.intent_id for e in trail.entries(intent_id="i-2")] == ["i-2"]
        denied = trail.entries(event_type=EventType.POLICY_DENIED)
        assert denied[0].denial_reason == "nope"
        assert [e.intent_id for e in trail.entries(limit=1)] == ["i-2"]

    def test_files_are_private(self, tmp_path):
        make_trail(tmp_path)
        assert (tmp_path / "audit.jsonl").stat().st_mode & 0o777 == 0o600
        assert (tmp_path / "secret" / "audit_hmac.key").stat().st_mode & 0o777 == 0o600

    def test_env_key_overrides_key_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv(AUDIT_KEY_ENV, "shared-secret")
        trail = make_trail(tmp_path)
        trail.append(AuditEntry.approval_requested("u-1", "i-1"))
        assert not (tmp_path / "secret" / "audit_hmac.key").exists()

        monkeypatch.setenv(AUDIT_KEY_ENV, "other-secret")
        with pytest.raises(AuditIntegrityError):
            make_trail(tmp_path)


class TestEntries:
    def test_finalized_requires_final_status(self):
        store = IntentStore()
        intent = store.create("u-1", "wallet", "alice", 700)
        with pytest.raises(ValueError, match="not finalized"):
            AuditEntry.finalized(intent)


class TestEngineJournal:
    def test_records_lifecycle(self, tmp_path):
        trail = make_trail(tmp_path)
        engine = make_engine(trail)

        intent_id = engine.propose("user", "wallet", "alice", 700).intent_id
        engine.propose("user", "wallet", "alice", 5000)
        engine.confirm("user", intent_id)
        engine.confirm("user", intent_id)

        assert [e.event_type for e in trail.entries()] == [
            "intent_proposed",
            "policy_denied",
            "approval_requested",
            "intent_executed",
            "approval_requested",
        ]
        proposed, denied, _, executed, _ = trail.entries()
        assert proposed.to_status == "PENDING"
        assert proposed.amount_sats == 700
        assert "exceeds maximum" in denied.denial_reason
        assert denied.intent_id is None
        assert (executed.from_status, executed.to_status) == ("PENDING", "EXECUTED")
        assert executed.transaction_ref == engine.get_intent(intent_id).transaction_ref

    def test_records_rejection(self, tmp_path):
        trail = make_trail(tmp_path)
        engine = make_engine(trail, DryRunSigner(fail_with="rpc down"))

        intent_id = engine.propose("user", "wallet", "alice", 700).intent_id
        engine.confirm("user", intent_id)

        history = trail.entries(intent_id=intent_id)
        assert [e.event_type for e in history] == [
            "intent_proposed", "approval_requested", "intent_rejected",
        ]
        rejected = history[-1]
        assert rejected.to_status == IntentStatus.REJECTED.value
        assert rejected.transaction_ref is None
        assert rejected.failure_reason == "SigningError: rpc down"
