"""Tests for delegated policy checks."""

import pytest

from intentguard.directory import Recipient, StaticRecipientDirectory
from intentguard.errors import DirectoryError, PolicyViolationError
from intentguard.ledger import SpendLedger
from intentguard.policy import DelegatedPolicy, PolicyEvaluator, check_policy


ALICE = Recipient(id="alice", address="0x" + "11" * 20, name="Alice")
BOB = Recipient(id="bob", address="0x" + "22" * 20)


def make_policy(**kwargs):
    defaults = dict(
        min_tx_amount=500,
        max_tx_amount=1000,
        daily_spend_limit=5000,
        allowed_recipients={"alice": ALICE, "bob": BOB},
    )
    defaults.update(kwargs)
    return DelegatedPolicy(**defaults)


class TestCheckPolicy:
    def test_allows_within_limits(self):
        decision = check_policy(make_policy(), 0, "alice", 700)
        assert decision.allowed
        assert decision.reason is None

    def test_bounds_are_inclusive(self):
        policy = make_policy()
        assert check_policy(policy, 0, "alice", 500).allowed
        assert check_policy(policy, 0, "alice", 1000).allowed

    def test_below_minimum(self):
        decision = check_policy(make_policy(), 0, "alice", 400)
        assert not decision.allowed
        assert decision.reason == (
            "Amount 400 sats is below minimum single transaction limit of 500 sats"
        )

    def test_above_maximum(self):
        decision = check_policy(make_policy(), 0, "alice", 1200)
        assert not decision.allowed
        assert decision.reason == (
            "Amount 1200 sats exceeds maximum single transaction limit of 1000 sats"
        )

    def test_unknown_recipient_lists_allowed(self):
        decision = check_policy(make_policy(), 0, "mallory", 700)
        assert not decision.allowed
        assert decision.reason == (
            "Recipient 'mallory' is not in allowed recipients list. Allowed: alice, bob"
        )

    def test_daily_limit_exceeded(self):
        decision = check_policy(make_policy(), 4900, "alice", 700)
        assert not decision.allowed
        assert decision.reason == (
            "Daily spend limit exceeded. Current: 4900 sats, Requested: 700 sats, Limit: 5000 sats"
        )

    def test_reaching_daily_limit_exactly_is_allowed(self):
        assert check_policy(make_policy(), 4300, "alice", 700).allowed

    def test_amount_checks_run_before_recipient(self):
        decision = check_policy(make_policy(), 0, "mallory", 1200)
        assert "exceeds maximum" in decision.reason

    def test_recipient_check_runs_before_daily_limit(self):
        decision = check_policy(make_policy(), 5000, "mallory", 700)
        assert "not in allowed recipients" in decision.reason

    def test_raise_for_denial(self):
        check_policy(make_policy(), 0, "alice", 700).raise_for_denial()
        with pytest.raises(PolicyViolationError, match="below minimum") as exc_info:
            check_policy(make_policy(), 0, "alice", 1).raise_for_denial()
        assert "500 sats" in exc_info.value.reason


class TestDelegatedPolicy:
    def test_rejects_inverted_bounds(self):
        with pytest.raises(ValueError, match="max_tx_amount"):
            make_policy(min_tx_amount=1000, max_tx_amount=500)

    def test_rejects_negative_limits(self):
        with pytest.raises(ValueError):
            make_policy(min_tx_amount=-1)
        with pytest.raises(ValueError):
            make_policy(daily_spend_limit=-1)

    def test_to_dict(self):
        d = make_policy().to_dict()
        assert d["min_tx_amount"] == 500
        assert d["daily_spend_limit"] == 5000
        assert [r["id"] for r in d["allowed_recipients"]] == ["alice", "bob"]


class FailingDirectory:
    def list_recipients(self):
        raise DirectoryError("directory unavailable")


def make_evaluator(ledger=None, directory=None):
    return PolicyEvaluator(
        ledger=ledger or SpendLedger(),
        min_tx_amount=500,
        max_tx_amount=1000,
        daily_spend_limit=5000,
        recipients=[ALICE],
        directory=directory,
    )


class TestPolicyEvaluator:
    def test_evaluate_reads_ledger(self):
        ledger = SpendLedger()
        evaluator = make_evaluator(ledger)
        assert evaluator.evaluate("user", "alice", 700).allowed

        ledger.add_spent("user", 4500)
        decision = evaluator.evaluate("user", "alice", 700)
        assert not decision.allowed
        assert "Daily spend limit exceeded" in decision.reason

        # Other principals have their own budget
        assert evaluator.evaluate("other", "alice", 700).allowed

    def test_resolve_address(self):
        evaluator = make_evaluator()
        assert evaluator.resolve_address("alice") == ALICE.address
        assert evaluator.resolve_address("bob") is None

    def test_snapshot_is_detached(self):
        evaluator = make_evaluator()
        snapshot = evaluator.snapshot()
        evaluator.set_recipients([BOB])
        assert list(snapshot.allowed_recipients) == ["alice"]
        assert list(evaluator.snapshot().allowed_recipients) == ["bob"]

    def test_refresh_replaces_allow_list(self):
        directory = StaticRecipientDirectory([BOB])
        evaluator = make_evaluator(directory=directory)

        assert evaluator.refresh_recipients()
        assert evaluator.evaluate("user", "bob", 700).allowed
        assert not evaluator.evaluate("user", "alice", 700).allowed

    def test_refresh_without_directory_is_noop(self):
        evaluator = make_evaluator()
        assert not evaluator.refresh_recipients()
        assert evaluator.resolve_address("alice") == ALICE.address

    def test_refresh_failure_keeps_current_list(self):
        evaluator = make_evaluator(directory=FailingDirectory())
        assert not evaluator.refresh_recipients()
        assert evaluator.evaluate("user", "alice", 700).allowed

    def test_empty_directory_keeps_current_list(self):
        evaluator = make_evaluator(directory=StaticRecipientDirectory([]))
        assert not evaluator.refresh_recipients()
        assert evaluator.resolve_address("alice") == ALICE.address
