"""
Delegated spending policy.

``check_policy`` is the pure decision function: given a policy snapshot,
today's executed spend and a proposed transfer it returns an allow/deny
decision. ``PolicyEvaluator`` binds it to the spend ledger and keeps the
recipient allow-list fresh from an external directory.

Checks run in a fixed order and the first violation wins:
1. amount >= min_tx_amount
2. amount <= max_tx_amount
3. recipient is on the allow-list
4. spent today + amount <= daily_spend_limit
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from .directory import Recipient, RecipientDirectory
from .errors import PolicyViolationError
from .ledger import SpendLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DelegatedPolicy:
    """Snapshot of the limits the agent operates within."""

    min_tx_amount: int
    max_tx_amount: int
    daily_spend_limit: int
    allowed_recipients: Mapping[str, Recipient] = field(default_factory=dict)

    def __post_init__(self):
        if self.min_tx_amount < 0:
            raise ValueError("min_tx_amount must not be negative")
        if self.max_tx_amount < self.min_tx_amount:
            raise ValueError("max_tx_amount must be >= min_tx_amount")
        if self.daily_spend_limit < 0:
            raise ValueError("daily_spend_limit must not be negative")

    def to_dict(self) -> dict:
        return {
            "min_tx_amount": self.min_tx_amount,
            "max_tx_amount": self.max_tx_amount,
            "daily_spend_limit": self.daily_spend_limit,
            "allowed_recipients": [r.to_dict() for r in self.allowed_recipients.values()],
        }


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of a policy check."""

    allowed: bool
    reason: Optional[str] = None

    def raise_for_denial(self) -> None:
        if not self.allowed:
            raise PolicyViolationError(self.reason or "Denied by policy")


ALLOWED = PolicyDecision(allowed=True)


def check_policy(
    policy: DelegatedPolicy,
    spent_today: int,
    recipient_id: str,
    amount: int,
) -> PolicyDecision:
    if amount < policy.min_tx_amount:
        return PolicyDecision(False, (
            f"Amount {amount} sats is below minimum single transaction limit "
            f"of {policy.min_tx_amount} sats"
        ))

    if amount > policy.max_tx_amount:
        return PolicyDecision(False, (
            f"Amount {amount} sats exceeds maximum single transaction limit "
            f"of {policy.max_tx_amount} sats"
        ))

    if recipient_id not in policy.allowed_recipients:
        allowed_ids = ", ".join(policy.allowed_recipients)
        return PolicyDecision(False, (
            f"Recipient '{recipient_id}' is not in allowed recipients list. "
            f"Allowed: {allowed_ids}"
        ))

    if spent_today + amount > policy.daily_spend_limit:
        return PolicyDecision(False, (
            f"Daily spend limit exceeded. Current: {spent_today} sats, "
            f"Requested: {amount} sats, Limit: {policy.daily_spend_limit} sats"
        ))

    return ALLOWED


class PolicyEvaluator:
    """Evaluates proposals against the delegated policy and the ledger."""

    def __init__(
        self,
        ledger: SpendLedger,
        min_tx_amount: int,
        max_tx_amount: int,
        daily_spend_limit: int,
        recipients: Iterable[Recipient] = (),
        directory: Optional[RecipientDirectory] = None,
    ):
        self.ledger = ledger
        self.directory = directory
        self._lock = threading.Lock()
        self._policy = DelegatedPolicy(
            min_tx_amount=min_tx_amount,
            max_tx_amount=max_tx_amount,
            daily_spend_limit=daily_spend_limit,
            allowed_recipients=_index(recipients),
        )

    def snapshot(self) -> DelegatedPolicy:
        with self._lock:
            policy = self._policy
        return DelegatedPolicy(
            min_tx_amount=policy.min_tx_amount,
            max_tx_amount=policy.max_tx_amount,
            daily_spend_limit=policy.daily_spend_limit,
            allowed_recipients=dict(policy.allowed_recipients),
        )

    def set_recipients(self, recipients: Iterable[Recipient]) -> None:
        indexed = _index(recipients)
        with self._lock:
            self._policy = DelegatedPolicy(
                min_tx_amount=self._policy.min_tx_amount,
                max_tx_amount=self._policy.max_tx_amount,
                daily_spend_limit=self._policy.daily_spend_limit,
                allowed_recipients=indexed,
            )

    def refresh_recipients(self) -> bool:
        """Pull the allow-list from the directory.

        Returns True if the list was replaced. Directory failures keep the
        current allow-list.
        """
        if self.directory is None:
            return False
        try:
            recipients = self.directory.list_recipients()
        except Exception as exc:
            logger.warning("Recipient directory refresh failed, keeping current list: %s", exc)
            return False
        if not recipients:
            logger.warning("Recipient directory returned no recipients, keeping current list")
            return False
        self.set_recipients(recipients)
        logger.debug("Recipient allow-list refreshed (%d entries)", len(recipients))
        return True

    def resolve_address(self, recipient_id: str) -> Optional[str]:
        with self._lock:
            recipient = self._policy.allowed_recipients.get(recipient_id)
        return recipient.address if recipient else None

    def evaluate(self, principal_id: str, recipient_id: str, amount: int) -> PolicyDecision:
        with self._lock:
            policy = self._policy
        spent_today = self.ledger.get_spent(principal_id)
        return check_policy(policy, spent_today, recipient_id, amount)


def _index(recipients: Iterable[Recipient]) -> dict[str, Recipient]:
    indexed: dict[str, Recipient] = {}
    for recipient in recipients:
        indexed[recipient.id] = recipient
    return indexed
