"""
Payment intent store and lifecycle state machine.

    PENDING ──approve ok──▶ EXECUTED
       └────approve fail──▶ REJECTED

Only proposals that passed policy become intents; denials are never stored.
Approval checks ownership and state and claims the intent under the store
lock before any external call, so two concurrent approvals can never both
reach the signer.
"""

from __future__ import annotations

import itertools
import logging
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from .errors import (
    ExecutionFailureError,
    IntentAlreadyFinalizedError,
    IntentForbiddenError,
    IntentNotFoundError,
    InvalidRecipientError,
)
from .ledger import SpendLedger

logger = logging.getLogger(__name__)


class IntentStatus(str, Enum):
    PENDING = "PENDING"
    EXECUTED = "EXECUTED"
    REJECTED = "REJECTED"


@dataclass
class PaymentIntent:
    """A proposed transfer awaiting (or past) principal approval."""

    id: str
    principal_id: str
    source_id: str
    recipient_id: str
    amount: int
    created_at: datetime
    status: IntentStatus = IntentStatus.PENDING
    executed_at: Optional[datetime] = None
    transaction_ref: Optional[str] = None
    note: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == IntentStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "principal_id": self.principal_id,
            "source_id": self.source_id,
            "recipient_id": self.recipient_id,
            "amount": self.amount,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "transaction_ref": self.transaction_ref,
            "note": self.note,
            "failure_reason": self.failure_reason,
        }


Settle = Callable[[PaymentIntent], str]


class IntentStore:
    """Owns all intents; the only writer of status and settlement fields."""

    def __init__(
        self,
        ledger: Optional[SpendLedger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.ledger = ledger
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._intents: dict[str, PaymentIntent] = {}
        self._seq: dict[str, int] = {}
        self._counter = itertools.count()
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._intents)

    def create(
        self,
        principal_id: str,
        source_id: str,
        recipient_id: str,
        amount: int,
        note: Optional[str] = None,
    ) -> PaymentIntent:
        """Insert a new PENDING intent.

        Callers must already hold an allow decision for these parameters;
        the store does not re-check policy.
        """
        intent = PaymentIntent(
            id=str(uuid.uuid4()),
            principal_id=principal_id,
            source_id=source_id,
            recipient_id=recipient_id,
            amount=amount,
            created_at=self._clock(),
            note=note,
        )
        with self._lock:
            self._intents[intent.id] = intent
            self._seq[intent.id] = next(self._counter)
            created = replace(intent)
        logger.info(
            "Created payment intent %s for %d sats to %s (principal: %s)",
            intent.id, amount, recipient_id, principal_id,
        )
        return created

    def get(self, intent_id: str) -> Optional[PaymentIntent]:
        with self._lock:
            intent = self._intents.get(intent_id)
            return replace(intent) if intent else None

    def list(self, principal_id: str) -> list[PaymentIntent]:
        """Intents owned by ``principal_id``, newest first."""
        with self._lock:
            owned = [
                (i.created_at, self._seq[i.id], replace(i))
                for i in self._intents.values()
                if i.principal_id == principal_id
            ]
        owned.sort(key=lambda row: (row[0], row[1]), reverse=True)
        return [row[2] for row in owned]

    def list_pending(self, principal_id: str) -> list[PaymentIntent]:
        return [i for i in self.list(principal_id) if i.is_pending]

    def approve(self, principal_id: str, intent_id: str, settle: Settle) -> PaymentIntent:
        """Approve and execute a pending intent.

        ``settle`` receives a copy of the claimed intent and returns the
        settlement reference. It runs outside the store lock.

        Raises:
            IntentNotFoundError, IntentForbiddenError,
            IntentAlreadyFinalizedError: precondition failures, nothing changes.
            InvalidRecipientError, ExecutionFailureError: settlement failed and
                the intent is now REJECTED.
        """
        claimed = self._claim(principal_id, intent_id)

        try:
            transaction_ref = settle(claimed)
            if not transaction_ref:
                raise ValueError("Signer returned no settlement reference")
        except InvalidRecipientError as exc:
            self._reject(intent_id, str(exc))
            raise
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"
            self._reject(intent_id, reason)
            raise ExecutionFailureError(intent_id, reason) from exc

        executed = self._execute(intent_id, transaction_ref)
        if self.ledger is not None:
            self.ledger.add_spent(executed.principal_id, executed.amount)
        logger.info(
            "Payment intent %s executed successfully. Ref: %s", intent_id, transaction_ref
        )
        return executed

    def _claim(self, principal_id: str, intent_id: str) -> PaymentIntent:
        with self._lock:
            intent = self._intents.get(intent_id)
            if intent is None:
                raise IntentNotFoundError(intent_id)
            if intent.principal_id != principal_id:
                raise IntentForbiddenError(intent_id)
            if intent.status != IntentStatus.PENDING:
                raise IntentAlreadyFinalizedError(intent_id, intent.status.value)
            if intent_id in self._in_flight:
                raise IntentAlreadyFinalizedError(intent_id, "EXECUTING")
            self._in_flight.add(intent_id)
            return replace(intent)

    def _execute(self, intent_id: str, transaction_ref: str) -> PaymentIntent:
        with self._lock:
            intent = self._intents[intent_id]
            intent.status = IntentStatus.EXECUTED
            intent.executed_at = self._clock()
            intent.transaction_ref = transaction_ref
            self._in_flight.discard(intent_id)
            return replace(intent)

    def _reject(self, intent_id: str, reason: str) -> None:
        with self._lock:
            intent = self._intents[intent_id]
            intent.status = IntentStatus.REJECTED
            intent.failure_reason = reason
            self._in_flight.discard(intent_id)
        logger.info("Payment intent %s rejected: %s", intent_id, reason)
