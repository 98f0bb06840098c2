"""
Authorization engine.

Flow:
1. propose: refresh recipients → evaluate policy → create PENDING intent
2. confirm: claim intent → resolve recipient → sign and submit → finalize
   intent → commit spend

The engine is the surface transports talk to. Every operation returns a
result; approval failures are reported as error codes, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .audit import AuditEntry, AuditTrail
from .errors import ExecutionFailureError, IntentError, InvalidRecipientError
from .intents import IntentStore, PaymentIntent
from .money import sats_to_wei
from .policy import DelegatedPolicy, PolicyDecision, PolicyEvaluator
from .signing import SigningCollaborator

logger = logging.getLogger(__name__)


@dataclass
class ProposalResult:
    """Outcome of a proposal: a new PENDING intent or a denial."""

    status: str
    intent_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.status == "PENDING"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "intent_id": self.intent_id,
            "reason": self.reason,
        }


@dataclass
class ConfirmationResult:
    """Outcome of an approval attempt."""

    status: str
    intent_id: str
    transaction_ref: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None

    @property
    def executed(self) -> bool:
        return self.status == "EXECUTED"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "intent_id": self.intent_id,
            "transaction_ref": self.transaction_ref,
            "error_code": self.error_code,
            "error": self.error,
        }


class AuthorizationEngine:
    """Orchestrates policy, intent lifecycle and signing."""

    def __init__(
        self,
        evaluator: PolicyEvaluator,
        store: IntentStore,
        signer: SigningCollaborator,
        audit: Optional[AuditTrail] = None,
    ):
        self.evaluator = evaluator
        self.store = store
        self.signer = signer
        self.audit = audit

    @property
    def ledger(self):
        return self.evaluator.ledger

    def propose(
        self,
        principal_id: str,
        source_id: str,
        recipient_id: str,
        amount: int,
        note: Optional[str] = None,
    ) -> ProposalResult:
        # Only the type of each field is checked up front; a blank recipient
        # is left to the allow-list so the ordered policy checks decide.
        invalid = _validate_proposal(recipient_id, amount, note)
        if invalid is not None:
            return self._deny(principal_id, recipient_id, amount, invalid)

        self.evaluator.refresh_recipients()
        decision = self.evaluator.evaluate(principal_id, recipient_id, amount)
        if not decision.allowed:
            return self._deny(principal_id, recipient_id, amount, decision)

        intent = self.store.create(
            principal_id=principal_id,
            source_id=source_id,
            recipient_id=recipient_id,
            amount=amount,
            note=note,
        )
        self._audit(AuditEntry.proposed(intent))
        return ProposalResult(status="PENDING", intent_id=intent.id)

    def propose_request(
        self,
        principal_id: str,
        source_id: str,
        request: Mapping[str, Any],
    ) -> ProposalResult:
        """Propose from a structured creation request.

        Accepts ``{"amount", "recipient_id", "note"?}`` (``amount_sats`` is
        accepted in place of ``amount``). JSON numbers such as ``700.0`` are
        whole sats; ``7.5`` is not. The request gets no more trust than a
        direct call.
        """
        amount = request.get("amount", request.get("amount_sats"))
        recipient_id = request.get("recipient_id")
        note = request.get("note")
        if amount is None:
            return self._deny(principal_id, recipient_id, None, PolicyDecision(False, "Amount is required"))
        if not isinstance(recipient_id, str):
            return self._deny(
                principal_id, None, None, PolicyDecision(False, "recipient_id must be a string")
            )
        if isinstance(amount, float) and amount.is_integer():
            amount = int(amount)
        return self.propose(principal_id, source_id, recipient_id, amount, note)

    def confirm(self, principal_id: str, intent_id: str) -> ConfirmationResult:
        logger.info("User %s attempting to approve intent %s", principal_id, intent_id)
        self._audit(AuditEntry.approval_requested(principal_id, intent_id))
        try:
            intent = self.store.approve(principal_id, intent_id, self._settle)
        except IntentError as exc:
            if isinstance(exc, (InvalidRecipientError, ExecutionFailureError)):
                rejected = self.store.get(intent_id)
                if rejected is not None:
                    self._audit(AuditEntry.finalized(rejected))
            else:
                logger.info("Approval of intent %s refused: %s", intent_id, exc)
            return ConfirmationResult(
                status="ERROR",
                intent_id=intent_id,
                error_code=exc.code,
                error=str(exc),
            )

        self._audit(AuditEntry.finalized(intent))
        return ConfirmationResult(
            status="EXECUTED",
            intent_id=intent.id,
            transaction_ref=intent.transaction_ref,
        )

    def get_intent(self, intent_id: str) -> Optional[PaymentIntent]:
        return self.store.get(intent_id)

    def list_intents(self, principal_id: str) -> list[PaymentIntent]:
        return self.store.list(principal_id)

    def list_pending(self, principal_id: str) -> list[PaymentIntent]:
        return self.store.list_pending(principal_id)

    def get_policy_snapshot(self) -> DelegatedPolicy:
        return self.evaluator.snapshot()

    def get_daily_spend(self, principal_id: str) -> int:
        return self.ledger.get_spent(principal_id)

    def _settle(self, intent: PaymentIntent) -> str:
        self.evaluator.refresh_recipients()
        address = self.evaluator.resolve_address(intent.recipient_id)
        if address is None:
            raise InvalidRecipientError(intent.id, intent.recipient_id)
        return self.signer.sign_and_submit(intent.source_id, address, sats_to_wei(intent.amount))

    def _deny(
        self,
        principal_id: str,
        recipient_id: Optional[str],
        amount: Any,
        decision: PolicyDecision,
    ) -> ProposalResult:
        logger.info("Policy check failed: %s", decision.reason)
        self._audit(AuditEntry.denied(
            principal_id,
            recipient_id if isinstance(recipient_id, str) else None,
            amount if _is_int(amount) else None,
            decision.reason,
        ))
        return ProposalResult(status="DENIED", reason=decision.reason)

    def _audit(self, entry: AuditEntry) -> None:
        # The journal records outcomes; it never changes them.
        if self.audit is None:
            return
        try:
            self.audit.append(entry)
        except OSError as exc:
            logger.warning(
                "Audit write failed for %s (intent %s): %s",
                entry.event_type, entry.intent_id, exc,
            )


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_proposal(recipient_id: Any, amount: Any, note: Any) -> Optional[PolicyDecision]:
    if not _is_int(amount):
        return PolicyDecision(False, f"Amount must be an integer number of sats, got {amount!r}")
    if amount <= 0:
        return PolicyDecision(False, f"Amount must be positive, got {amount} sats")
    if not isinstance(recipient_id, str):
        return PolicyDecision(False, "recipient_id is required")
    if note is not None and not isinstance(note, str):
        return PolicyDecision(False, "note must be a string")
    return None
