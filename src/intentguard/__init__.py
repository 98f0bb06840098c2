"""
intentguard — Payment intent authorization for AI agents.

The agent proposes, the policy decides, the human approves:
Agent proposes transfer → Policy gates creation → Principal confirms → Signer settles.
"""

__version__ = "0.1.0"

from .directory import HttpRecipientDirectory, Recipient, StaticRecipientDirectory
from .ledger import SpendLedger
from .policy import DelegatedPolicy, PolicyDecision, PolicyEvaluator, check_policy
from .intents import IntentStatus, IntentStore, PaymentIntent
from .signing import DryRunSigner, EthAccountSigner, SigningCollaborator
from .engine import AuthorizationEngine, ConfirmationResult, ProposalResult
from .audit import AuditEntry, AuditTrail, EventType
from .config import EngineConfig, build_engine

__all__ = [
    "Recipient", "StaticRecipientDirectory", "HttpRecipientDirectory",
    "SpendLedger",
    "DelegatedPolicy", "PolicyDecision", "PolicyEvaluator", "check_policy",
    "IntentStatus", "IntentStore", "PaymentIntent",
    "SigningCollaborator", "DryRunSigner", "EthAccountSigner",
    "AuthorizationEngine", "ProposalResult", "ConfirmationResult",
    "AuditEntry", "AuditTrail", "EventType",
    "EngineConfig", "build_engine",
]
