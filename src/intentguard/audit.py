"""
Intent lifecycle journal.

Each line of the journal is one sealed ``AuditEntry``: a proposal, a
denial, an approval request or a status transition of an intent. Entries
are chained by HMAC so an edited, dropped or reordered line breaks
verification on the next read.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import secrets
import threading
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from .errors import AuditIntegrityError
from .intents import IntentStatus, PaymentIntent


AUDIT_KEY_ENV = "INTENTGUARD_AUDIT_HMAC_KEY"


class EventType(str, Enum):
    INTENT_PROPOSED = "intent_proposed"
    POLICY_DENIED = "policy_denied"
    APPROVAL_REQUESTED = "approval_requested"
    INTENT_EXECUTED = "intent_executed"
    INTENT_REJECTED = "intent_rejected"


_FINAL_EVENTS = {
    IntentStatus.EXECUTED: EventType.INTENT_EXECUTED,
    IntentStatus.REJECTED: EventType.INTENT_REJECTED,
}


@dataclass
class AuditEntry:
    """What happened to an intent (or a proposal that never became one)."""

    event_type: str
    principal_id: str
    intent_id: Optional[str] = None
    recipient_id: Optional[str] = None
    amount_sats: Optional[int] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    transaction_ref: Optional[str] = None
    denial_reason: Optional[str] = None
    failure_reason: Optional[str] = None
    recorded_at: Optional[str] = None
    prev_hash: Optional[str] = None
    entry_hash: Optional[str] = None

    @classmethod
    def proposed(cls, intent: PaymentIntent) -> AuditEntry:
        return cls(
            event_type=EventType.INTENT_PROPOSED.value,
            principal_id=intent.principal_id,
            intent_id=intent.id,
            recipient_id=intent.recipient_id,
            amount_sats=intent.amount,
            to_status=intent.status.value,
        )

    @classmethod
    def denied(
        cls,
        principal_id: str,
        recipient_id: Optional[str],
        amount_sats: Optional[int],
        reason: Optional[str],
    ) -> AuditEntry:
        return cls(
            event_type=EventType.POLICY_DENIED.value,
            principal_id=principal_id,
            recipient_id=recipient_id,
            amount_sats=amount_sats,
            denial_reason=reason,
        )

    @classmethod
    def approval_requested(cls, principal_id: str, intent_id: str) -> AuditEntry:
        return cls(
            event_type=EventType.APPROVAL_REQUESTED.value,
            principal_id=principal_id,
            intent_id=intent_id,
        )

    @classmethod
    def finalized(cls, intent: PaymentIntent) -> AuditEntry:
        """Transition out of PENDING into the intent's current (final) status."""
        event = _FINAL_EVENTS.get(intent.status)
        if event is None:
            raise ValueError(f"Intent {intent.id} is not finalized ({intent.status.value})")
        return cls(
            event_type=event.value,
            principal_id=intent.principal_id,
            intent_id=intent.id,
            recipient_id=intent.recipient_id,
            amount_sats=intent.amount,
            from_status=IntentStatus.PENDING.value,
            to_status=intent.status.value,
            transaction_ref=intent.transaction_ref,
            failure_reason=intent.failure_reason,
        )

    def body(self) -> dict:
        """Sealed content: every set field except the entry's own hash."""
        return {
            k: v for k, v in asdict(self).items()
            if v is not None and k != "entry_hash"
        }


class AuditTrail:
    """Append-only JSONL journal with an HMAC chain over its entries."""

    def __init__(self, path: Path, key_path: Optional[Path] = None):
        self.path = Path(path)
        self.key_path = Path(key_path) if key_path else self.path.with_suffix(".key")
        self._lock = threading.Lock()
        _touch_private(self.path)
        self._key = _load_key(self.key_path)
        self._head = self._verified_head()

    def append(self, entry: AuditEntry) -> AuditEntry:
        """Seal ``entry`` onto the end of the chain and write it out."""
        with self._lock:
            entry.recorded_at = datetime.now(timezone.utc).isoformat()
            entry.prev_hash = self._head
            entry.entry_hash = self._seal(entry.body())
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(asdict(entry), separators=(",", ":")) + "\n")
                f.flush()
                os.fsync(f.fileno())
            self._head = entry.entry_hash
        return entry

    def entries(
        self,
        principal_id: Optional[str] = None,
        intent_id: Optional[str] = None,
        event_type: Optional[EventType] = None,
        limit: int = 100,
    ) -> list[AuditEntry]:
        """Verify the whole chain, then return the newest matching entries."""
        with self._lock:
            chain = self._load_chain()
        matched = [
            e for e in chain
            if (principal_id is None or e.principal_id == principal_id)
            and (intent_id is None or e.intent_id == intent_id)
            and (event_type is None or e.event_type == event_type.value)
        ]
        return matched[-limit:]

    def _seal(self, body: dict) -> str:
        canonical = json.dumps(body, sort_keys=True, separators=(",", ":"))
        return hmac.new(self._key, canonical.encode(), hashlib.sha256).hexdigest()

    def _verified_head(self) -> Optional[str]:
        chain = self._load_chain()
        return chain[-1].entry_hash if chain else None

    def _load_chain(self) -> list[AuditEntry]:
        known = {f.name for f in fields(AuditEntry)}
        chain: list[AuditEntry] = []
        head: Optional[str] = None
        with open(self.path, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    raw = json.loads(line)
                    entry = AuditEntry(**{k: v for k, v in raw.items() if k in known})
                except (ValueError, TypeError) as exc:
                    raise AuditIntegrityError(lineno, f"unreadable entry ({exc})") from exc
                if entry.prev_hash != head:
                    raise AuditIntegrityError(lineno, "previous hash mismatch")
                if not entry.entry_hash or not hmac.compare_digest(
                    self._seal(entry.body()), entry.entry_hash
                ):
                    raise AuditIntegrityError(lineno, "entry hash mismatch")
                head = entry.entry_hash
                chain.append(entry)
        return chain


def _touch_private(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(exist_ok=True)
    os.chmod(path, 0o600)


def _load_key(key_path: Path) -> bytes:
    env_key = os.getenv(AUDIT_KEY_ENV)
    if env_key:
        return env_key.encode()
    if key_path.exists():
        stored = key_path.read_bytes().strip()
        if stored:
            return stored
    _touch_private(key_path)
    key = secrets.token_hex(32).encode()
    key_path.write_bytes(key)
    return key
