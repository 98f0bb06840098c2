"""
intentguard error types.

Specific exceptions for each failure mode so transports can report
every case to the end user without guessing (not found, forbidden, etc.).
"""

from __future__ import annotations

from typing import Optional


class IntentGuardError(Exception):
    """Base error for all intentguard operations."""
    pass


class ConfigError(IntentGuardError):
    """Environment configuration is missing or malformed."""
    pass


# Policy errors
class PolicyViolationError(IntentGuardError):
    """A proposed transfer was denied by the delegated policy."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


# Intent lifecycle errors
class IntentError(IntentGuardError):
    """Base error for approval failures on a specific intent."""

    code = "INTENT_ERROR"

    def __init__(self, intent_id: str, message: str):
        self.intent_id = intent_id
        super().__init__(message)


class IntentNotFoundError(IntentError):
    """No intent exists with the given id."""

    code = "NOT_FOUND"

    def __init__(self, intent_id: str):
        super().__init__(intent_id, "Payment intent not found")


class IntentForbiddenError(IntentError):
    """Caller does not own the intent."""

    code = "FORBIDDEN"

    def __init__(self, intent_id: str):
        super().__init__(intent_id, "Intent does not belong to this user")


class IntentAlreadyFinalizedError(IntentError):
    """Intent is no longer pending (or an approval is already in flight)."""

    code = "ALREADY_FINALIZED"

    def __init__(self, intent_id: str, status: str):
        self.status = status
        super().__init__(intent_id, f"Intent is already {status.lower()}")


class InvalidRecipientError(IntentError):
    """Recipient no longer resolves to a settlement address."""

    code = "INVALID_RECIPIENT"

    def __init__(self, intent_id: str, recipient_id: str):
        self.recipient_id = recipient_id
        super().__init__(intent_id, f"Invalid recipient '{recipient_id}'")


class ExecutionFailureError(IntentError):
    """The signing collaborator failed; the intent was rejected."""

    code = "EXECUTION_FAILED"

    def __init__(self, intent_id: str, reason: Optional[str] = None):
        self.reason = reason
        message = "Failed to execute transaction"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(intent_id, message)


# Collaborator errors
class SigningError(IntentGuardError):
    """Signing or submission of the transfer failed."""
    pass


class DirectoryError(IntentGuardError):
    """Recipient directory could not be read."""
    pass


class AuditIntegrityError(IntentGuardError):
    """The audit journal fails HMAC chain verification."""
    def __init__(self, line: int, detail: str):
        self.line = line
        super().__init__(f"Audit chain broken at line {line}: {detail}")
