"""
Signing collaborators.

The engine never holds transfer logic itself: once an intent is approved
it hands (signing identity, destination address, amount in wei) to a
collaborator that signs and submits the transfer and returns a settlement
reference. Any failure is raised as ``SigningError``.
"""

from __future__ import annotations

import hashlib
import itertools
import logging
import os
import threading
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

import httpx
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import is_address, to_checksum_address

from .errors import SigningError

logger = logging.getLogger(__name__)


class SigningCollaborator(Protocol):
    def sign_and_submit(
        self,
        signing_identity: str,
        destination_address: str,
        amount_wei: int,
    ) -> str: ...


@dataclass
class SubmittedTransfer:
    signing_identity: str
    destination_address: str
    amount_wei: int
    reference: str


class DryRunSigner:
    """Records transfers without signing anything.

    Returns ``dry-run-<hash>`` references. Set ``fail_with`` to make every
    call raise ``SigningError`` with that message.
    """

    def __init__(self, fail_with: Optional[str] = None):
        self.fail_with = fail_with
        self.submitted: list[SubmittedTransfer] = []
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.submitted)

    def sign_and_submit(
        self,
        signing_identity: str,
        destination_address: str,
        amount_wei: int,
    ) -> str:
        if self.fail_with is not None:
            raise SigningError(self.fail_with)
        entropy = f"{signing_identity}:{destination_address}:{amount_wei}:{os.urandom(8).hex()}"
        reference = f"dry-run-{hashlib.sha256(entropy.encode()).hexdigest()[:16]}"
        with self._lock:
            self.submitted.append(
                SubmittedTransfer(signing_identity, destination_address, amount_wei, reference)
            )
        return reference


@dataclass
class TransferParams:
    """Fixed EIP-1559 parameters for a plain value transfer.

    Nonce management and fee estimation are left to the custody layer.
    """

    chain_id: int = 1
    nonce: int = 0
    gas: int = 21_000
    max_fee_per_gas: int = 50_000_000_000
    max_priority_fee_per_gas: int = 2_000_000_000


class EthAccountSigner:
    """Signs value transfers with local eth-account keys.

    ``keys`` maps a signing identity (the intent's source id) to a private
    key. An identity that is itself the address of a loaded key also
    resolves. With ``rpc_url`` set, the raw transaction is broadcast via
    ``eth_sendRawTransaction`` and the node's hash is returned; otherwise
    the locally computed hash is returned.
    """

    def __init__(
        self,
        keys: Mapping[str, str],
        params: Optional[TransferParams] = None,
        rpc_url: Optional[str] = None,
        timeout_secs: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.params = params or TransferParams()
        self.rpc_url = rpc_url
        self.timeout = timeout_secs
        self._transport = transport
        self._accounts: dict[str, LocalAccount] = {}
        for identity, key in keys.items():
            try:
                self._accounts[identity] = Account.from_key(key)
            except Exception as exc:
                raise SigningError(f"Invalid private key for signing identity '{identity}'") from exc
        self._rpc_ids = itertools.count(1)

    def _account_for(self, signing_identity: str) -> LocalAccount:
        account = self._accounts.get(signing_identity)
        if account is not None:
            return account
        wanted = signing_identity.lower()
        for candidate in self._accounts.values():
            if candidate.address.lower() == wanted:
                return candidate
        raise SigningError(f"No signing key for identity '{signing_identity}'")

    def build_transaction(self, destination_address: str, amount_wei: int) -> dict:
        if not is_address(destination_address):
            raise SigningError(f"Invalid destination address: {destination_address}")
        if amount_wei <= 0:
            raise SigningError("Transfer amount must be positive")
        return {
            "type": 2,
            "chainId": self.params.chain_id,
            "nonce": self.params.nonce,
            "to": to_checksum_address(destination_address),
            "value": amount_wei,
            "gas": self.params.gas,
            "maxFeePerGas": self.params.max_fee_per_gas,
            "maxPriorityFeePerGas": self.params.max_priority_fee_per_gas,
        }

    def sign_and_submit(
        self,
        signing_identity: str,
        destination_address: str,
        amount_wei: int,
    ) -> str:
        account = self._account_for(signing_identity)
        tx = self.build_transaction(destination_address, amount_wei)
        try:
            signed = account.sign_transaction(tx)
        except Exception as exc:
            raise SigningError(f"Transaction signing failed: {type(exc).__name__}: {exc}") from exc

        tx_hash = _hex(signed.hash)
        logger.info("Transaction signed by %s: %s", account.address, tx_hash)
        if not self.rpc_url:
            return tx_hash
        return self._broadcast(_hex(signed.raw_transaction))

    def _broadcast(self, raw_tx: str) -> str:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._rpc_ids),
            "method": "eth_sendRawTransaction",
            "params": [raw_tx],
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.post(self.rpc_url, json=payload)
                resp.raise_for_status()
                body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SigningError(f"Transaction broadcast failed: {exc}") from exc

        if body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise SigningError(f"Node rejected transaction: {message}")
        result = body.get("result")
        if not result:
            raise SigningError("Node returned no transaction hash")
        return str(result)


def _hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()
