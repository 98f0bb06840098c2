"""
Recipient directory sources.

The allow-list of recipients can be fixed at startup or pulled from an
external account directory over HTTP before each policy check.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Protocol

import httpx

from .errors import DirectoryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recipient:
    """A known destination the agent may propose payments to."""

    id: str
    address: str
    name: Optional[str] = None

    def to_dict(self) -> dict:
        return {"id": self.id, "address": self.address, "name": self.name}

    @classmethod
    def from_dict(cls, d: dict) -> Recipient:
        try:
            recipient_id = str(d["id"]).strip()
            address = str(d["address"]).strip()
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Recipient entry missing id/address: {d!r}") from exc
        if not recipient_id or not address:
            raise ValueError(f"Recipient entry has empty id/address: {d!r}")
        name = d.get("name") or d.get("display_name")
        return cls(id=recipient_id, address=address, name=name)


class RecipientDirectory(Protocol):
    def list_recipients(self) -> list[Recipient]: ...


class StaticRecipientDirectory:
    """Fixed in-memory directory."""

    def __init__(self, recipients: Iterable[Recipient] = ()):
        self._recipients = list(recipients)

    def list_recipients(self) -> list[Recipient]:
        return list(self._recipients)

    def replace(self, recipients: Iterable[Recipient]) -> None:
        self._recipients = list(recipients)


class HttpRecipientDirectory:
    """Reads recipients from ``GET <base_url>/recipients``.

    Accepts either a bare JSON list or ``{"recipients": [...]}``.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout_secs: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout_secs
        self.headers = {"Accept": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self._transport = transport

    def list_recipients(self) -> list[Recipient]:
        url = f"{self.base_url}/recipients"
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.get(url, headers=self.headers)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise DirectoryError(f"Failed to fetch recipients from {url}: {exc}") from exc

        recipients = _parse_recipients(data)
        logger.debug("Fetched %d recipients from %s", len(recipients), url)
        return recipients


def _parse_recipients(data: Any) -> list[Recipient]:
    if isinstance(data, dict):
        data = data.get("recipients")
    if not isinstance(data, list):
        raise DirectoryError("Recipient directory returned an unexpected payload")

    recipients: list[Recipient] = []
    for entry in data:
        if not isinstance(entry, dict):
            raise DirectoryError(f"Recipient entry is not an object: {entry!r}")
        try:
            recipients.append(Recipient.from_dict(entry))
        except ValueError as exc:
            raise DirectoryError(str(exc)) from exc
    return recipients
