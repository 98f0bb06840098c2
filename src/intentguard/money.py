"""Amount conversion helpers between satoshis and settlement units."""

from __future__ import annotations


# Fixed scale applied only at the signing boundary.
WEI_PER_SAT = 1_000_000_000_000


def sats_to_wei(amount_sats: int) -> int:
    """Convert a satoshi amount to wei for the settlement asset."""
    if isinstance(amount_sats, bool) or not isinstance(amount_sats, int):
        raise TypeError(f"Amount must be an integer number of sats, got {amount_sats!r}")
    if amount_sats < 0:
        raise ValueError(f"Amount must not be negative: {amount_sats}")
    return amount_sats * WEI_PER_SAT


def format_sats(amount_sats: int) -> str:
    return f"{amount_sats:,} sats"
