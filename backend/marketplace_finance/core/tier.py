# marketplace_finance/core/tier.py

from __future__ import annotations

import enum


class SupplierTier(str, enum.Enum):
    FREE = "free"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


TIER_NAMES: tuple[str, ...] = tuple(t.value for t in SupplierTier)


def normalize_tier(value: str | None) -> str:
    return (value or "").strip().lower()


def tier_to_str(tier_obj) -> str | None:
    """
    Supports Enum-like tier objects (tier.value) or plain strings.
    Returns None if empty.
    """
    if tier_obj is None:
        return None
    v = getattr(tier_obj, "value", None)
    if isinstance(v, str) and v:
        return normalize_tier(v)
    s = normalize_tier(str(tier_obj))
    return s if s else None
