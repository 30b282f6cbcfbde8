# marketplace_finance/core/rate_resolver.py
from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from marketplace_finance.core.rate_schedule import RateSchedule
from marketplace_finance.core.tier import tier_to_str


class RateProvenance(str, enum.Enum):
    SUPPLIER = "supplier"
    CATEGORY = "category"
    TIER = "tier"
    DEFAULT = "default"


@dataclass(frozen=True)
class RateResolution:
    rate: Decimal
    provenance: RateProvenance
    schedule_version: int


def resolve(
    schedule: RateSchedule,
    supplier_id: str,
    supplier_tier: Optional[str],
    category_id: Optional[str] = None,
) -> RateResolution:
    """
    Effective commission rate for (supplier, tier, category).

    Strict precedence, first present layer wins, no blending:
      1) supplier override
      2) category rate (only if a category is given)
      3) tier rate
      4) default rate

    Presence is a key lookup: a layer set to 0 still wins.
    Unknown/missing tiers fall through to the default.
    """
    v = schedule.version

    rate = schedule.supplier_overrides.get(supplier_id)
    if rate is not None:
        return RateResolution(rate, RateProvenance.SUPPLIER, v)

    if category_id:
        rate = schedule.category_rates.get(category_id)
        if rate is not None:
            return RateResolution(rate, RateProvenance.CATEGORY, v)

    tier = tier_to_str(supplier_tier)
    if tier:
        rate = schedule.tier_rates.get(tier)
        if rate is not None:
            return RateResolution(rate, RateProvenance.TIER, v)

    return RateResolution(schedule.default_rate, RateProvenance.DEFAULT, v)
