# marketplace_finance/core/rate_schedule.py
"""
Immutable, versioned commission rate table.

A RateSchedule is never edited. Every change produces the next version via the
`with_*` / `without_*` helpers, each of which also reports what changed as
ScheduleChange entries (these become commission_history rows).

Layers, highest precedence first: supplier override, category rate, tier rate,
default rate. See core/rate_resolver.py.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Optional

from marketplace_finance.core.errors import InvalidRateError
from marketplace_finance.core.money import to_decimal
from marketplace_finance.core.tier import TIER_NAMES, normalize_tier

MIN_RATE = Decimal("0")
MAX_RATE = Decimal("100")

# Marketplace defaults used to bootstrap version 1
DEFAULT_RATES: dict[str, Decimal] = {
    "default": Decimal("5.0"),
    "free": Decimal("5.0"),
    "silver": Decimal("3.0"),
    "gold": Decimal("2.0"),
    "platinum": Decimal("1.5"),
}

FIELD_DEFAULT_RATE = "default_rate"
FIELD_TIER_RATE = "tier_rate"
FIELD_CATEGORY_RATE = "category_rate"
FIELD_SUPPLIER_OVERRIDE = "supplier_override"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_rate(value, *, label: str = "rate") -> Decimal:
    try:
        rate = to_decimal(value)
    except ValueError as e:
        raise InvalidRateError(f"{label} is not a number", value=str(value)) from e
    if not rate.is_finite() or rate < MIN_RATE or rate > MAX_RATE:
        raise InvalidRateError(f"{label} must be within [0, 100]", value=str(value))
    return rate


def _freeze(mapping: Optional[Mapping[str, object]], *, label: str) -> Mapping[str, Decimal]:
    out: dict[str, Decimal] = {}
    for key, value in (mapping or {}).items():
        k = str(key).strip()
        if not k:
            raise InvalidRateError(f"{label} key must not be empty")
        out[k] = validate_rate(value, label=f"{label}[{k}]")
    return MappingProxyType(out)


@dataclass(frozen=True)
class ScheduleChange:
    field: str
    scope_key: Optional[str]
    previous_value: Optional[Decimal]
    new_value: Optional[Decimal]


@dataclass(frozen=True)
class RateSchedule:
    default_rate: Decimal
    tier_rates: Mapping[str, Decimal] = field(default_factory=dict)
    category_rates: Mapping[str, Decimal] = field(default_factory=dict)
    supplier_overrides: Mapping[str, Decimal] = field(default_factory=dict)
    version: int = 1
    effective_from: datetime = field(default_factory=_utcnow)
    changed_by: Optional[str] = None
    change_reason: Optional[str] = None

    def __post_init__(self) -> None:
        # frozen: go through object.__setattr__ to store normalized copies
        object.__setattr__(self, "default_rate", validate_rate(self.default_rate, label="default_rate"))

        tiers: dict[str, object] = {}
        for name, value in (self.tier_rates or {}).items():
            tier = normalize_tier(name)
            if tier not in TIER_NAMES:
                raise InvalidRateError(f"Unknown tier {name!r}", allowed=list(TIER_NAMES))
            tiers[tier] = value
        object.__setattr__(self, "tier_rates", _freeze(tiers, label="tier_rates"))
        object.__setattr__(self, "category_rates", _freeze(self.category_rates, label="category_rates"))
        object.__setattr__(self, "supplier_overrides", _freeze(self.supplier_overrides, label="supplier_overrides"))

        if self.version < 1:
            raise InvalidRateError("version must be >= 1", version=self.version)

    # ---------------------------------------------------------
    # Bootstrap
    # ---------------------------------------------------------
    @classmethod
    def initial(cls, *, effective_from: Optional[datetime] = None) -> "RateSchedule":
        return cls(
            default_rate=DEFAULT_RATES["default"],
            tier_rates={t: DEFAULT_RATES[t] for t in TIER_NAMES},
            version=1,
            effective_from=effective_from or _utcnow(),
            changed_by="system",
            change_reason="Initial commission settings",
        )

    # ---------------------------------------------------------
    # Copy-on-write updates
    # ---------------------------------------------------------
    def _next(self, changed_by: str, reason: str, effective_from: Optional[datetime], **changes) -> "RateSchedule":
        return replace(
            self,
            version=self.version + 1,
            effective_from=effective_from or _utcnow(),
            changed_by=changed_by,
            change_reason=reason,
            **changes,
        )

    def with_category_rate(
        self, category_id: str, rate, *, changed_by: str, reason: str, effective_from: Optional[datetime] = None
    ) -> tuple["RateSchedule", list[ScheduleChange]]:
        new_rate = validate_rate(rate, label=f"category_rates[{category_id}]")
        rates = dict(self.category_rates)
        previous = rates.get(category_id)
        rates[category_id] = new_rate
        nxt = self._next(changed_by, reason, effective_from, category_rates=rates)
        return nxt, [ScheduleChange(FIELD_CATEGORY_RATE, category_id, previous, new_rate)]

    def without_category_rate(
        self, category_id: str, *, changed_by: str, reason: str, effective_from: Optional[datetime] = None
    ) -> tuple["RateSchedule", list[ScheduleChange]]:
        rates = dict(self.category_rates)
        if category_id not in rates:
            raise InvalidRateError("No category rate to remove", category_id=category_id)
        previous = rates.pop(category_id)
        nxt = self._next(changed_by, reason, effective_from, category_rates=rates)
        return nxt, [ScheduleChange(FIELD_CATEGORY_RATE, category_id, previous, None)]

    def with_supplier_override(
        self, supplier_id: str, rate, *, changed_by: str, reason: str, effective_from: Optional[datetime] = None
    ) -> tuple["RateSchedule", list[ScheduleChange]]:
        new_rate = validate_rate(rate, label=f"supplier_overrides[{supplier_id}]")
        overrides = dict(self.supplier_overrides)
        previous = overrides.get(supplier_id)
        overrides[supplier_id] = new_rate
        nxt = self._next(changed_by, reason, effective_from, supplier_overrides=overrides)
        return nxt, [ScheduleChange(FIELD_SUPPLIER_OVERRIDE, supplier_id, previous, new_rate)]

    def without_supplier_override(
        self, supplier_id: str, *, changed_by: str, reason: str, effective_from: Optional[datetime] = None
    ) -> tuple["RateSchedule", list[ScheduleChange]]:
        overrides = dict(self.supplier_overrides)
        if supplier_id not in overrides:
            raise InvalidRateError("No supplier override to remove", supplier_id=supplier_id)
        previous = overrides.pop(supplier_id)
        nxt = self._next(changed_by, reason, effective_from, supplier_overrides=overrides)
        return nxt, [ScheduleChange(FIELD_SUPPLIER_OVERRIDE, supplier_id, previous, None)]

    def with_tier_rates(
        self,
        *,
        default_rate,
        tier_rates: Mapping[str, object],
        changed_by: str,
        reason: str,
        effective_from: Optional[datetime] = None,
    ) -> tuple["RateSchedule", list[ScheduleChange]]:
        """
        All-or-nothing update of the five base fields (default + every tier).
        Every value is validated before anything is built.
        """
        new_default = validate_rate(default_rate, label="default_rate")
        normalized = {normalize_tier(k): v for k, v in tier_rates.items()}
        missing = [t for t in TIER_NAMES if t not in normalized]
        unknown = sorted(k for k in normalized if k not in TIER_NAMES)
        if missing or unknown:
            raise InvalidRateError(
                "Tier update must cover exactly the known tiers",
                missing=missing,
                unknown=unknown,
            )
        new_tiers = {t: validate_rate(normalized[t], label=f"tier_rates[{t}]") for t in TIER_NAMES}

        changes: list[ScheduleChange] = []
        if new_default != self.default_rate:
            changes.append(ScheduleChange(FIELD_DEFAULT_RATE, None, self.default_rate, new_default))
        for t in TIER_NAMES:
            previous = self.tier_rates.get(t)
            if previous != new_tiers[t]:
                changes.append(ScheduleChange(FIELD_TIER_RATE, t, previous, new_tiers[t]))

        nxt = self._next(changed_by, reason, effective_from, default_rate=new_default, tier_rates=new_tiers)
        return nxt, changes

    def as_dict(self) -> dict:
        return {
            "version": self.version,
            "default_rate": self.default_rate,
            "tier_rates": dict(self.tier_rates),
            "category_rates": dict(self.category_rates),
            "supplier_overrides": dict(self.supplier_overrides),
            "effective_from": self.effective_from,
            "changed_by": self.changed_by,
            "change_reason": self.change_reason,
        }
