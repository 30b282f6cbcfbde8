# tests/test_rate_resolver.py
from __future__ import annotations

from decimal import Decimal

import pytest

from marketplace_finance.core.errors import InvalidRateError
from marketplace_finance.core.rate_resolver import RateProvenance, resolve
from marketplace_finance.core.rate_schedule import RateSchedule


def make_schedule(**kwargs) -> RateSchedule:
    base = dict(
        default_rate=Decimal("5"),
        tier_rates={"free": 5, "silver": 3, "gold": 3, "platinum": 1.5},
        category_rates={"C1": 4},
        supplier_overrides={"S1": 2},
    )
    base.update(kwargs)
    return RateSchedule(**base)


def test_supplier_override_wins_over_every_layer():
    s = make_schedule()
    r = resolve(s, "S1", "gold", "C1")
    assert r.rate == Decimal("2")
    assert r.provenance is RateProvenance.SUPPLIER


def test_category_wins_over_tier():
    s = make_schedule(supplier_overrides={})
    r = resolve(s, "S1", "gold", "C1")
    assert r.rate == Decimal("4")
    assert r.provenance is RateProvenance.CATEGORY


def test_category_is_skipped_without_category_id():
    s = make_schedule(supplier_overrides={})
    r = resolve(s, "S1", "gold")
    assert r.rate == Decimal("3")
    assert r.provenance is RateProvenance.TIER


def test_unknown_tier_falls_back_to_default():
    s = make_schedule(supplier_overrides={})
    r = resolve(s, "S9", "diamond", "C-unknown")
    assert r.rate == Decimal("5")
    assert r.provenance is RateProvenance.DEFAULT

    assert resolve(s, "S9", None).provenance is RateProvenance.DEFAULT


def test_zero_rate_layer_still_wins():
    s = make_schedule(supplier_overrides={"S1": 0}, category_rates={"C1": 0})
    assert resolve(s, "S1", "gold", "C1").rate == Decimal("0")
    assert resolve(s, "S1", "gold", "C1").provenance is RateProvenance.SUPPLIER
    assert resolve(s, "S2", "gold", "C1").provenance is RateProvenance.CATEGORY


def test_tier_name_is_case_insensitive():
    s = make_schedule()
    assert resolve(s, "S2", " GOLD ").provenance is RateProvenance.TIER


def test_fallthrough_as_layers_are_removed():
    s = make_schedule(category_rates={})
    assert resolve(s, "S1", "gold").rate == Decimal("2")

    s, _ = s.without_supplier_override("S1", changed_by="admin", reason="ends")
    r = resolve(s, "S1", "gold")
    assert (r.rate, r.provenance) == (Decimal("3"), RateProvenance.TIER)

    s = RateSchedule(default_rate=s.default_rate, tier_rates={"free": 5}, version=s.version + 1)
    r = resolve(s, "S1", "gold")
    assert (r.rate, r.provenance) == (Decimal("5"), RateProvenance.DEFAULT)


def test_resolution_carries_schedule_version():
    s = make_schedule(version=7)
    assert resolve(s, "S1", "gold").schedule_version == 7


@pytest.mark.parametrize("bad", [-0.01, 100.01, "abc", "NaN"])
def test_out_of_range_schedule_cannot_be_built(bad):
    with pytest.raises(InvalidRateError):
        make_schedule(category_rates={"C1": bad})


def test_unknown_tier_in_schedule_is_rejected():
    with pytest.raises(InvalidRateError):
        make_schedule(tier_rates={"diamond": 1})


def test_tier_update_is_all_or_nothing():
    s = make_schedule()
    with pytest.raises(InvalidRateError):
        s.with_tier_rates(
            default_rate=5,
            tier_rates={"free": 5, "silver": 3, "gold": 101, "platinum": 1},
            changed_by="admin",
            reason="bad",
        )
    with pytest.raises(InvalidRateError):
        s.with_tier_rates(default_rate=5, tier_rates={"free": 5}, changed_by="admin", reason="partial")

    nxt, changes = s.with_tier_rates(
        default_rate=5,
        tier_rates={"free": 5, "silver": 2.5, "gold": 3, "platinum": 1},
        changed_by="admin",
        reason="Q3",
    )
    assert nxt.version == s.version + 1
    assert s.tier_rates["silver"] == Decimal("3")  # original untouched
    assert sorted((c.scope_key, c.new_value) for c in changes) == [
        ("platinum", Decimal("1")),
        ("silver", Decimal("2.5")),
    ]


def test_removing_absent_entry_is_an_error():
    s = make_schedule()
    with pytest.raises(InvalidRateError):
        s.without_category_rate("nope", changed_by="admin", reason="x")
    with pytest.raises(InvalidRateError):
        s.without_supplier_override("nope", changed_by="admin", reason="x")
