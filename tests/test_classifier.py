from __future__ import annotations

from unusual_options.config import SignalConfig
from unusual_options.signals.classifier import SignalClassifier, classify_strength, meets_unusual_criteria

CFG = SignalConfig()


def _check(volume=500, open_interest=100, premium=50_000.0, dte=10):
    return meets_unusual_criteria(volume=volume, open_interest=open_interest, premium=premium, dte=dte, cfg=CFG)


def test_accepts_when_every_check_passes():
    c = _check()
    assert c.accepted
    assert c.reason is None


def test_volume_floor_is_inclusive():
    assert _check(volume=100, open_interest=10).accepted
    assert not _check(volume=99, open_interest=10).accepted


def test_zero_open_interest_always_rejected():
    c = _check(open_interest=0)
    assert not c.accepted
    assert "open interest" in (c.reason or "")


def test_ratio_floor_is_inclusive():
    assert _check(volume=300, open_interest=100).accepted
    assert not _check(volume=300, open_interest=101).accepted


def test_premium_floor_is_inclusive():
    assert _check(premium=25_000.0).accepted
    assert not _check(premium=24_999.99).accepted


def test_dte_window():
    assert _check(dte=0).accepted
    assert _check(dte=45).accepted
    assert not _check(dte=46).accepted
    assert not _check(dte=-1).accepted


def test_checks_short_circuit_in_order():
    # low volume reported even though everything else also fails
    c = _check(volume=1, open_interest=0, premium=0.0, dte=-5)
    assert c.reason is not None and c.reason.startswith("volume")


def test_strength_high_boundary():
    assert classify_strength(volume_oi_ratio=5.0, premium=100_000, dte=30, moneyness_pct=10) == "high"
    assert classify_strength(volume_oi_ratio=5.0, premium=100_000, dte=30, moneyness_pct=-10) == "high"
    assert classify_strength(volume_oi_ratio=4.99, premium=100_000, dte=30, moneyness_pct=10) == "medium"


def test_strength_medium_and_low():
    assert classify_strength(volume_oi_ratio=3.0, premium=25_000, dte=45, moneyness_pct=0) == "medium"
    assert classify_strength(volume_oi_ratio=3.0, premium=25_000, dte=46, moneyness_pct=0) == "low"
    assert classify_strength(volume_oi_ratio=2.0, premium=500_000, dte=5, moneyness_pct=50) == "low"


def test_otm_preference_is_advisory():
    clf = SignalClassifier(CFG)
    assert clf.prefers(12.0)
    assert not clf.prefers(1.0)
    # an ATM contract is still accepted by the criteria
    assert clf.check(volume=500, open_interest=100, premium=50_000.0, dte=10).accepted
