from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from unusual_options.config import SignalConfig
from unusual_options.types import SignalStrength
from unusual_options.utils import format_currency


@dataclass(frozen=True)
class CriteriaCheck:
    accepted: bool
    reason: Optional[str] = None


def meets_unusual_criteria(
    *,
    volume: int,
    open_interest: int,
    premium: float,
    dte: int,
    cfg: SignalConfig,
) -> CriteriaCheck:
    # 1. Absolute volume floor
    if volume < cfg.min_absolute_volume:
        return CriteriaCheck(False, f"volume {volume} below minimum {cfg.min_absolute_volume}")

    # 2. No open interest means no ratio
    if open_interest <= 0:
        return CriteriaCheck(False, "open interest is zero")

    # 3. Volume / OI
    ratio = volume / open_interest
    if ratio < cfg.min_volume_oi_ratio:
        return CriteriaCheck(False, f"volume/oi ratio {ratio:.2f} below minimum {cfg.min_volume_oi_ratio}")

    # 4. Premium
    if premium < cfg.min_premium:
        return CriteriaCheck(
            False,
            f"premium {format_currency(premium)} below minimum {format_currency(cfg.min_premium)}",
        )

    # 5. DTE window, expired contracts always out
    if dte < 0 or dte > cfg.max_dte:
        return CriteriaCheck(False, f"dte {dte} outside valid range (0-{cfg.max_dte})")

    return CriteriaCheck(True)


def classify_strength(
    *,
    volume_oi_ratio: float,
    premium: float,
    dte: int,
    moneyness_pct: float,
) -> SignalStrength:
    # HIGH: heavy ratio, big money, near-dated, well away from the money
    if volume_oi_ratio >= 5.0 and premium >= 100_000 and dte <= 30 and abs(moneyness_pct) >= 10:
        return "high"
    # MEDIUM
    if volume_oi_ratio >= 3.0 and premium >= 25_000 and dte <= 45:
        return "medium"
    # LOW: already past the base criteria
    return "low"


@dataclass(frozen=True)
class SignalClassifier:
    cfg: SignalConfig = field(default_factory=SignalConfig)

    def check(self, *, volume: int, open_interest: int, premium: float, dte: int) -> CriteriaCheck:
        return meets_unusual_criteria(
            volume=volume,
            open_interest=open_interest,
            premium=premium,
            dte=dte,
            cfg=self.cfg,
        )

    def strength(self, *, volume_oi_ratio: float, premium: float, dte: int, moneyness_pct: float) -> SignalStrength:
        return classify_strength(
            volume_oi_ratio=volume_oi_ratio,
            premium=premium,
            dte=dte,
            moneyness_pct=moneyness_pct,
        )

    def prefers(self, moneyness_pct: float) -> bool:
        """Advisory OTM preference; contracts below it are still signals."""
        return self.cfg.min_otm_percent <= 0 or abs(moneyness_pct) >= self.cfg.min_otm_percent
