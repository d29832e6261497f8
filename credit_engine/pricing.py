"""Pure loan pricing functions — no I/O, no state."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from .errors import ValidationError

DEFAULT_BASE_RATES: dict[str, float] = {
    "BTC": 3.5,
    "ETH": 4.0,
    "SOL": 5.5,
    "USDT": 3.0,
}

LIQUIDATION_THRESHOLD_MARGIN = 0.10

_VOLATILITY = {
    "BTC": "medium",
    "ETH": "medium-high",
    "SOL": "high",
    "USDT": "low",
}


@dataclass(frozen=True)
class LoanTerms:
    """Pricing output for a loan. Interest figures are per unit of principal."""

    apr: float
    total_interest: float
    total_repayment: float
    daily_interest: float
    liquidation_price_multiplier: float


def term_multiplier(term_days: int) -> float:
    """1.0 up to 180 days, 1.1 up to a year, 1.2 beyond."""
    if term_days > 365:
        return 1.2
    if term_days > 180:
        return 1.1
    return 1.0


def ltv_multiplier(ltv_ratio: float) -> float:
    """Riskier leverage pays more: 1.0 up to 50%, 1.15 up to 70%, 1.3 above."""
    if ltv_ratio > 70:
        return 1.3
    if ltv_ratio > 50:
        return 1.15
    return 1.0


def compute_terms(
    collateral_asset: str,
    term_days: int,
    ltv_ratio: float,
    base_rates: Mapping[str, float] | None = None,
) -> LoanTerms:
    """Price a loan from its collateral class, term and LTV.

    Formulas:
        apr = base_rate[asset] * term_multiplier(term) * ltv_multiplier(ltv)
        total_interest = apr / 100 * term_days / 365
        daily_interest = apr / 100 / 365
        liquidation_price_multiplier = 1 / (1 - 0.10)

    ``total_interest`` and ``total_repayment`` are expressed per unit of
    principal.

    Raises:
        ValidationError: if ``collateral_asset`` has no base rate.
    """
    rates = DEFAULT_BASE_RATES if base_rates is None else base_rates
    asset = (collateral_asset or "").upper()
    if asset not in rates:
        raise ValidationError(
            f"Unsupported collateral asset class '{collateral_asset}'. "
            f"Valid classes: {', '.join(sorted(rates))}",
            field="collateral_asset",
            value=collateral_asset,
        )

    apr = rates[asset] * term_multiplier(term_days) * ltv_multiplier(ltv_ratio)
    total_interest = apr / 100 * term_days / 365

    return LoanTerms(
        apr=round(apr, 4),
        total_interest=round(total_interest, 6),
        total_repayment=round(1 + total_interest, 6),
        daily_interest=round(apr / 100 / 365, 8),
        liquidation_price_multiplier=round(1 / (1 - LIQUIDATION_THRESHOLD_MARGIN), 4),
    )


def asset_volatility(asset: str) -> str:
    """Coarse volatility bucket for a collateral asset."""
    return _VOLATILITY.get((asset or "").upper(), "unknown")
