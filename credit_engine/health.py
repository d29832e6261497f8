"""Pure health-factor functions — no I/O, no state."""
from __future__ import annotations

from .errors import ValidationError

DEFAULT_LIQUIDATION_THRESHOLD = 90.0

SEVERITY_CRITICAL = "critical"
SEVERITY_WARNING = "warning"


def health_factor(
    ltv_ratio: float | None,
    liquidation_threshold: float = DEFAULT_LIQUIDATION_THRESHOLD,
) -> float | None:
    """Normalized distance from the liquidation threshold, in percent.

    ``((threshold - ltv) / threshold) * 100`` — 100 means no leverage, 0 means
    at the threshold, negative means already past it. The result is not
    floored at zero so breaches can be ranked by depth.

    Returns None when the LTV is unknown.
    """
    if ltv_ratio is None:
        return None
    if liquidation_threshold <= 0:
        raise ValidationError(
            "Liquidation threshold must be positive",
            field="liquidation_threshold",
            value=liquidation_threshold,
        )
    ltv = float(ltv_ratio)
    return round((liquidation_threshold - ltv) / liquidation_threshold * 100, 1)


def severity(health: float | None) -> str:
    """Critical once the threshold is crossed, warning otherwise."""
    if health is not None and health < 0:
        return SEVERITY_CRITICAL
    return SEVERITY_WARNING
