"""Liquidation record helpers shared by the loan, vault and manual paths."""
from __future__ import annotations

import logging
import math
from typing import Any

from ..errors import ValidationError
from ..ledger import CreditLedger
from ..models import (
    ENTRY_LOAN_LIQUIDATION,
    ENTRY_POSITION_LIQUIDATION,
    LedgerEntry,
    Liquidation,
    new_id,
    utc_now,
)

logger = logging.getLogger(__name__)


def coerce_recovery(amount: Any, asset: Any) -> tuple[float, str | None]:
    """Leniently parse the recovered amount and asset of a liquidation.

    Only basic type checks reject input. Odd but well-typed values (negative
    amounts, an amount without an asset) are accepted and logged, since the
    liquidation record matters more than the tidiness of these fields.
    """
    if amount is None or amount == "":
        value = 0.0
    elif isinstance(amount, bool):
        raise ValidationError("recovered_amount must be numeric", "recovered_amount", amount)
    else:
        try:
            value = float(amount)
        except (TypeError, ValueError):
            raise ValidationError(
                "recovered_amount must be numeric", "recovered_amount", amount
            ) from None

    if asset is None or asset == "":
        asset_symbol = None
    elif isinstance(asset, str):
        asset_symbol = asset.strip().upper()
    else:
        raise ValidationError("recovered_asset must be a string", "recovered_asset", asset)

    if not math.isfinite(value) or value < 0:
        logger.warning("Accepting unusual recovered amount %r", value)
    if value > 0 and asset_symbol is None:
        logger.warning("Recovered amount %s recorded without an asset", value)

    return value, asset_symbol


async def write_liquidation(
    ledger: CreditLedger,
    owner_id: str,
    *,
    loan_id: str | None = None,
    position_id: str | None = None,
    reason: str | None = None,
    recovered_amount: float = 0.0,
    recovered_asset: str | None = None,
    details: dict[str, Any] | None = None,
) -> Liquidation:
    """Append a Liquidation record and its matching ledger entry."""
    now = utc_now()
    liquidation = await ledger.record_liquidation(
        Liquidation(
            id=new_id(),
            owner_id=owner_id,
            executed_at=now,
            loan_id=loan_id,
            position_id=position_id,
            recovered_amount=recovered_amount,
            recovered_asset=recovered_asset,
            reason=reason,
            details=dict(details or {}),
        )
    )
    await ledger.append_entry(
        LedgerEntry(
            id=new_id(),
            owner_id=owner_id,
            type=ENTRY_LOAN_LIQUIDATION if loan_id else ENTRY_POSITION_LIQUIDATION,
            reference_id=loan_id or position_id or "",
            amount=recovered_amount,
            asset=recovered_asset,
            created_at=now,
            details={
                "liquidationId": liquidation.id,
                "loanId": loan_id,
                "positionId": position_id,
                "reason": reason,
            },
        )
    )
    return liquidation
