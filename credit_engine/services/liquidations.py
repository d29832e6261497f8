"""Manual liquidation entry point, independent of the loan and vault flows."""
from __future__ import annotations

import logging
from typing import Any

from ..errors import ConflictError, ValidationError
from ..ledger import CreditLedger
from ..models import (
    LOAN_LIQUIDATED,
    LOAN_OPEN_STATUSES,
    POSITION_LIVE_STATUSES,
    Liquidation,
    utc_now,
)
from .recovery import coerce_recovery, write_liquidation

logger = logging.getLogger(__name__)


class LiquidationDesk:
    """Records operator-driven liquidations of a loan, a position, or both."""

    def __init__(self, ledger: CreditLedger) -> None:
        self._ledger = ledger

    async def record_liquidation(
        self,
        owner_id: str,
        loan_id: str | None = None,
        position_id: str | None = None,
        reason: str | None = None,
        recovered_amount: Any = 0,
        recovered_asset: Any = None,
    ) -> Liquidation:
        """Liquidate the referenced loan and/or position under one record.

        Both references are checked before either is touched, so a conflict
        on one leaves the other unchanged.
        """
        if not loan_id and not position_id:
            raise ValidationError("loan_id or position_id is required", "loan_id")
        recovered, asset = coerce_recovery(recovered_amount, recovered_asset)

        if loan_id:
            loan = await self._ledger.get_loan(loan_id, owner_id)
            if loan.status not in LOAN_OPEN_STATUSES:
                raise ConflictError(f"Loan {loan_id} is already {loan.status}", loan_id, loan.status)
        if position_id:
            position = await self._ledger.get_position(position_id, owner_id)
            if position.status not in POSITION_LIVE_STATUSES:
                raise ConflictError(
                    f"Position {position_id} is already {position.status}",
                    position_id,
                    position.status,
                )

        if loan_id:
            await self._ledger.transition_loan(
                loan_id,
                LOAN_OPEN_STATUSES,
                LOAN_LIQUIDATED,
                owner_id=owner_id,
                liquidated_at=utc_now(),
                liquidation_reason=reason,
            )
        if position_id:
            await self._ledger.close_position(position_id, owner_id=owner_id)

        logger.info(
            "Manual liquidation by %s (loan=%s position=%s): %s",
            owner_id,
            loan_id,
            position_id,
            reason,
        )
        return await write_liquidation(
            self._ledger,
            owner_id,
            loan_id=loan_id,
            position_id=position_id,
            reason=reason,
            recovered_amount=recovered,
            recovered_asset=asset,
            details={"source": "manual"},
        )

    async def list_liquidations(self, owner_id: str | None = None) -> list[Liquidation]:
        return await self._ledger.list_liquidations(owner_id=owner_id)
