"""Loan lifecycle — origination, approval, repayment and liquidation."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from ..config import LendingConfig
from ..errors import ConflictError, ValidationError
from ..ledger import CreditLedger
from ..models import (
    LOAN_ACTIVE,
    LOAN_LIQUIDATED,
    LOAN_OPEN_STATUSES,
    LOAN_PENDING_APPROVAL,
    LOAN_REJECTED,
    Liquidation,
    Loan,
    new_id,
    utc_now,
)
from ..pricing import compute_terms
from ..validation import normalize_asset, parse_int, parse_number, parse_positive, require_fields
from .recovery import coerce_recovery, write_liquidation

logger = logging.getLogger(__name__)

# Pre-approval prepayment is accepted alongside repayment of active loans.
REPAYABLE_STATUSES = (LOAN_PENDING_APPROVAL, LOAN_ACTIVE)


class LoanLifecycleManager:
    """Orchestrates the loan state machine on top of the credit ledger.

    pending_approval -> active -> repaid | liquidated
    pending_approval -> rejected | liquidated
    """

    def __init__(self, ledger: CreditLedger, config: LendingConfig | None = None) -> None:
        self._ledger = ledger
        self._config = config or LendingConfig()

    # ------------------------------------------------------------------
    # Origination
    # ------------------------------------------------------------------

    def _validate_request(
        self,
        collateral_asset: Any,
        collateral_amount: Any,
        principal_amount: Any,
        term_days: Any,
        ltv_ratio: Any,
    ) -> tuple[str, float, float, int, float]:
        require_fields(
            collateral_asset=collateral_asset,
            collateral_amount=collateral_amount,
            principal_amount=principal_amount,
            term_days=term_days,
            ltv_ratio=ltv_ratio,
        )
        cfg = self._config

        asset = normalize_asset(collateral_asset, "collateral_asset")
        if asset not in cfg.supported_collateral:
            raise ValidationError(
                f"Unsupported collateral. Valid types: {', '.join(cfg.supported_collateral)}",
                "collateral_asset",
                collateral_asset,
            )

        collateral = parse_positive(collateral_amount, "collateral_amount")
        principal = parse_positive(principal_amount, "principal_amount")

        term = parse_int(term_days, "term_days")
        if not cfg.min_term_days <= term <= cfg.max_term_days:
            raise ValidationError(
                f"Term must be between {cfg.min_term_days} and {cfg.max_term_days} days",
                "term_days",
                term_days,
            )

        ltv = parse_number(ltv_ratio, "ltv_ratio")
        if ltv < 0 or ltv > cfg.max_ltv:
            raise ValidationError(
                f"LTV ratio must be between 0 and {cfg.max_ltv}%", "ltv_ratio", ltv_ratio
            )

        return asset, collateral, principal, term, ltv

    async def request_loan(
        self,
        owner_id: str,
        collateral_asset: str,
        collateral_amount: float,
        principal_amount: float,
        term_days: int,
        ltv_ratio: float,
        principal_asset: str | None = None,
    ) -> Loan:
        """Validate, price and persist a loan request as ``pending_approval``."""
        asset, collateral, principal, term, ltv = self._validate_request(
            collateral_asset, collateral_amount, principal_amount, term_days, ltv_ratio
        )
        terms = compute_terms(asset, term, ltv, base_rates=self._config.base_rates)

        now = utc_now()
        window = self._config.approval_window_hours
        loan = Loan(
            id=new_id(),
            owner_id=owner_id,
            principal_amount=principal,
            principal_asset=normalize_asset(
                principal_asset or self._config.principal_asset, "principal_asset"
            ),
            collateral_amount=collateral,
            collateral_asset=asset,
            interest_rate=terms.apr,
            ltv_ratio=ltv,
            term_days=term,
            terms=terms,
            due_date=now + timedelta(days=term),
            requested_at=now,
            created_at=now,
            updated_at=now,
            liquidation_threshold=self._config.liquidation_threshold,
            expires_at=now + timedelta(hours=window) if window > 0 else None,
        )
        await self._ledger.create_loan(loan)

        logger.info(
            "Loan %s requested by %s: %s %s against %s %s, %d days, LTV %.2f%%, APR %.4f%%",
            loan.id,
            owner_id,
            principal,
            loan.principal_asset,
            collateral,
            asset,
            term,
            ltv,
            terms.apr,
        )
        return loan

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def approve_loan(
        self, loan_id: str, notes: str | None = None, owner_id: str | None = None
    ) -> Loan:
        loan = await self._ledger.get_loan(loan_id, owner_id)
        now = utc_now()
        if (
            loan.status == LOAN_PENDING_APPROVAL
            and loan.expires_at is not None
            and now > loan.expires_at
        ):
            raise ConflictError(
                f"Approval window for loan {loan_id} elapsed at {loan.expires_at.isoformat()}",
                loan_id,
                loan.status,
            )
        return await self._ledger.transition_loan(
            loan_id,
            (LOAN_PENDING_APPROVAL,),
            LOAN_ACTIVE,
            owner_id=owner_id,
            approved_at=now,
            approval_notes=notes,
        )

    async def reject_loan(
        self, loan_id: str, reason: str | None = None, owner_id: str | None = None
    ) -> Loan:
        return await self._ledger.transition_loan(
            loan_id,
            (LOAN_PENDING_APPROVAL,),
            LOAN_REJECTED,
            owner_id=owner_id,
            rejected_at=utc_now(),
            rejection_reason=reason,
        )

    # ------------------------------------------------------------------
    # Repayment and liquidation
    # ------------------------------------------------------------------

    async def repay_loan(
        self, loan_id: str, amount: float, owner_id: str | None = None
    ) -> Loan:
        """Apply a repayment; a loan repaid in full moves to ``repaid``."""
        value = parse_positive(amount, "amount")
        loan, entry = await self._ledger.record_repayment(
            loan_id, value, REPAYABLE_STATUSES, owner_id=owner_id
        )
        logger.info(
            "Loan %s repayment of %s %s (fully repaid: %s)",
            loan_id,
            entry.amount,
            entry.asset,
            entry.details["fullyRepaid"],
        )
        return loan

    async def liquidate_loan(
        self,
        loan_id: str,
        reason: str | None = None,
        recovered_amount: Any = 0,
        recovered_asset: Any = None,
        owner_id: str | None = None,
    ) -> Liquidation:
        """Force-close a non-terminal loan and record what was recovered."""
        recovered, asset = coerce_recovery(recovered_amount, recovered_asset)
        loan = await self._ledger.transition_loan(
            loan_id,
            LOAN_OPEN_STATUSES,
            LOAN_LIQUIDATED,
            owner_id=owner_id,
            liquidated_at=utc_now(),
            liquidation_reason=reason,
        )
        return await write_liquidation(
            self._ledger,
            loan.owner_id,
            loan_id=loan.id,
            reason=reason,
            recovered_amount=recovered,
            recovered_asset=asset,
            details={
                "outstanding": loan.outstanding_amount,
                "healthFactor": loan.health_factor,
            },
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_loan(self, loan_id: str, owner_id: str | None = None) -> Loan:
        return await self._ledger.get_loan(loan_id, owner_id)

    async def list_loans_by_owner(self, owner_id: str, status: str | None = None) -> list[Loan]:
        return await self._ledger.list_loans(owner_id=owner_id, status=status)
