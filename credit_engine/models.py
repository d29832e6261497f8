"""Data models — all frozen (immutable).

The ledger swaps whole records with ``dataclasses.replace`` rather than
mutating them, so any record handed out is a consistent snapshot.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .health import DEFAULT_LIQUIDATION_THRESHOLD, health_factor
from .pricing import LoanTerms, asset_volatility

# Loan statuses
LOAN_PENDING_APPROVAL = "pending_approval"
LOAN_ACTIVE = "active"
LOAN_REPAID = "repaid"
LOAN_LIQUIDATED = "liquidated"
LOAN_REJECTED = "rejected"

LOAN_TERMINAL_STATUSES = frozenset({LOAN_REPAID, LOAN_LIQUIDATED, LOAN_REJECTED})
LOAN_OPEN_STATUSES = frozenset({LOAN_PENDING_APPROVAL, LOAN_ACTIVE})

# Vault position statuses
POSITION_OPEN = "open"
POSITION_CLOSING = "closing"
POSITION_CLOSED = "closed"

POSITION_LIVE_STATUSES = frozenset({POSITION_OPEN, POSITION_CLOSING})

# Hedge statuses
HEDGE_PENDING = "pending"
HEDGE_EXECUTED = "executed"
HEDGE_FAILED = "failed"
HEDGE_CANCELLED = "cancelled"

# Ledger entry types
ENTRY_LOAN_REPAYMENT = "loan_repayment"
ENTRY_LOAN_LIQUIDATION = "loan_liquidation"
ENTRY_POSITION_LIQUIDATION = "position_liquidation"

# Risk alert entity types
ENTITY_LOAN = "loan"
ENTITY_VAULT_POSITION = "vault_position"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Loan:
    """Collateral-backed loan."""

    id: str
    owner_id: str
    principal_amount: float
    principal_asset: str
    collateral_amount: float
    collateral_asset: str
    interest_rate: float
    ltv_ratio: float
    term_days: int
    terms: LoanTerms
    due_date: datetime
    requested_at: datetime
    created_at: datetime
    updated_at: datetime
    status: str = LOAN_PENDING_APPROVAL
    repaid_amount: float = 0.0
    liquidation_threshold: float = DEFAULT_LIQUIDATION_THRESHOLD
    expires_at: datetime | None = None
    approved_at: datetime | None = None
    approval_notes: str | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    liquidated_at: datetime | None = None
    liquidation_reason: str | None = None
    last_payment_at: datetime | None = None

    @property
    def health_factor(self) -> float | None:
        """Always derived from the stored origination LTV."""
        return health_factor(self.ltv_ratio, self.liquidation_threshold)

    @property
    def outstanding_amount(self) -> float:
        return max(self.principal_amount - self.repaid_amount, 0.0)

    @property
    def is_terminal(self) -> bool:
        return self.status in LOAN_TERMINAL_STATUSES

    @property
    def volatility(self) -> str:
        return asset_volatility(self.collateral_asset)


@dataclass(frozen=True)
class VaultPosition:
    """Collateral deposit tracked on behalf of an owner."""

    id: str
    owner_id: str
    asset: str
    amount: float
    created_at: datetime
    updated_at: datetime
    value_usd: float = 0.0
    health_factor: float | None = None
    status: str = POSITION_OPEN
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def current_health_factor(self) -> float | None:
        """Tracked value when present, else derived from ``metadata['ltvRatio']``."""
        if self.health_factor is not None:
            return self.health_factor
        ltv = self.metadata.get("ltvRatio")
        if ltv is None:
            return None
        try:
            return health_factor(float(ltv))
        except (TypeError, ValueError):
            return None


@dataclass(frozen=True)
class Hedge:
    """Asset swap submitted to reduce exposure."""

    id: str
    owner_id: str
    asset_in: str
    asset_out: str
    amount_in: float
    min_amount_out: float
    created_at: datetime
    updated_at: datetime
    amount_out: float | None = None
    execution_reference: str | None = None
    status: str = HEDGE_PENDING
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Liquidation:
    """Append-only record of a forced unwind."""

    id: str
    owner_id: str
    executed_at: datetime
    loan_id: str | None = None
    position_id: str | None = None
    recovered_amount: float = 0.0
    recovered_asset: str | None = None
    reason: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RiskAlert:
    """Append-only breach record produced by the risk scanner."""

    id: str
    entity_type: str
    entity_id: str
    owner_id: str
    metrics: dict[str, Any]
    thresholds: dict[str, float]
    severity: str
    created_at: datetime
    processed: bool = False


@dataclass(frozen=True)
class LedgerEntry:
    """Append-only money movement tied to a loan or position."""

    id: str
    owner_id: str
    type: str
    reference_id: str
    amount: float
    asset: str | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome reported by an execution provider."""

    success: bool
    amount_out: float | None = None
    execution_reference: str | None = None
    error: str | None = None
