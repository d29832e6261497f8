"""Engine facade — wires the ledger, managers and collaborators together."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from .config import AppConfig
from .execution import HttpExecutionProvider
from .interfaces import ExecutionProvider, Notifier, QuoteProvider
from .ledger import CreditLedger
from .models import ExecutionResult, Hedge, Liquidation, Loan, RiskAlert, VaultPosition
from .notifications import EmailNotifier, TelegramNotifier
from .quotes import PythQuoteProvider
from .services import (
    HedgeExecutor,
    LiquidationDesk,
    LoanLifecycleManager,
    RiskScanner,
    VaultPositionManager,
)

logger = logging.getLogger(__name__)


class CreditEngine:
    """Single entry point for every lending, vault, hedge and risk operation.

    All managers share one :class:`CreditLedger`. Collaborators are passed in
    explicitly; :meth:`from_config` builds the production set.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        ledger: CreditLedger | None = None,
        quote_provider: QuoteProvider | None = None,
        execution_provider: ExecutionProvider | None = None,
        notifiers: Sequence[Notifier] | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.ledger = ledger if ledger is not None else CreditLedger()
        providers = self.config.providers

        self.loans = LoanLifecycleManager(self.ledger, self.config.lending)
        self.vaults = VaultPositionManager(
            self.ledger, quote_provider, quote_timeout=providers.quote_timeout
        )
        self.hedges = HedgeExecutor(
            self.ledger, execution_provider, timeout=providers.execution_timeout
        )
        self.liquidations = LiquidationDesk(self.ledger)
        self.risk = RiskScanner(self.ledger, self.config.risk, notifiers or ())

    @classmethod
    def from_config(cls, config: AppConfig) -> CreditEngine:
        """Build an engine with the providers and notifiers the config enables."""
        providers = config.providers

        quote_provider = None
        if providers.pyth.feeds:
            quote_provider = PythQuoteProvider(providers.pyth, timeout=providers.quote_timeout)

        execution_provider = None
        if providers.execution.enabled:
            execution_provider = HttpExecutionProvider(
                providers.execution, timeout=providers.execution_timeout
            )

        notifiers: list[Notifier] = []
        if config.notifications.telegram.enabled:
            notifiers.append(TelegramNotifier(config.notifications.telegram))
        if config.notifications.email.enabled:
            notifiers.append(EmailNotifier(config.notifications.email))

        snapshot = config.ledger.snapshot_path
        ledger = CreditLedger.load(snapshot) if snapshot else CreditLedger()

        logger.info(
            "Credit engine ready (quotes: %s, execution: %s, notifiers: %d)",
            "pyth" if quote_provider else "off",
            "http" if execution_provider else "off",
            len(notifiers),
        )
        return cls(config, ledger, quote_provider, execution_provider, notifiers)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> None:
        """Write the ledger snapshot when a snapshot path is configured."""
        if self.config.ledger.snapshot_path:
            self.ledger.save(self.config.ledger.snapshot_path)

    async def scan_pass(self) -> int:
        """Scan once and persist the ledger if the pass raised alerts."""
        created = await self.risk.scan()
        if created:
            self.save()
        return created

    # ------------------------------------------------------------------
    # Loans
    # ------------------------------------------------------------------

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
        return await self.loans.request_loan(
            owner_id,
            collateral_asset,
            collateral_amount,
            principal_amount,
            term_days,
            ltv_ratio,
            principal_asset=principal_asset,
        )

    async def approve_loan(
        self, loan_id: str, notes: str | None = None, owner_id: str | None = None
    ) -> Loan:
        return await self.loans.approve_loan(loan_id, notes=notes, owner_id=owner_id)

    async def reject_loan(
        self, loan_id: str, reason: str | None = None, owner_id: str | None = None
    ) -> Loan:
        return await self.loans.reject_loan(loan_id, reason=reason, owner_id=owner_id)

    async def repay_loan(self, loan_id: str, amount: float, owner_id: str | None = None) -> Loan:
        return await self.loans.repay_loan(loan_id, amount, owner_id=owner_id)

    async def liquidate_loan(
        self,
        loan_id: str,
        reason: str | None = None,
        recovered_amount: Any = 0,
        recovered_asset: Any = None,
        owner_id: str | None = None,
    ) -> Liquidation:
        return await self.loans.liquidate_loan(
            loan_id,
            reason=reason,
            recovered_amount=recovered_amount,
            recovered_asset=recovered_asset,
            owner_id=owner_id,
        )

    async def get_loan(self, loan_id: str, owner_id: str | None = None) -> Loan:
        return await self.loans.get_loan(loan_id, owner_id)

    async def list_loans_by_owner(self, owner_id: str, status: str | None = None) -> list[Loan]:
        return await self.loans.list_loans_by_owner(owner_id, status=status)

    # ------------------------------------------------------------------
    # Vault positions
    # ------------------------------------------------------------------

    async def open_position(
        self,
        owner_id: str,
        asset: str,
        amount: float,
        metadata: dict[str, Any] | None = None,
    ) -> VaultPosition:
        return await self.vaults.open_position(owner_id, asset, amount, metadata=metadata)

    async def list_positions_by_owner(
        self, owner_id: str, status: str | None = None
    ) -> list[VaultPosition]:
        return await self.vaults.list_positions_by_owner(owner_id, status=status)

    async def liquidate_position(
        self,
        position_id: str,
        reason: str | None = None,
        recovered_amount: Any = 0,
        recovered_asset: Any = None,
        owner_id: str | None = None,
    ) -> Liquidation:
        return await self.vaults.liquidate_position(
            position_id,
            reason=reason,
            recovered_amount=recovered_amount,
            recovered_asset=recovered_asset,
            owner_id=owner_id,
        )

    # ------------------------------------------------------------------
    # Hedges
    # ------------------------------------------------------------------

    async def execute_hedge(
        self,
        owner_id: str,
        asset_in: str,
        asset_out: str,
        amount_in: float,
        min_amount_out: float,
    ) -> Hedge:
        return await self.hedges.execute_hedge(
            owner_id, asset_in, asset_out, amount_in, min_amount_out
        )

    async def settle_hedge(
        self, hedge_id: str, outcome: ExecutionResult | dict[str, Any]
    ) -> Hedge:
        return await self.hedges.settle_hedge(hedge_id, outcome)

    async def list_hedges_by_owner(self, owner_id: str, status: str | None = None) -> list[Hedge]:
        return await self.hedges.list_hedges_by_owner(owner_id, status=status)

    # ------------------------------------------------------------------
    # Liquidations
    # ------------------------------------------------------------------

    async def record_liquidation(
        self,
        owner_id: str,
        loan_id: str | None = None,
        position_id: str | None = None,
        reason: str | None = None,
        recovered_amount: Any = 0,
        recovered_asset: Any = None,
    ) -> Liquidation:
        return await self.liquidations.record_liquidation(
            owner_id,
            loan_id=loan_id,
            position_id=position_id,
            reason=reason,
            recovered_amount=recovered_amount,
            recovered_asset=recovered_asset,
        )

    async def list_liquidations(self, owner_id: str | None = None) -> list[Liquidation]:
        return await self.liquidations.list_liquidations(owner_id)

    # ------------------------------------------------------------------
    # Risk
    # ------------------------------------------------------------------

    async def scan(self) -> int:
        return await self.risk.scan()

    async def get_alerts(self, limit: int | None = None) -> list[RiskAlert]:
        return await self.risk.get_alerts(limit)
