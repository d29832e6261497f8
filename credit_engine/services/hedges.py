"""Hedge execution against an external swap provider."""
from __future__ import annotations

import logging
from typing import Any

from ..errors import ValidationError
from ..interfaces.execution_provider import ExecutionProvider
from ..ledger import CreditLedger
from ..models import (
    HEDGE_CANCELLED,
    HEDGE_EXECUTED,
    HEDGE_FAILED,
    ExecutionResult,
    Hedge,
    new_id,
    utc_now,
)
from ..providers import guarded_call
from ..validation import normalize_asset, parse_number, parse_positive, require_fields

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Hedge execution failed"


def _as_execution_result(value: Any) -> ExecutionResult:
    """Accept either an ExecutionResult or the provider's plain mapping form."""
    if isinstance(value, ExecutionResult):
        return value
    if isinstance(value, dict):
        amount_out = value.get("amountOut")
        return ExecutionResult(
            success=bool(value.get("success")),
            amount_out=parse_number(amount_out, "amountOut") if amount_out is not None else None,
            execution_reference=value.get("executionReference") or value.get("transactionHash"),
            error=value.get("error"),
        )
    return ExecutionResult(success=False, error=f"Unrecognised provider response: {value!r}")


class HedgeExecutor:
    """Persists hedges and drives them to a terminal outcome exactly once.

    Executions are never retried here; retry policy belongs to the caller.
    """

    def __init__(
        self,
        ledger: CreditLedger,
        execution_provider: ExecutionProvider | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._ledger = ledger
        self._provider = execution_provider
        self._timeout = timeout

    async def execute_hedge(
        self,
        owner_id: str,
        asset_in: str,
        asset_out: str,
        amount_in: float,
        min_amount_out: float,
        timeout: float | None = None,
    ) -> Hedge:
        """Record a hedge and submit it to the execution provider.

        Without a provider the hedge stays ``pending`` so execution can be
        settled later via :meth:`settle_hedge`. Provider errors and timeouts
        end in ``failed`` with the message in ``details['error']``.
        """
        require_fields(
            asset_in=asset_in,
            asset_out=asset_out,
            amount_in=amount_in,
            min_amount_out=min_amount_out,
        )
        symbol_in = normalize_asset(asset_in, "asset_in")
        symbol_out = normalize_asset(asset_out, "asset_out")
        quantity = parse_positive(amount_in, "amount_in")
        floor = parse_number(min_amount_out, "min_amount_out")
        if floor < 0:
            raise ValidationError("min_amount_out cannot be negative", "min_amount_out", min_amount_out)

        now = utc_now()
        hedge = await self._ledger.create_hedge(
            Hedge(
                id=new_id(),
                owner_id=owner_id,
                asset_in=symbol_in,
                asset_out=symbol_out,
                amount_in=quantity,
                min_amount_out=floor,
                created_at=now,
                updated_at=now,
                details={"minAmountOut": floor, "error": None},
            )
        )

        if self._provider is None:
            logger.info("No execution provider configured; hedge %s left pending", hedge.id)
            return hedge

        provider = getattr(self._provider, "name", type(self._provider).__name__)
        try:
            result = await guarded_call(
                provider,
                self._provider.execute_hedge(symbol_in, symbol_out, quantity, floor),
                timeout if timeout is not None else self._timeout,
            )
            if not result.ok:
                outcome = ExecutionResult(success=False, error=result.error)
            else:
                outcome = _as_execution_result(result.value)
        except Exception as e:
            # The hedge row already exists; it must not stay pending.
            logger.exception("Hedge %s: execution provider %s misbehaved", hedge.id, provider)
            outcome = ExecutionResult(success=False, error=f"{type(e).__name__}: {e}")
        return await self._apply_outcome(hedge, outcome)

    async def _apply_outcome(self, hedge: Hedge, outcome: ExecutionResult) -> Hedge:
        if outcome.success:
            updated = await self._ledger.update_hedge_outcome(
                hedge.id,
                HEDGE_EXECUTED,
                amount_out=outcome.amount_out,
                execution_reference=outcome.execution_reference,
                details={**hedge.details, "error": None},
            )
            logger.info(
                "Hedge %s executed: %s %s -> %s %s (ref %s)",
                hedge.id,
                hedge.amount_in,
                hedge.asset_in,
                outcome.amount_out,
                hedge.asset_out,
                outcome.execution_reference,
            )
            return updated

        error = outcome.error or DEFAULT_FAILURE_MESSAGE
        logger.warning("Hedge %s failed: %s", hedge.id, error)
        return await self._ledger.update_hedge_outcome(
            hedge.id,
            HEDGE_FAILED,
            execution_reference=outcome.execution_reference,
            details={**hedge.details, "error": error},
        )

    async def settle_hedge(self, hedge_id: str, outcome: ExecutionResult | dict[str, Any]) -> Hedge:
        """Apply an execution result delivered after submission."""
        hedge = await self._ledger.get_hedge(hedge_id)
        return await self._apply_outcome(hedge, _as_execution_result(outcome))

    async def cancel_hedge(self, hedge_id: str, owner_id: str | None = None) -> Hedge:
        hedge = await self._ledger.get_hedge(hedge_id, owner_id)
        return await self._ledger.update_hedge_outcome(
            hedge.id, HEDGE_CANCELLED, details={**hedge.details, "cancelledAt": utc_now().isoformat()}
        )

    async def get_hedge(self, hedge_id: str, owner_id: str | None = None) -> Hedge:
        return await self._ledger.get_hedge(hedge_id, owner_id)

    async def list_hedges_by_owner(self, owner_id: str, status: str | None = None) -> list[Hedge]:
        return await self._ledger.list_hedges(owner_id=owner_id, status=status)
