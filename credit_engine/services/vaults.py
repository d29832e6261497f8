"""Vault positions — deposit, valuation refresh, unwind and liquidation."""
from __future__ import annotations

import logging
from typing import Any

from ..errors import ValidationError
from ..interfaces.quote_provider import QuoteProvider
from ..ledger import CreditLedger
from ..models import (
    POSITION_CLOSING,
    POSITION_LIVE_STATUSES,
    POSITION_OPEN,
    Liquidation,
    VaultPosition,
    new_id,
    utc_now,
)
from ..providers import guarded_call
from ..validation import normalize_asset, parse_positive, require_fields
from .recovery import coerce_recovery, write_liquidation

logger = logging.getLogger(__name__)


class VaultPositionManager:
    """Tracks collateral deposits: open -> closing -> closed, or open -> closed."""

    def __init__(
        self,
        ledger: CreditLedger,
        quote_provider: QuoteProvider | None = None,
        quote_timeout: float = 5.0,
    ) -> None:
        self._ledger = ledger
        self._quotes = quote_provider
        self._quote_timeout = quote_timeout

    async def open_position(
        self,
        owner_id: str,
        asset: str,
        amount: float,
        metadata: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> VaultPosition:
        """Persist an open position, then try to value it.

        The position exists even when no live quote is available; its
        ``value_usd`` then stays at 0.
        """
        require_fields(asset=asset, amount=amount)
        symbol = normalize_asset(asset, "asset")
        quantity = parse_positive(amount, "amount")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata must be a mapping", "metadata", metadata)

        now = utc_now()
        position = await self._ledger.create_vault_position(
            VaultPosition(
                id=new_id(),
                owner_id=owner_id,
                asset=symbol,
                amount=quantity,
                created_at=now,
                updated_at=now,
                metadata=dict(metadata or {}),
            )
        )
        logger.info("Position %s opened for %s: %s %s", position.id, owner_id, quantity, symbol)
        return await self.refresh_valuation(position.id, timeout=timeout)

    async def refresh_valuation(
        self, position_id: str, timeout: float | None = None
    ) -> VaultPosition:
        """Best-effort USD revaluation. On any provider failure the stored value is kept."""
        position = await self._ledger.get_position(position_id)
        if position.status not in POSITION_LIVE_STATUSES:
            return position

        if self._quotes is None:
            logger.debug("No quote provider configured; %s keeps value %s", position_id, position.value_usd)
            return position

        provider = getattr(self._quotes, "name", type(self._quotes).__name__)
        result = await guarded_call(
            provider,
            self._quotes.fetch_prices([position.asset]),
            timeout if timeout is not None else self._quote_timeout,
        )
        if not result.ok:
            logger.info(
                "Valuation of %s skipped (%s); keeping %s USD",
                position_id,
                result.error,
                position.value_usd,
            )
            return position

        price = (result.value or {}).get(position.asset)
        if not price or price <= 0:
            logger.warning("No usable %s quote from %s for position %s", position.asset, provider, position_id)
            return position

        return await self._ledger.update_position_valuation(
            position_id, value_usd=position.amount * price
        )

    async def begin_unwind(self, position_id: str, owner_id: str | None = None) -> VaultPosition:
        return await self._ledger.transition_position(
            position_id, (POSITION_OPEN,), POSITION_CLOSING, owner_id=owner_id
        )

    async def close_position(self, position_id: str, owner_id: str | None = None) -> VaultPosition:
        return await self._ledger.close_position(position_id, owner_id=owner_id)

    async def liquidate_position(
        self,
        position_id: str,
        reason: str | None = None,
        recovered_amount: Any = 0,
        recovered_asset: Any = None,
        owner_id: str | None = None,
    ) -> Liquidation:
        """Close a live position immediately and record the liquidation."""
        recovered, asset = coerce_recovery(recovered_amount, recovered_asset)
        position = await self._ledger.close_position(position_id, owner_id=owner_id)
        return await write_liquidation(
            self._ledger,
            position.owner_id,
            position_id=position.id,
            reason=reason,
            recovered_amount=recovered,
            recovered_asset=asset,
            details={
                "asset": position.asset,
                "amount": position.amount,
                "valueUsd": position.value_usd,
            },
        )

    async def get_position(self, position_id: str, owner_id: str | None = None) -> VaultPosition:
        return await self._ledger.get_position(position_id, owner_id)

    async def list_positions_by_owner(
        self, owner_id: str, status: str | None = None
    ) -> list[VaultPosition]:
        return await self._ledger.list_positions(owner_id=owner_id, status=status)
