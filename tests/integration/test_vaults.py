"""Integration tests for vault positions with mocked quotes."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from credit_engine.errors import ConflictError, NotFoundError, ProviderError, ValidationError
from credit_engine.ledger import CreditLedger
from credit_engine.models import (
    ENTRY_POSITION_LIQUIDATION,
    POSITION_CLOSED,
    POSITION_CLOSING,
    POSITION_OPEN,
)
from credit_engine.services import VaultPositionManager

OWNER = "user-1"


class TestOpenPosition:
    @pytest.mark.asyncio
    async def test_without_quote_provider(self, vaults: VaultPositionManager) -> None:
        position = await vaults.open_position(OWNER, "btc", 0.1)
        assert position.status == POSITION_OPEN
        assert position.asset == "BTC"
        assert position.value_usd == 0.0
        assert position.current_health_factor is None

    @pytest.mark.asyncio
    async def test_valued_from_quote(
        self, ledger: CreditLedger, quote_provider: AsyncMock
    ) -> None:
        vaults = VaultPositionManager(ledger, quote_provider)
        position = await vaults.open_position(OWNER, "BTC", 0.1)
        assert position.value_usd == pytest.approx(6000.0)
        quote_provider.fetch_prices.assert_awaited_once_with(["BTC"])

    @pytest.mark.asyncio
    async def test_provider_error_keeps_position(
        self, ledger: CreditLedger, quote_provider: AsyncMock
    ) -> None:
        quote_provider.fetch_prices.side_effect = ProviderError("Pyth returned HTTP 503")
        vaults = VaultPositionManager(ledger, quote_provider)
        position = await vaults.open_position(OWNER, "BTC", 0.1)
        assert position.status == POSITION_OPEN
        assert position.value_usd == 0.0
        assert await vaults.list_positions_by_owner(OWNER) == [position]

    @pytest.mark.asyncio
    async def test_slow_provider_times_out(
        self, ledger: CreditLedger, quote_provider: AsyncMock
    ) -> None:
        async def _slow(symbols=None):
            await asyncio.sleep(5)
            return {"BTC": 1.0}

        quote_provider.fetch_prices.side_effect = _slow
        vaults = VaultPositionManager(ledger, quote_provider, quote_timeout=0.01)
        position = await vaults.open_position(OWNER, "BTC", 0.1)
        assert position.value_usd == 0.0

    @pytest.mark.asyncio
    async def test_missing_quote(self, ledger: CreditLedger, quote_provider: AsyncMock) -> None:
        vaults = VaultPositionManager(ledger, quote_provider)
        position = await vaults.open_position(OWNER, "SOL", 3)
        assert position.value_usd == 0.0

    @pytest.mark.asyncio
    async def test_metadata_health(self, vaults: VaultPositionManager) -> None:
        position = await vaults.open_position(OWNER, "ETH", 2, metadata={"ltvRatio": 45})
        assert position.current_health_factor == 50.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "asset, amount, field",
        [(None, 1, "asset"), ("BTC", 0, "amount"), ("BTC", -1, "amount"), ("", 1, "asset")],
    )
    async def test_invalid_input(
        self, vaults: VaultPositionManager, asset: object, amount: object, field: str
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await vaults.open_position(OWNER, asset, amount)
        assert exc_info.value.field == field

    @pytest.mark.asyncio
    async def test_metadata_must_be_mapping(self, vaults: VaultPositionManager) -> None:
        with pytest.raises(ValidationError):
            await vaults.open_position(OWNER, "BTC", 1, metadata=["ltvRatio", 50])


class TestRefreshValuation:
    @pytest.mark.asyncio
    async def test_refresh_picks_up_new_price(
        self, ledger: CreditLedger, quote_provider: AsyncMock
    ) -> None:
        vaults = VaultPositionManager(ledger, quote_provider)
        position = await vaults.open_position(OWNER, "ETH", 2)
        quote_provider.fetch_prices.return_value = {"ETH": 2500.0}
        refreshed = await vaults.refresh_valuation(position.id)
        assert refreshed.value_usd == pytest.approx(5000.0)

    @pytest.mark.asyncio
    async def test_closed_position_not_revalued(
        self, ledger: CreditLedger, quote_provider: AsyncMock
    ) -> None:
        vaults = VaultPositionManager(ledger, quote_provider)
        position = await vaults.open_position(OWNER, "ETH", 2)
        await vaults.close_position(position.id)
        quote_provider.fetch_prices.reset_mock()
        closed = await vaults.refresh_valuation(position.id)
        assert closed.status == POSITION_CLOSED
        quote_provider.fetch_prices.assert_not_awaited()


class TestUnwind:
    @pytest.mark.asyncio
    async def test_open_closing_closed(self, vaults: VaultPositionManager) -> None:
        position = await vaults.open_position(OWNER, "BTC", 1)
        closing = await vaults.begin_unwind(position.id)
        assert closing.status == POSITION_CLOSING
        with pytest.raises(ConflictError):
            await vaults.begin_unwind(position.id)
        closed = await vaults.close_position(position.id, owner_id=OWNER)
        assert closed.status == POSITION_CLOSED

    @pytest.mark.asyncio
    async def test_owner_scoping(self, vaults: VaultPositionManager) -> None:
        position = await vaults.open_position(OWNER, "BTC", 1)
        with pytest.raises(NotFoundError):
            await vaults.close_position(position.id, owner_id="user-2")


class TestLiquidatePosition:
    @pytest.mark.asyncio
    async def test_liquidation_closes_position(
        self, ledger: CreditLedger, vaults: VaultPositionManager
    ) -> None:
        position = await vaults.open_position(OWNER, "ETH", 2)
        liquidation = await vaults.liquidate_position(
            position.id, reason="health below zero", recovered_amount=4000, recovered_asset="USDT"
        )
        assert liquidation.position_id == position.id
        assert liquidation.loan_id is None
        assert liquidation.details["amount"] == 2.0
        assert (await vaults.get_position(position.id)).status == POSITION_CLOSED

        entries = await ledger.list_entries(reference_id=position.id)
        assert entries[0].type == ENTRY_POSITION_LIQUIDATION
        assert entries[0].amount == 4000.0

    @pytest.mark.asyncio
    async def test_closing_position_can_be_liquidated(self, vaults: VaultPositionManager) -> None:
        position = await vaults.open_position(OWNER, "ETH", 2)
        await vaults.begin_unwind(position.id)
        liquidation = await vaults.liquidate_position(position.id)
        assert liquidation.recovered_amount == 0.0

    @pytest.mark.asyncio
    async def test_closed_position_conflicts(self, vaults: VaultPositionManager) -> None:
        position = await vaults.open_position(OWNER, "ETH", 2)
        await vaults.liquidate_position(position.id)
        with pytest.raises(ConflictError):
            await vaults.liquidate_position(position.id)


class TestListPositions:
    @pytest.mark.asyncio
    async def test_by_owner_and_status(self, vaults: VaultPositionManager) -> None:
        a = await vaults.open_position(OWNER, "BTC", 1)
        b = await vaults.open_position(OWNER, "ETH", 1)
        await vaults.open_position("user-2", "SOL", 1)
        await vaults.close_position(a.id)

        assert [p.id for p in await vaults.list_positions_by_owner(OWNER)] == [b.id, a.id]
        open_only = await vaults.list_positions_by_owner(OWNER, POSITION_OPEN)
        assert [p.id for p in open_only] == [b.id]
