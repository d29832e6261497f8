"""Integration tests for the risk scanner — breach detection and alert dispatch."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from credit_engine.config import RiskConfig
from credit_engine.ledger import CreditLedger
from credit_engine.models import ENTITY_LOAN, ENTITY_VAULT_POSITION
from credit_engine.services import LoanLifecycleManager, RiskScanner, VaultPositionManager

OWNER = "user-1"


class TestScan:
    @pytest.mark.asyncio
    async def test_no_breaches(
        self, scanner: RiskScanner, loans: LoanLifecycleManager, notifier: AsyncMock
    ) -> None:
        await loans.request_loan(OWNER, "BTC", 1, 1000, 90, 60)
        assert await scanner.scan() == 0
        assert await scanner.get_alerts() == []
        notifier.send_alert.assert_not_called()

        notifier.send_log.assert_awaited_once()
        message = notifier.send_log.call_args.args[0]
        assert "no breaches" in message
        assert "Loans checked: 1" in message
        assert notifier.send_log.call_args.kwargs["silent"] is True

    @pytest.mark.asyncio
    async def test_scan_log_after_breach_is_not_silent(
        self,
        scanner: RiskScanner,
        loans: LoanLifecycleManager,
        vaults: VaultPositionManager,
        notifier: AsyncMock,
    ) -> None:
        await loans.request_loan(OWNER, "ETH", 1, 2000, 90, 82)
        await vaults.open_position(OWNER, "BTC", 1)
        await scanner.scan()

        message = notifier.send_log.call_args.args[0]
        assert "1 breach(es)" in message
        assert "Positions checked: 1" in message
        assert notifier.send_log.call_args.kwargs["silent"] is False

    @pytest.mark.asyncio
    async def test_high_ltv_loan_flagged(
        self, scanner: RiskScanner, loans: LoanLifecycleManager, notifier: AsyncMock
    ) -> None:
        loan = await loans.request_loan(OWNER, "ETH", 1, 2000, 90, 82)
        assert await scanner.scan() == 1

        [alert] = await scanner.get_alerts()
        assert alert.entity_type == ENTITY_LOAN
        assert alert.entity_id == loan.id
        assert alert.owner_id == OWNER
        assert alert.metrics["ltv"] == 82.0
        assert alert.metrics["healthFactor"] == pytest.approx(8.9)
        assert alert.metrics["status"] == "pending_approval"
        assert alert.metrics["volatility"] == "medium-high"
        assert alert.thresholds == {"maxLtv": 80.0, "minHealth": 10.0}
        assert alert.severity == "warning"
        assert alert.processed is False

        notifier.send_alert.assert_awaited_once()
        message = notifier.send_alert.call_args.args[0]
        assert loan.id in message
        assert "LTV: 82.00%" in message
        assert notifier.send_alert.call_args.kwargs["subject"].startswith("⚠️")

    @pytest.mark.asyncio
    async def test_ltv_only_breach(
        self, ledger: CreditLedger, loans: LoanLifecycleManager
    ) -> None:
        scanner = RiskScanner(ledger, RiskConfig(max_ltv=50.0, min_health_factor=0.0))
        await loans.request_loan(OWNER, "BTC", 1, 1000, 90, 60)
        assert await scanner.scan() == 1

    @pytest.mark.asyncio
    async def test_critical_position(
        self, scanner: RiskScanner, vaults: VaultPositionManager, notifier: AsyncMock
    ) -> None:
        position = await vaults.open_position(OWNER, "SOL", 10, metadata={"ltvRatio": 95})
        await vaults.open_position(OWNER, "BTC", 1)
        assert await scanner.scan() == 1

        [alert] = await scanner.get_alerts()
        assert alert.entity_type == ENTITY_VAULT_POSITION
        assert alert.entity_id == position.id
        assert alert.severity == "critical"
        assert alert.thresholds == {"minHealth": 10.0}
        assert "CRITICAL" in notifier.send_alert.call_args.kwargs["subject"]

    @pytest.mark.asyncio
    async def test_terminal_and_closed_entities_skipped(
        self,
        scanner: RiskScanner,
        loans: LoanLifecycleManager,
        vaults: VaultPositionManager,
    ) -> None:
        loan = await loans.request_loan(OWNER, "ETH", 1, 2000, 90, 84)
        await loans.reject_loan(loan.id)
        position = await vaults.open_position(OWNER, "SOL", 10, metadata={"ltvRatio": 95})
        await vaults.close_position(position.id)
        assert await scanner.scan() == 0

    @pytest.mark.asyncio
    async def test_repeated_scans_detect_same_breaches(
        self,
        scanner: RiskScanner,
        loans: LoanLifecycleManager,
        vaults: VaultPositionManager,
    ) -> None:
        await loans.request_loan(OWNER, "ETH", 1, 2000, 90, 82)
        await vaults.open_position(OWNER, "SOL", 10, metadata={"ltvRatio": 88})

        first = await scanner.scan()
        second = await scanner.scan()
        assert first == second == 2
        # Alerts accumulate; scans do not deduplicate.
        assert len(await scanner.get_alerts()) == 4

    @pytest.mark.asyncio
    async def test_scan_does_not_mutate_entities(
        self, ledger: CreditLedger, scanner: RiskScanner, loans: LoanLifecycleManager
    ) -> None:
        loan = await loans.request_loan(OWNER, "ETH", 1, 2000, 90, 82)
        await scanner.scan()
        assert await ledger.get_loan(loan.id) == loan

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_fail_scan(
        self, ledger: CreditLedger, loans: LoanLifecycleManager
    ) -> None:
        broken = AsyncMock()
        broken.send_alert = AsyncMock(side_effect=RuntimeError("telegram down"))
        healthy = AsyncMock()
        scanner = RiskScanner(ledger, RiskConfig(), [broken, healthy])
        await loans.request_loan(OWNER, "ETH", 1, 2000, 90, 82)

        assert await scanner.scan() == 1
        healthy.send_alert.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_send_log_failure_does_not_fail_scan(
        self, ledger: CreditLedger, loans: LoanLifecycleManager
    ) -> None:
        broken = AsyncMock()
        broken.send_log = AsyncMock(side_effect=RuntimeError("log bot down"))
        scanner = RiskScanner(ledger, RiskConfig(), [broken])
        await loans.request_loan(OWNER, "ETH", 1, 2000, 90, 82)

        assert await scanner.scan() == 1
        broken.send_alert.assert_awaited_once()


class TestAlerts:
    @pytest.mark.asyncio
    async def test_limit_and_order(
        self, ledger: CreditLedger, loans: LoanLifecycleManager
    ) -> None:
        scanner = RiskScanner(ledger, RiskConfig(alert_limit=2))
        await loans.request_loan(OWNER, "ETH", 1, 2000, 90, 82)
        for _ in range(3):
            await scanner.scan()

        assert len(await scanner.get_alerts()) == 2
        assert len(await scanner.get_alerts(limit=10)) == 3
        assert await scanner.get_alerts(limit=0) == []

        alerts = await scanner.get_alerts(limit=10)
        assert alerts[0].created_at >= alerts[-1].created_at

    @pytest.mark.asyncio
    async def test_mark_processed(
        self, scanner: RiskScanner, loans: LoanLifecycleManager
    ) -> None:
        await loans.request_loan(OWNER, "ETH", 1, 2000, 90, 82)
        await scanner.scan()
        [alert] = await scanner.get_alerts()
        await scanner.mark_processed(alert.id)
        [stored] = await scanner.get_alerts()
        assert stored.processed is True


class TestRunContinuous:
    @pytest.mark.asyncio
    async def test_loops_until_cancelled(self, scanner: RiskScanner) -> None:
        scan_pass = AsyncMock(return_value=0)
        with patch(
            "credit_engine.services.risk.asyncio.sleep",
            side_effect=[None, asyncio.CancelledError()],
        ) as mock_sleep:
            with pytest.raises(asyncio.CancelledError):
                await scanner.run_continuous(scan_pass=scan_pass)

        assert scan_pass.await_count == 2
        mock_sleep.assert_any_call(5 * 60)

    @pytest.mark.asyncio
    async def test_failed_pass_retries_after_a_minute(self, scanner: RiskScanner) -> None:
        scan_pass = AsyncMock(side_effect=[RuntimeError("snapshot unreadable"), 0])
        with patch(
            "credit_engine.services.risk.asyncio.sleep",
            side_effect=[None, asyncio.CancelledError()],
        ) as mock_sleep:
            with pytest.raises(asyncio.CancelledError):
                await scanner.run_continuous(interval_minutes=2, scan_pass=scan_pass)

        assert mock_sleep.call_args_list[0].args == (60,)
        assert mock_sleep.call_args_list[1].args == (120,)
