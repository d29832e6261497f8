"""Risk scanning — detects under-collateralized loans and positions."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timezone

from ..config import RiskConfig
from ..health import SEVERITY_CRITICAL, severity
from ..interfaces.notifier import Notifier
from ..ledger import CreditLedger
from ..models import (
    ENTITY_LOAN,
    ENTITY_VAULT_POSITION,
    POSITION_LIVE_STATUSES,
    Loan,
    RiskAlert,
    VaultPosition,
    new_id,
    utc_now,
)

logger = logging.getLogger(__name__)


class RiskScanner:
    """Scans every open loan and live vault position for threshold breaches.

    A scan only reads the entities it checks and writes alert records. It
    does not deduplicate: every call appends a fresh alert per breach, so
    running it repeatedly is safe and a breach missed by one pass is caught
    by the next.
    """

    def __init__(
        self,
        ledger: CreditLedger,
        config: RiskConfig | None = None,
        notifiers: Sequence[Notifier] = (),
    ) -> None:
        self._ledger = ledger
        self._config = config or RiskConfig()
        self._notifiers: list[Notifier] = list(notifiers)

    # ------------------------------------------------------------------
    # Breach detection
    # ------------------------------------------------------------------

    def _loan_alert(self, loan: Loan, now: datetime) -> RiskAlert | None:
        ltv = loan.ltv_ratio
        hf = loan.health_factor
        over_ltv = ltv is not None and ltv > self._config.max_ltv
        under_health = hf is not None and hf < self._config.min_health_factor
        if not (over_ltv or under_health):
            return None
        return RiskAlert(
            id=new_id(),
            entity_type=ENTITY_LOAN,
            entity_id=loan.id,
            owner_id=loan.owner_id,
            metrics={
                "ltv": ltv,
                "healthFactor": hf,
                "status": loan.status,
                "asset": loan.collateral_asset,
                "volatility": loan.volatility,
            },
            thresholds={
                "maxLtv": self._config.max_ltv,
                "minHealth": self._config.min_health_factor,
            },
            severity=severity(hf),
            created_at=now,
        )

    def _position_alert(self, position: VaultPosition, now: datetime) -> RiskAlert | None:
        hf = position.current_health_factor
        if hf is None or hf >= self._config.min_health_factor:
            return None
        return RiskAlert(
            id=new_id(),
            entity_type=ENTITY_VAULT_POSITION,
            entity_id=position.id,
            owner_id=position.owner_id,
            metrics={
                "asset": position.asset,
                "healthFactor": hf,
                "status": position.status,
            },
            thresholds={"minHealth": self._config.min_health_factor},
            severity=severity(hf),
            created_at=now,
        )

    async def scan(self) -> int:
        """Run one pass and return the number of alerts created."""
        now = utc_now()
        alerts: list[RiskAlert] = []
        loans_checked = positions_checked = 0

        for loan in await self._ledger.list_loans():
            if loan.is_terminal:
                continue
            loans_checked += 1
            alert = self._loan_alert(loan, now)
            if alert:
                alerts.append(alert)

        for position in await self._ledger.list_positions():
            if position.status not in POSITION_LIVE_STATUSES:
                continue
            positions_checked += 1
            alert = self._position_alert(position, now)
            if alert:
                alerts.append(alert)

        if alerts:
            await self._ledger.append_risk_alerts(alerts)
            logger.warning("Risk scan complete: %d alerts raised", len(alerts))
            await self._send_alert(self._build_summary(alerts), subject=self._subject(alerts))
        else:
            logger.info("Risk scan complete: no breaches")

        await self._send_log(
            self._build_scan_log(loans_checked, positions_checked, len(alerts)),
            silent=not alerts,
        )
        return len(alerts)

    async def get_alerts(self, limit: int | None = None) -> list[RiskAlert]:
        """Most recent alerts, newest first."""
        return await self._ledger.list_risk_alerts(
            limit if limit is not None else self._config.alert_limit
        )

    async def mark_processed(self, alert_id: str) -> RiskAlert:
        return await self._ledger.mark_alert_processed(alert_id)

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    @staticmethod
    def _subject(alerts: Sequence[RiskAlert]) -> str:
        if any(a.severity == SEVERITY_CRITICAL for a in alerts):
            return "🚨 CRITICAL: Liquidation Risk!"
        return "⚠️ WARNING: Health Below Threshold"

    @staticmethod
    def _format_alert(alert: RiskAlert) -> str:
        icon = "🚨" if alert.severity == SEVERITY_CRITICAL else "⚠️"
        hf = alert.metrics.get("healthFactor")
        hf_str = f"{hf:.2f}" if hf is not None else "—"
        line = f"{icon} {alert.entity_type} {alert.entity_id} · {alert.metrics.get('asset', '—')}"
        if alert.metrics.get("ltv") is not None:
            line += f" · LTV: {alert.metrics['ltv']:.2f}%"
        return f"{line} · HF: {hf_str}"

    def _build_summary(self, alerts: Sequence[RiskAlert]) -> str:
        lines = "\n".join(self._format_alert(a) for a in alerts)
        return (
            f"📋 Risk Scan — {len(alerts)} breach(es)\n"
            f"\n"
            f"{lines}\n"
            f"\n"
            f"Max LTV: {self._config.max_ltv:.2f}% · Min Health: {self._config.min_health_factor:.2f}\n"
            f"{self._now_str()} UTC"
        )

    def _build_scan_log(self, loans: int, positions: int, breaches: int) -> str:
        status = f"{breaches} breach(es)" if breaches else "no breaches"
        return (
            f"📋 Risk Scan · {status}\n"
            f"Loans checked: {loans} · Positions checked: {positions}\n"
            f"{self._now_str()} UTC"
        )

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    async def _send_log(self, message: str, silent: bool = True) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    # ------------------------------------------------------------------
    # Continuous mode
    # ------------------------------------------------------------------

    async def run_continuous(
        self,
        interval_minutes: int | None = None,
        scan_pass: Callable[[], Awaitable[int]] | None = None,
    ) -> None:
        """Scan repeatedly. A failed pass is logged and retried after a minute."""
        interval = interval_minutes or self._config.scan_interval_minutes
        run_pass = scan_pass or self.scan
        logger.info("Starting continuous risk scanning (every %d minutes)", interval)

        while True:
            try:
                await run_pass()
                await asyncio.sleep(interval * 60)
            except Exception as e:
                logger.error("Error in risk scanning loop: %s", e)
                await asyncio.sleep(60)
