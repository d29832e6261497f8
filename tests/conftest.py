"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from credit_engine.config import (
    AppConfig,
    EmailConfig,
    LendingConfig,
    NotificationsConfig,
    RiskConfig,
    TelegramConfig,
)
from credit_engine.ledger import CreditLedger
from credit_engine.models import ExecutionResult
from credit_engine.services import (
    HedgeExecutor,
    LiquidationDesk,
    LoanLifecycleManager,
    RiskScanner,
    VaultPositionManager,
)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def lending_config() -> LendingConfig:
    return LendingConfig()


@pytest.fixture()
def risk_config() -> RiskConfig:
    return RiskConfig(max_ltv=80.0, min_health_factor=10.0, scan_interval_minutes=5)


@pytest.fixture()
def sample_app_config(lending_config: LendingConfig, risk_config: RiskConfig) -> AppConfig:
    return AppConfig(
        lending=lending_config,
        risk=risk_config,
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                alert_bot_token="fake-alert-token",
                log_bot_token="fake-log-token",
                chat_id="12345",
            ),
            email=EmailConfig(enabled=False),
        ),
    )


# ---------------------------------------------------------------------------
# Ledger and manager fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def ledger() -> CreditLedger:
    return CreditLedger()


@pytest.fixture()
def loans(ledger: CreditLedger, lending_config: LendingConfig) -> LoanLifecycleManager:
    return LoanLifecycleManager(ledger, lending_config)


@pytest.fixture()
def vaults(ledger: CreditLedger) -> VaultPositionManager:
    return VaultPositionManager(ledger)


@pytest.fixture()
def hedges(ledger: CreditLedger) -> HedgeExecutor:
    return HedgeExecutor(ledger)


@pytest.fixture()
def desk(ledger: CreditLedger) -> LiquidationDesk:
    return LiquidationDesk(ledger)


@pytest.fixture()
def notifier() -> AsyncMock:
    mock = AsyncMock()
    mock.send_alert = AsyncMock(return_value=True)
    mock.send_log = AsyncMock(return_value=True)
    return mock


@pytest.fixture()
def scanner(ledger: CreditLedger, risk_config: RiskConfig, notifier: AsyncMock) -> RiskScanner:
    return RiskScanner(ledger, risk_config, [notifier])


# ---------------------------------------------------------------------------
# Provider fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def quote_provider() -> AsyncMock:
    mock = AsyncMock()
    mock.name = "test-quotes"
    mock.fetch_prices = AsyncMock(return_value={"BTC": 60000.0, "ETH": 3000.0})
    return mock


@pytest.fixture()
def execution_provider() -> AsyncMock:
    mock = AsyncMock()
    mock.name = "test-execution"
    mock.execute_hedge = AsyncMock(
        return_value=ExecutionResult(success=True, amount_out=2950.0, execution_reference="0xabc")
    )
    return mock


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    lending:
      supported_collateral: [BTC, ETH]
      base_rates: {BTC: 3.5, ETH: 4.0}
      max_ltv: 75
      min_term_days: 30
      max_term_days: 365
      approval_window_hours: 48
    risk:
      max_ltv: 70
      min_health_factor: 15
      scan_interval_minutes: 5
      alert_limit: 20
    ledger:
      snapshot_path: ""
    providers:
      quote_timeout: 3
      execution_timeout: 20
      pyth:
        hermes_url: "https://hermes.example.com"
        feeds: {btc: "aaa", ETH: "bbb"}
      execution:
        enabled: false
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: "999"
      email:
        enabled: false
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
