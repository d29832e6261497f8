"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .pricing import DEFAULT_BASE_RATES

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LendingConfig:
    supported_collateral: tuple[str, ...] = ("BTC", "ETH", "SOL", "USDT")
    base_rates: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_BASE_RATES))
    max_ltv: float = 85.0
    min_term_days: int = 30
    max_term_days: int = 1825
    liquidation_threshold: float = 90.0
    principal_asset: str = "USDT"
    approval_window_hours: int = 24


@dataclass(frozen=True)
class RiskConfig:
    max_ltv: float = 80.0
    min_health_factor: float = 10.0
    scan_interval_minutes: int = 15
    alert_limit: int = 50


@dataclass(frozen=True)
class LedgerConfig:
    snapshot_path: str = ""


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ExecutionConfig:
    enabled: bool = False
    endpoint: str = ""
    api_key: str = ""


@dataclass(frozen=True)
class ProvidersConfig:
    quote_timeout: float = 5.0
    execution_timeout: float = 30.0
    pyth: PythConfig = field(default_factory=PythConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class EmailConfig:
    enabled: bool = False
    alert_email: str = ""
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    sender_email: str = ""
    sender_password: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


@dataclass(frozen=True)
class AppConfig:
    lending: LendingConfig = field(default_factory=LendingConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    providers: ProvidersConfig = field(default_factory=ProvidersConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_lending(raw: dict[str, Any]) -> LendingConfig:
    defaults = LendingConfig()
    supported = raw.get("supported_collateral", list(defaults.supported_collateral))
    base_rates = raw.get("base_rates", defaults.base_rates)
    return LendingConfig(
        supported_collateral=tuple(str(a).upper() for a in supported),
        base_rates={str(k).upper(): float(v) for k, v in base_rates.items()},
        max_ltv=float(raw.get("max_ltv", defaults.max_ltv)),
        min_term_days=int(raw.get("min_term_days", defaults.min_term_days)),
        max_term_days=int(raw.get("max_term_days", defaults.max_term_days)),
        liquidation_threshold=float(
            raw.get("liquidation_threshold", defaults.liquidation_threshold)
        ),
        principal_asset=str(raw.get("principal_asset", defaults.principal_asset)).upper(),
        approval_window_hours=int(
            raw.get("approval_window_hours", defaults.approval_window_hours)
        ),
    )


def _build_risk(raw: dict[str, Any]) -> RiskConfig:
    return RiskConfig(
        max_ltv=float(raw.get("max_ltv", 80.0)),
        min_health_factor=float(raw.get("min_health_factor", 10.0)),
        scan_interval_minutes=int(raw.get("scan_interval_minutes", 15)),
        alert_limit=int(raw.get("alert_limit", 50)),
    )


def _build_ledger(raw: dict[str, Any]) -> LedgerConfig:
    return LedgerConfig(snapshot_path=raw.get("snapshot_path", "") or "")


def _build_providers(raw: dict[str, Any]) -> ProvidersConfig:
    pyth_raw = raw.get("pyth", {})
    exec_raw = raw.get("execution", {})
    return ProvidersConfig(
        quote_timeout=float(raw.get("quote_timeout", 5.0)),
        execution_timeout=float(raw.get("execution_timeout", 30.0)),
        pyth=PythConfig(
            hermes_url=pyth_raw.get("hermes_url", PythConfig.hermes_url),
            feeds=dict(pyth_raw.get("feeds", {})),
        ),
        execution=ExecutionConfig(
            enabled=bool(exec_raw.get("enabled", False)),
            endpoint=exec_raw.get("endpoint", ""),
            api_key=exec_raw.get("api_key", ""),
        ),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    em = raw.get("email", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=tg.get("chat_id", ""),
        ),
        email=EmailConfig(
            enabled=bool(em.get("enabled", False)),
            alert_email=em.get("alert_email", ""),
            smtp_server=em.get("smtp_server", "smtp.gmail.com"),
            smtp_port=int(em.get("smtp_port", 587)),
            sender_email=em.get("sender_email", ""),
            sender_password=em.get("sender_password", ""),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate engine configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (two levels up from this file).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        lending=_build_lending(raw.get("lending") or {}),
        risk=_build_risk(raw.get("risk") or {}),
        ledger=_build_ledger(raw.get("ledger") or {}),
        providers=_build_providers(raw.get("providers") or {}),
        notifications=_build_notifications(raw.get("notifications") or {}),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    lending = cfg.lending
    if not lending.supported_collateral:
        raise ValueError("At least one collateral asset must be supported")

    for asset in lending.supported_collateral:
        if asset not in lending.base_rates:
            raise ValueError(f"Collateral asset '{asset}' has no base rate")

    if lending.min_term_days <= 0 or lending.min_term_days > lending.max_term_days:
        raise ValueError(
            f"Invalid term bounds: {lending.min_term_days}..{lending.max_term_days} days"
        )

    if not 0 < lending.max_ltv < lending.liquidation_threshold:
        raise ValueError(
            f"max_ltv ({lending.max_ltv}) must be positive and below the "
            f"liquidation threshold ({lending.liquidation_threshold})"
        )

    if cfg.risk.alert_limit <= 0:
        raise ValueError("risk.alert_limit must be positive")

    if cfg.providers.quote_timeout <= 0 or cfg.providers.execution_timeout <= 0:
        raise ValueError("Provider timeouts must be positive")

    if cfg.providers.execution.enabled and not cfg.providers.execution.endpoint:
        raise ValueError("Execution provider is enabled but has no endpoint")
