"""Service modules"""
from .hedges import HedgeExecutor
from .liquidations import LiquidationDesk
from .loans import LoanLifecycleManager
from .risk import RiskScanner
from .vaults import VaultPositionManager

__all__ = [
    "HedgeExecutor",
    "LiquidationDesk",
    "LoanLifecycleManager",
    "RiskScanner",
    "VaultPositionManager",
]
