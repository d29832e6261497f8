"""Execution provider protocol — hedge swap execution abstraction."""
from typing import Protocol

from ..models import ExecutionResult


class ExecutionProvider(Protocol):
    """Abstract interface for executing an asset-for-asset swap."""

    async def execute_hedge(
        self, asset_in: str, asset_out: str, amount_in: float, min_amount_out: float
    ) -> ExecutionResult: ...
