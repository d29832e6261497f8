"""JSON-RPC hedge execution provider."""
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ..config import ExecutionConfig
from ..errors import ProviderError
from ..models import ExecutionResult

logger = logging.getLogger(__name__)


class HttpExecutionProvider:
    """Submit hedge swaps to a JSON-RPC execution endpoint.

    A single endpoint is used and requests are never re-sent: a swap that
    reached a venue must not be submitted twice.
    """

    name = "http-execution"

    def __init__(self, config: ExecutionConfig, timeout: float = 30.0) -> None:
        self.endpoint = config.endpoint
        self.api_key = config.api_key
        self.timeout = timeout

    async def rpc_call(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """Make a single JSON-RPC call and return its ``result`` member."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.post(
                    self.endpoint,
                    json=payload,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status != 200:
                        raise ProviderError(
                            f"Execution endpoint returned HTTP {response.status}",
                            provider=self.name,
                        )
                    result = await response.json()
        except (aiohttp.ClientError, OSError) as e:
            raise ProviderError(f"Execution request failed: {e}", provider=self.name) from e

        if "error" in result:
            raise ProviderError(f"RPC Error: {result['error']}", provider=self.name)
        return result.get("result", {})

    async def execute_hedge(
        self, asset_in: str, asset_out: str, amount_in: float, min_amount_out: float
    ) -> ExecutionResult:
        """Execute a swap; a venue-side rejection comes back as ``success=False``."""
        result = await self.rpc_call(
            "hedge_execute",
            {
                "assetIn": asset_in,
                "assetOut": asset_out,
                "amountIn": amount_in,
                "minAmountOut": min_amount_out,
            },
        )
        amount_out = result.get("amountOut")
        if amount_out is not None:
            try:
                amount_out = float(amount_out)
            except (TypeError, ValueError):
                raise ProviderError(
                    f"Malformed amountOut in execution response: {amount_out!r}", provider=self.name
                ) from None
        return ExecutionResult(
            success=bool(result.get("success")),
            amount_out=amount_out,
            execution_reference=result.get("transactionHash") or result.get("reference"),
            error=result.get("error"),
        )
