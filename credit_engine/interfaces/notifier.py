"""Notifier protocol — risk alert delivery channel."""
from typing import Protocol


class Notifier(Protocol):
    """Channel the risk scanner fans breach summaries out to."""

    async def send_alert(self, message: str, subject: str = "") -> bool:
        """Deliver a breach summary. False when the channel is unconfigured or refused it."""
        ...

    async def send_log(self, message: str, silent: bool = True) -> bool:
        """Deliver an informational line; channels without a log stream return False."""
        ...
