"""Protocol interfaces for the credit engine's external collaborators."""
from .execution_provider import ExecutionProvider
from .notifier import Notifier
from .quote_provider import QuoteProvider

__all__ = ["ExecutionProvider", "Notifier", "QuoteProvider"]
