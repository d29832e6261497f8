"""Quote providers."""
from .pyth import PythQuoteProvider

__all__ = ["PythQuoteProvider"]
