"""Execution providers."""
from .http import HttpExecutionProvider

__all__ = ["HttpExecutionProvider"]
