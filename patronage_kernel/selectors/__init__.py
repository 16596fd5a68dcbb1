"""Kernel selectors - read side (returns frozen DTOs, never mutates)."""

from patronage_kernel.selectors.base import BaseSelector
from patronage_kernel.selectors.dividend_selector import DividendSelector

__all__ = [
    "BaseSelector",
    "DividendSelector",
]
