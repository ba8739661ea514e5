"""Opt Engine - generic optimization engine with pluggable solution strategies."""

__version__ = "0.1.0"

from .engine import OptimizationEngine

__all__ = ["OptimizationEngine"]
