"""Presentation of scan results (terminal and JSON)."""

from .reporter import Reporter

__all__ = ["Reporter"]
