"""
Shared Data Models
==================

This package contains dataclasses used across the project.
"""

from .deal import Batch, Deal, Side

__all__ = [
    "Batch",
    "Deal",
    "Side",
]
