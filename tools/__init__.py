"""
Booking handler registry package.
"""

from .handler_registry import HandlerRegistry

__all__ = ["HandlerRegistry"]
