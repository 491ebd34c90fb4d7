"""Callback/hook system for foreman lifecycle events."""

from foreman.callbacks.base import ForemanCallback, BaseCallback, emit
from foreman.callbacks.logging import LoggingCallback

__all__ = ["ForemanCallback", "BaseCallback", "LoggingCallback", "emit"]
