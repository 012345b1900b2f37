"""Slip storage adapters."""
from .slip_store import LocalSlipStorage

__all__ = ["LocalSlipStorage"]
