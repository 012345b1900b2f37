"""Pricing domain exports."""
from .service import PriceQuote, PriceResolver

__all__ = ["PriceQuote", "PriceResolver"]
