"""Bank transfer slip verification adapters."""
from .slipok_client import SlipOKClient

__all__ = ["SlipOKClient"]
