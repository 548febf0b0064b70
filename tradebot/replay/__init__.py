"""Simulated exchange for dry runs and tests"""

from .paper_exchange import PaperExchange

__all__ = ["PaperExchange"]
