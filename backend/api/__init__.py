"""API route handlers."""
from . import portfolio, prices

__all__ = ["portfolio", "prices"]
