"""Domain models representing normalized market and news data."""

from .models import NormalizedMarket, NormalizedNewsArticle

__all__ = [
    "NormalizedMarket",
    "NormalizedNewsArticle",
]
