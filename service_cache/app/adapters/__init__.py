"""
Adapters package for the Cache Service.

Contains the stand-in data source behind the cached API routes. It
simulates slow backing queries so the effect of the response cache is
visible; it knows nothing about caching itself.
"""

from .mock_database import MockDatabase

__all__ = [
    "MockDatabase",
]
