"""Catalog stores: the shared contract and its two implementations."""

from .base import CatalogStore
from .direct import DirectStore
from .managed import ManagedStore
from .watch import ChangeHub, Subscription

__all__ = [
    "CatalogStore",
    "DirectStore",
    "ManagedStore",
    "ChangeHub",
    "Subscription",
]
