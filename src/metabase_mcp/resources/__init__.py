"""Metabase resource kinds and the caches that hold them."""

from .store import LIST_KEY, ClearReport, ResourceStore, clear_targets
from .types import COLLECTION_ITEMS_PATH, ITEM_PATHS, LIST_PATHS, ListType, ResourceType

__all__ = [
    "ResourceType", "ListType", "ITEM_PATHS", "LIST_PATHS", "COLLECTION_ITEMS_PATH",
    "ResourceStore", "ClearReport", "LIST_KEY", "clear_targets",
]
