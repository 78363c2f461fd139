"""Recollect: digital-collections API (collections, items, search, uploads)."""

__version__ = "0.3.0"
