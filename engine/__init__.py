"""Playarr Engine - IPTV metadata ingestion and enrichment."""

__version__ = "1.0.0"
