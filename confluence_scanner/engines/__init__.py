"""Orchestration layer — adaptive thresholds, context boosts, dedup, and the scanner."""

from confluence_scanner.engines.adaptive_thresholds import AdaptiveThresholds, get_adaptive_thresholds
from confluence_scanner.engines.context import ContextBoostAdapter, ContextReading, OptimizedParams
from confluence_scanner.engines.dedup import DedupStore, InMemoryDedupStore
from confluence_scanner.engines.scanner import CompositeScanner, ScanResult

__all__ = [
    "AdaptiveThresholds",
    "get_adaptive_thresholds",
    "ContextBoostAdapter",
    "ContextReading",
    "OptimizedParams",
    "DedupStore",
    "InMemoryDedupStore",
    "CompositeScanner",
    "ScanResult",
]
