"""Detection and scoring layer — detectors, style fit, risk/reward, confidence, IV gate."""

from confluence_scanner.signals.detectors import (
    Detector,
    DetectorRegistry,
    ScoreFactor,
    default_registry,
    get_asset_class,
)
from confluence_scanner.signals.style import StyleScores, apply_style_modifiers, calculate_style_modifiers

__all__ = [
    "Detector",
    "DetectorRegistry",
    "ScoreFactor",
    "default_registry",
    "get_asset_class",
    "StyleScores",
    "apply_style_modifiers",
    "calculate_style_modifiers",
]
