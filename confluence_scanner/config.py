"""Central configuration — loads .env and exposes typed settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from pydantic import model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Resolve project root (parent of confluence_scanner/)
PROJECT_ROOT = Path(__file__).resolve().parent.parent
ENV_PATH = PROJECT_ROOT / ".env"

VALID_LOG_FORMATS = {"text", "json"}


class Settings(BaseSettings):
    # --- Logging ---
    log_level: str = "INFO"
    log_format: str = "text"  # "text" or "json"

    # --- Default signal thresholds ---
    min_base_score: float = 70.0
    min_style_score: float = 75.0
    min_risk_reward: float = 1.5
    max_signals_per_symbol_per_hour: int = 2
    cooldown_minutes: int = 15

    # --- Confidence ---
    min_confidence: float = 40.0

    # --- Deduplication history ---
    dedup_max_history_per_symbol: int = 100
    dedup_max_total: int = 1000
    dedup_max_age_hours: float = 24.0

    # --- Scanner ---
    detector_version: str = "1.0.0"
    signal_expiry_minutes: int = 5
    enable_options_data_fetch: bool = True
    use_adaptive_thresholds: bool = True
    include_diagnostics: bool = False

    # --- Context lookups ---
    context_timeout_seconds: float = 2.0
    context_failure_threshold: int = 3
    context_cooldown_seconds: float = 300.0

    # --- Universal filters ---
    filter_blacklist: str = ""  # Comma-separated symbols
    filter_market_hours_only: bool = False
    filter_min_price: float = 0.0
    filter_min_rvol: float = 0.0
    filter_max_spread_pct: float = 0.5  # percent of price

    # --- IV gate ---
    iv_max_percentile_for_buying: float = 75.0
    iv_min_percentile_for_selling: float = 25.0
    iv_optimal_low: float = 10.0
    iv_optimal_high: float = 50.0
    iv_crush_threshold: float = 15.0
    iv_spike_threshold: float = 25.0
    iv_earnings_warning_days: int = 3

    # --- Offline optimizer output (YAML or JSON) ---
    optimized_params_path: str = ""

    @model_validator(mode="after")
    def _validate_ranges(self) -> "Settings":
        """Warn on settings that would silently disable gates."""
        if self.log_format not in VALID_LOG_FORMATS:
            logger.warning(
                "Unrecognized log_format '%s' — falling back to text", self.log_format,
            )
            self.log_format = "text"
        if self.iv_optimal_low >= self.iv_optimal_high:
            raise ValueError(
                f"iv_optimal_low ({self.iv_optimal_low}) must be below "
                f"iv_optimal_high ({self.iv_optimal_high})"
            )
        if self.max_signals_per_symbol_per_hour < 1:
            raise ValueError("max_signals_per_symbol_per_hour must be >= 1")
        return self

    model_config = {
        "env_file": str(ENV_PATH),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


# Singleton
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


# ---------------------------------------------------------------------------
# Scanner configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SignalThresholds:
    min_base_score: float = 70.0
    min_style_score: float = 75.0
    min_risk_reward: float = 1.5
    max_signals_per_symbol_per_hour: int = 2
    cooldown_minutes: int = 15
    weekend_min_base_score: float | None = None
    weekend_min_style_score: float | None = None

    def __post_init__(self) -> None:
        for name in ("min_base_score", "min_style_score"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be within 0-100, got {value}")
        if self.min_risk_reward <= 0:
            raise ValueError(f"min_risk_reward must be positive, got {self.min_risk_reward}")
        if self.max_signals_per_symbol_per_hour < 1:
            raise ValueError("max_signals_per_symbol_per_hour must be >= 1")
        if self.cooldown_minutes < 0:
            raise ValueError("cooldown_minutes must be >= 0")

    def merged(self, overrides: dict[str, Any] | None) -> "SignalThresholds":
        if not overrides:
            return self
        return replace(self, **overrides)


@dataclass(frozen=True)
class UniversalFilters:
    blacklist: frozenset[str] = frozenset()
    market_hours_only: bool = False
    min_price: float = 0.0
    min_rvol: float = 0.0
    max_spread_pct: float = 0.5


@dataclass(frozen=True)
class IVGateConfig:
    max_iv_percentile_for_buying: float = 75.0
    min_iv_percentile_for_selling: float = 25.0
    optimal_low: float = 10.0
    optimal_high: float = 50.0
    crush_threshold: float = 15.0
    spike_threshold: float = 25.0
    earnings_warning_days: int = 3


# Weekend evaluation is informational only; relax score floors.
DEFAULT_WEEKEND_OVERRIDES = {
    "weekend_min_base_score": 60.0,
    "weekend_min_style_score": 65.0,
}

# Index strategies move faster and need stronger setups.
DEFAULT_ASSET_CLASS_THRESHOLDS: dict[str, dict[str, Any]] = {
    "INDEX": {"min_base_score": 72.0, "min_style_score": 77.0, "cooldown_minutes": 10},
}

DEFAULT_OPPORTUNITY_TYPE_THRESHOLDS: dict[str, dict[str, Any]] = {
    "gamma_squeeze_bullish": {"min_risk_reward": 2.0, "cooldown_minutes": 30},
    "gamma_squeeze_bearish": {"min_risk_reward": 2.0, "cooldown_minutes": 30},
    "power_hour_reversal_bullish": {"max_signals_per_symbol_per_hour": 1},
    "power_hour_reversal_bearish": {"max_signals_per_symbol_per_hour": 1},
}


def _csv_to_set(csv_value: str) -> frozenset[str]:
    return frozenset(s.strip().upper() for s in csv_value.split(",") if s.strip())


@dataclass(frozen=True)
class ScannerConfig:
    """Fully enumerated scanner configuration with named defaults."""

    default_thresholds: SignalThresholds = field(
        default_factory=lambda: SignalThresholds(**DEFAULT_WEEKEND_OVERRIDES)
    )
    asset_class_thresholds: dict[str, dict[str, Any]] = field(
        default_factory=lambda: dict(DEFAULT_ASSET_CLASS_THRESHOLDS)
    )
    opportunity_type_thresholds: dict[str, dict[str, Any]] = field(
        default_factory=lambda: dict(DEFAULT_OPPORTUNITY_TYPE_THRESHOLDS)
    )
    filters: UniversalFilters = field(default_factory=UniversalFilters)
    iv_gate: IVGateConfig = field(default_factory=IVGateConfig)
    min_confidence: float = 40.0
    detector_version: str = "1.0.0"
    signal_expiry_minutes: int = 5
    enable_options_data_fetch: bool = True
    use_adaptive_thresholds: bool = True
    include_diagnostics: bool = False
    context_timeout_seconds: float = 2.0
    context_failure_threshold: int = 3
    context_cooldown_seconds: float = 300.0
    dedup_max_history_per_symbol: int = 100
    dedup_max_total: int = 1000
    dedup_max_age_hours: float = 24.0

    def __post_init__(self) -> None:
        # Validate every override table eagerly so a bad key fails at startup.
        for table in (self.asset_class_thresholds, self.opportunity_type_thresholds):
            for key, overrides in table.items():
                try:
                    self.default_thresholds.merged(overrides)
                except TypeError as exc:
                    raise ValueError(f"Invalid threshold override for {key}: {exc}") from exc

    @classmethod
    def from_settings(cls, settings: Any | None = None) -> "ScannerConfig":
        cfg = settings or get_settings()
        defaults = SignalThresholds(
            min_base_score=float(getattr(cfg, "min_base_score", 70.0)),
            min_style_score=float(getattr(cfg, "min_style_score", 75.0)),
            min_risk_reward=float(getattr(cfg, "min_risk_reward", 1.5)),
            max_signals_per_symbol_per_hour=int(
                getattr(cfg, "max_signals_per_symbol_per_hour", 2)
            ),
            cooldown_minutes=int(getattr(cfg, "cooldown_minutes", 15)),
            **DEFAULT_WEEKEND_OVERRIDES,
        )
        return cls(
            default_thresholds=defaults,
            filters=UniversalFilters(
                blacklist=_csv_to_set(getattr(cfg, "filter_blacklist", "")),
                market_hours_only=bool(getattr(cfg, "filter_market_hours_only", False)),
                min_price=float(getattr(cfg, "filter_min_price", 0.0)),
                min_rvol=float(getattr(cfg, "filter_min_rvol", 0.0)),
                max_spread_pct=float(getattr(cfg, "filter_max_spread_pct", 0.5)),
            ),
            iv_gate=IVGateConfig(
                max_iv_percentile_for_buying=float(getattr(cfg, "iv_max_percentile_for_buying", 75.0)),
                min_iv_percentile_for_selling=float(getattr(cfg, "iv_min_percentile_for_selling", 25.0)),
                optimal_low=float(getattr(cfg, "iv_optimal_low", 10.0)),
                optimal_high=float(getattr(cfg, "iv_optimal_high", 50.0)),
                crush_threshold=float(getattr(cfg, "iv_crush_threshold", 15.0)),
                spike_threshold=float(getattr(cfg, "iv_spike_threshold", 25.0)),
                earnings_warning_days=int(getattr(cfg, "iv_earnings_warning_days", 3)),
            ),
            min_confidence=float(getattr(cfg, "min_confidence", 40.0)),
            detector_version=str(getattr(cfg, "detector_version", "1.0.0")),
            signal_expiry_minutes=int(getattr(cfg, "signal_expiry_minutes", 5)),
            enable_options_data_fetch=bool(getattr(cfg, "enable_options_data_fetch", True)),
            use_adaptive_thresholds=bool(getattr(cfg, "use_adaptive_thresholds", True)),
            include_diagnostics=bool(getattr(cfg, "include_diagnostics", False)),
            context_timeout_seconds=float(getattr(cfg, "context_timeout_seconds", 2.0)),
            context_failure_threshold=int(getattr(cfg, "context_failure_threshold", 3)),
            context_cooldown_seconds=float(getattr(cfg, "context_cooldown_seconds", 300.0)),
            dedup_max_history_per_symbol=int(getattr(cfg, "dedup_max_history_per_symbol", 100)),
            dedup_max_total=int(getattr(cfg, "dedup_max_total", 1000)),
            dedup_max_age_hours=float(getattr(cfg, "dedup_max_age_hours", 24.0)),
        )

    def thresholds_for(self, asset_class: str, opportunity_type: str) -> SignalThresholds:
        """Resolve thresholds: defaults, then asset class, then opportunity type."""
        thresholds = self.default_thresholds.merged(self.asset_class_thresholds.get(asset_class))
        return thresholds.merged(self.opportunity_type_thresholds.get(opportunity_type))
