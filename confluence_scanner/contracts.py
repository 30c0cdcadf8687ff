"""Data contracts — typed payloads flowing into and out of the scanner.

The feature snapshot is produced once per evaluation tick by an upstream
collaborator and is frozen for the duration of a scan. CompositeSignal is
the only entity with a lifecycle beyond one evaluation.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class StrictModel(BaseModel):
    """Base for all contract models — unknown fields are forbidden."""

    model_config = ConfigDict(extra="forbid")


class FrozenModel(StrictModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


# ── Enums ───────────────────────────────────────────────────────────────

class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class AssetClass(str, Enum):
    INDEX = "INDEX"
    EQUITY_ETF = "EQUITY_ETF"
    STOCK = "STOCK"


class TradingStyle(str, Enum):
    SCALP = "scalp"
    DAY_TRADE = "day_trade"
    SWING = "swing"


# Fixed tie-break order for recommended style selection
STYLE_ORDER: tuple[TradingStyle, ...] = (
    TradingStyle.SCALP,
    TradingStyle.DAY_TRADE,
    TradingStyle.SWING,
)


class SignalStatus(str, Enum):
    ACTIVE = "ACTIVE"
    FILLED = "FILLED"
    EXPIRED = "EXPIRED"
    DISMISSED = "DISMISSED"
    STOPPED = "STOPPED"
    TARGET_HIT = "TARGET_HIT"


TERMINAL_STATUSES = frozenset(s for s in SignalStatus if s != SignalStatus.ACTIVE)


# ── Feature snapshot ────────────────────────────────────────────────────

class PriceFeatures(FrozenModel):
    current: float | None = None
    open: float | None = None
    high: float | None = None
    low: float | None = None
    prev: float | None = None
    prev_close: float | None = None
    change_pct: float | None = None
    spread_pct: float | None = None


class VolumeFeatures(FrozenModel):
    current: float | None = None
    avg: float | None = None
    relative_to_avg: float | None = None


class VwapFeatures(FrozenModel):
    value: float | None = None
    distance_pct: float | None = None


class TimeframeIndicators(FrozenModel):
    close: float | None = None
    atr: float | None = None
    rsi: float | None = None
    ema: dict[str, float] = Field(default_factory=dict)


class FlowFeatures(FrozenModel):
    sweep_count: int | None = None
    block_count: int | None = None
    unusual_activity: bool | None = None
    flow_score: float | None = None
    flow_bias: str | None = Field(default=None, description="bullish, bearish, or neutral")
    put_call_ratio: float | None = None
    buy_pressure: float | None = Field(default=None, ge=0, le=100, description="buy-side share of flow, percent")
    large_trade_pct: float | None = Field(default=None, ge=0, le=100)
    aggressiveness: str | None = Field(default=None, description="passive, normal, aggressive, or very_aggressive")


class PatternFeatures(FrozenModel):
    orb_high: float | None = None
    orb_low: float | None = None
    swing_high: float | None = None
    swing_low: float | None = None
    prior_day_high: float | None = None
    prior_day_low: float | None = None
    premarket_high: float | None = None
    premarket_low: float | None = None
    patience_candle: bool | None = None


class SessionFeatures(FrozenModel):
    minutes_since_open: float | None = None
    minutes_to_close: float | None = None
    is_regular_hours: bool | None = None


class FeatureSnapshot(FrozenModel):
    symbol: str
    timestamp: datetime
    price: PriceFeatures = Field(default_factory=PriceFeatures)
    volume: VolumeFeatures = Field(default_factory=VolumeFeatures)
    vwap: VwapFeatures = Field(default_factory=VwapFeatures)
    rsi: dict[str, float] = Field(default_factory=dict)
    ema: dict[str, float] = Field(default_factory=dict)
    mtf: dict[str, TimeframeIndicators] = Field(default_factory=dict)
    flow: FlowFeatures | None = None
    pattern: PatternFeatures = Field(default_factory=PatternFeatures)
    session: SessionFeatures = Field(default_factory=SessionFeatures)

    # Classification tags
    market_regime: str | None = Field(default=None, description="trending, ranging, choppy, volatile")
    vix_level: str | None = Field(default=None, description="low, medium, high, extreme")
    vix: float | None = None

    # Inputs for optimized boosts and IV analysis
    iv_percentile: float | None = Field(default=None, ge=0, le=100)
    iv_change_pct: float | None = None
    days_to_earnings: int | None = None
    gamma_exposure: float | None = None
    flow_alignment: str | None = Field(default=None, description="aligned, opposed, or neutral")

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("symbol must not be empty")
        return value

    @field_validator("timestamp")
    @classmethod
    def _aware_timestamp(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class OptionsChainSnapshot(FrozenModel):
    max_gamma_strike: float | None = None
    dealer_gamma: float | None = None
    gamma_flip_level: float | None = None
    max_pain_strike: float | None = None
    call_put_ratio: float | None = None
    call_volume: float | None = None
    put_volume: float | None = None
    total_volume: float | None = None
    avg_volume: float | None = None
    minutes_to_expiry: float | None = None
    is_0dte: bool | None = None


# ── Emitted signal ──────────────────────────────────────────────────────

class SignalTargets(StrictModel):
    t1: float
    t2: float
    t3: float


class CompositeSignal(StrictModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    symbol: str
    opportunity_type: str
    direction: Direction
    asset_class: AssetClass
    base_score: float = Field(ge=0, le=100)
    scalp_score: float = Field(ge=0, le=100)
    day_trade_score: float = Field(ge=0, le=100)
    swing_score: float = Field(ge=0, le=100)
    recommended_style: TradingStyle
    recommended_style_score: float = Field(ge=0, le=100)
    confluence: dict[str, float] = Field(default_factory=dict)
    entry_price: float
    stop_price: float
    targets: SignalTargets
    risk_reward: float = Field(gt=0)
    size_multiplier: float = Field(default=1.0, ge=0)
    status: SignalStatus = SignalStatus.ACTIVE
    created_at: datetime
    expires_at: datetime
    bar_time_key: str
    detector_version: str = "1.0.0"

    @model_validator(mode="after")
    def _expiry_after_creation(self) -> CompositeSignal:
        if self.expires_at < self.created_at:
            raise ValueError("expires_at must not precede created_at")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, status: SignalStatus) -> CompositeSignal:
        """Move an ACTIVE signal to a terminal status exactly once."""
        status = SignalStatus(status)
        if self.status != SignalStatus.ACTIVE:
            raise ValueError(
                f"Signal {self.bar_time_key} already {self.status.value}; "
                f"cannot move to {status.value}"
            )
        if status == SignalStatus.ACTIVE:
            raise ValueError("ACTIVE is the initial status, not a transition target")
        self.status = status
        return self


def generate_bar_time_key(symbol: str, timestamp: datetime, opportunity_type: str) -> str:
    """Deterministic idempotency key: ISO timestamp, symbol, opportunity type."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    iso = timestamp.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    return f"{iso}_{symbol.upper()}_{opportunity_type}"
