# dexarb/models.py
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional


class VolatilityTrend(Enum):
    INCREASING = "INCREASING"
    DECREASING = "DECREASING"
    STABLE = "STABLE"
    VOLATILE = "VOLATILE"


class VolatilityImpact(Enum):
    """Disruption tier keyed off short-term volatility (<2%, <5%, <10%, >=10%)."""
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


class ExecutionUrgency(Enum):
    FAST = "FAST"
    NORMAL = "NORMAL"
    CAUTIOUS = "CAUTIOUS"


class DepthQuality(Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"


class TradeDirection(Enum):
    BUY_DEX_SELL_REFERENCE = "Buy on DEX -> Sell on reference"
    BUY_REFERENCE_SELL_DEX = "Buy on reference -> Sell on DEX"


class ExecutionStatus(Enum):
    """
    Lifecycle outcome of an execution attempt.
    """
    SIMULATED = "SIMULATED"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class InventoryImbalance(Enum):
    BALANCED = "BALANCED"
    SLIGHTLY_LONG = "SLIGHTLY_LONG"
    SLIGHTLY_SHORT = "SLIGHTLY_SHORT"
    SIGNIFICANTLY_LONG = "SIGNIFICANTLY_LONG"
    SIGNIFICANTLY_SHORT = "SIGNIFICANTLY_SHORT"
    CRITICALLY_IMBALANCED = "CRITICALLY_IMBALANCED"


class MarketTrend(Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    SIDEWAYS = "SIDEWAYS"


class SpreadEnvironment(Enum):
    TIGHT = "TIGHT"
    NORMAL = "NORMAL"
    WIDE = "WIDE"
    VERY_WIDE = "VERY_WIDE"


class VolumeProfile(Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"


class StrategyType(Enum):
    TIGHT_SPREAD = "TIGHT_SPREAD"
    WIDE_SPREAD = "WIDE_SPREAD"
    INVENTORY_MANAGEMENT = "INVENTORY_MANAGEMENT"
    TREND_FOLLOWING = "TREND_FOLLOWING"
    VOLATILITY_ADAPTIVE = "VOLATILITY_ADAPTIVE"


class RiskLevel(Enum):
    CONSERVATIVE = "CONSERVATIVE"
    MODERATE = "MODERATE"
    AGGRESSIVE = "AGGRESSIVE"
    SPECULATIVE = "SPECULATIVE"


class ExecutionPriority(Enum):
    IMMEDIATE = "IMMEDIATE"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    HOLD = "HOLD"


# --- VOLATILITY ---

@dataclass(frozen=True, slots=True)
class VolatilityAdjustments:
    spread_multiplier: float
    position_size_factor: float
    execution_urgency: ExecutionUrgency


_SPREAD_MULTIPLIERS = {
    VolatilityImpact.LOW: 1.0,
    VolatilityImpact.MODERATE: 1.5,
    VolatilityImpact.HIGH: 2.0,
    VolatilityImpact.EXTREME: 3.0,
}

_POSITION_SIZE_FACTORS = {
    VolatilityImpact.LOW: 1.0,
    VolatilityImpact.MODERATE: 0.8,
    VolatilityImpact.HIGH: 0.5,
    VolatilityImpact.EXTREME: 0.25,
}


@dataclass(frozen=True, slots=True)
class VolatilityMetrics:
    """
    Immutable snapshot of multi-timeframe volatility.
    A level of None means the window had too few samples to say anything;
    the *_vol properties read those as 0.
    """
    short_term_volatility: Optional[float]   # 5 min
    medium_term_volatility: Optional[float]  # 30 min
    long_term_volatility: Optional[float]    # 1 hour
    volatility_trend: VolatilityTrend
    impact_assessment: VolatilityImpact
    recommended_adjustments: VolatilityAdjustments

    @property
    def short_vol(self) -> float:
        return self.short_term_volatility or 0.0

    @property
    def medium_vol(self) -> float:
        return self.medium_term_volatility or 0.0

    @property
    def long_vol(self) -> float:
        return self.long_term_volatility or 0.0

    @classmethod
    def from_levels(cls, short: Optional[float], medium: Optional[float],
                    long: Optional[float]) -> "VolatilityMetrics":
        """Classifies trend, impact and adjustments from the three volatility percentages."""
        s, m, lt = short or 0.0, medium or 0.0, long or 0.0

        if s > m * 1.2 and m > lt * 1.2:
            trend = VolatilityTrend.INCREASING
        elif s < m * 0.8 and m < lt * 0.8:
            trend = VolatilityTrend.DECREASING
        elif abs(s - lt) < 1:
            trend = VolatilityTrend.STABLE
        else:
            trend = VolatilityTrend.VOLATILE

        if s < 2:
            impact = VolatilityImpact.LOW
        elif s < 5:
            impact = VolatilityImpact.MODERATE
        elif s < 10:
            impact = VolatilityImpact.HIGH
        else:
            impact = VolatilityImpact.EXTREME

        if impact == VolatilityImpact.EXTREME or (
                impact == VolatilityImpact.HIGH and trend == VolatilityTrend.INCREASING):
            urgency = ExecutionUrgency.CAUTIOUS
        elif trend == VolatilityTrend.STABLE:
            urgency = ExecutionUrgency.FAST
        else:
            urgency = ExecutionUrgency.NORMAL

        return cls(
            short_term_volatility=short,
            medium_term_volatility=medium,
            long_term_volatility=long,
            volatility_trend=trend,
            impact_assessment=impact,
            recommended_adjustments=VolatilityAdjustments(
                spread_multiplier=_SPREAD_MULTIPLIERS[impact],
                position_size_factor=_POSITION_SIZE_FACTORS[impact],
                execution_urgency=urgency,
            ),
        )


# --- POOLS ---

@dataclass(slots=True)
class PoolInfo:
    name: str
    address: str
    token0: str
    token1: str
    is_stable: bool = False


@dataclass(frozen=True, slots=True)
class LiquidityDepth:
    """Pool reserves in human units, valid for a single decision cycle."""
    total_liquidity_usd: float
    weth_reserves: float
    usd_reserves: float
    depth_quality: DepthQuality

    @classmethod
    def from_reserves(cls, weth_reserves: float, usd_reserves: float,
                      fair_value: float) -> "LiquidityDepth":
        total = weth_reserves * fair_value + usd_reserves
        if total > 10_000_000:
            quality = DepthQuality.EXCELLENT
        elif total > 1_000_000:
            quality = DepthQuality.GOOD
        elif total > 100_000:
            quality = DepthQuality.FAIR
        else:
            quality = DepthQuality.POOR
        return cls(total, weth_reserves, usd_reserves, quality)


# --- ARBITRAGE ---

@dataclass(slots=True)
class ValidationResult:
    price_sanity: bool = False
    liquidity_check: bool = False
    gas_economics: bool = False
    slippage_acceptable: bool = False
    volatility_acceptable: bool = False
    all_passed: bool = False
    warnings: List[str] = field(default_factory=list)


@dataclass(slots=True)
class TradeExecution:
    id: str
    opportunity_id: str
    timestamp: datetime
    network: str
    trade_type: TradeDirection
    status: ExecutionStatus
    tx_hash: Optional[str]
    gas_used: Optional[int]
    gas_price_gwei: Optional[float]
    execution_time_ms: int
    expected_profit_usd: float
    actual_profit_usd: Optional[float] = None
    slippage_bps: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (ExecutionStatus.SUCCESS, ExecutionStatus.SIMULATED)


@dataclass(slots=True)
class ArbitrageOpportunity:
    """
    A detected DEX/reference divergence.
    Only the two attachment fields are filled after validation.
    """
    id: str
    timestamp: datetime
    pool: str
    direction: TradeDirection
    dex_price: float
    reference_price: float
    price_diff_pct: float
    size_eth: float
    gross_profit_usd: float
    gas_cost_usd: float
    net_profit_usd: float
    roi_pct: float
    validation_checks: ValidationResult = field(default_factory=ValidationResult)
    volatility_assessment: Optional[VolatilityMetrics] = None
    execution_simulation: Optional[TradeExecution] = None


# --- MARKET MAKING ---

@dataclass(frozen=True, slots=True)
class InventoryAnalysis:
    current_weth_balance: float
    current_usd_balance: float
    total_value_usd: float
    weth_ratio: float
    target_weth_ratio: float
    imbalance_severity: InventoryImbalance
    rebalance_needed: bool
    rebalance_amount_eth: float


@dataclass(frozen=True, slots=True)
class MarketConditions:
    price_volatility_1h: float
    liquidity_depth: LiquidityDepth
    spread_environment: SpreadEnvironment
    market_trend: MarketTrend
    volume_profile: VolumeProfile


@dataclass(frozen=True, slots=True)
class RangeBounds:
    lower_bound: float
    upper_bound: float
    confidence_interval: float


@dataclass(frozen=True, slots=True)
class LiquidityStrategy:
    strategy_type: StrategyType
    bid_size_eth: float
    ask_size_eth: float
    range_bounds: RangeBounds
    duration_estimate: timedelta
    expected_daily_volume: float
    risk_level: RiskLevel


@dataclass(frozen=True, slots=True)
class RiskMetrics:
    max_drawdown_usd: float
    value_at_risk_1d: float
    inventory_risk_score: float
    liquidity_risk_score: float
    volatility_risk_score: float
    overall_risk_score: float
    recommended_max_exposure: float


@dataclass(frozen=True, slots=True)
class MarketMakingSignal:
    id: str
    timestamp: datetime
    pool: str
    fair_value_price: float
    current_pool_price: float
    target_bid_price: float
    target_ask_price: float
    effective_spread_bps: int
    position_size_eth: float
    inventory_analysis: InventoryAnalysis
    market_conditions: MarketConditions
    strategy: LiquidityStrategy
    risk_metrics: RiskMetrics
    volatility_metrics: VolatilityMetrics
    execution_priority: ExecutionPriority
    rationale: str


# --- HEALTH ---

@dataclass(slots=True)
class HealthStatus:
    dex_connection: bool
    reference_connection: bool
    last_dex_update: Optional[float]
    last_reference_update: Optional[float]
    consecutive_errors: int
    circuit_breaker_active: bool
    uptime_seconds: int
