# dexarb/market_making.py
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from .config import MAX_SPREAD_BPS, MIN_SPREAD_BPS, MIN_TRADE_SIZE_ETH
from .inventory import InventoryEngine
from .models import (DepthQuality, ExecutionPriority, ExecutionUrgency, InventoryAnalysis,
                     InventoryImbalance, LiquidityDepth, LiquidityStrategy, MarketConditions,
                     MarketMakingSignal, MarketTrend, RangeBounds, RiskLevel, RiskMetrics,
                     SpreadEnvironment, StrategyType, VolatilityImpact, VolatilityMetrics,
                     VolatilityTrend, VolumeProfile)

_SIGNIFICANT = (InventoryImbalance.SIGNIFICANTLY_LONG, InventoryImbalance.SIGNIFICANTLY_SHORT)
_SLIGHT = (InventoryImbalance.SLIGHTLY_LONG, InventoryImbalance.SLIGHTLY_SHORT)

_DEPTH_SPREAD = {
    DepthQuality.EXCELLENT: 1.0,
    DepthQuality.GOOD: 1.05,
    DepthQuality.FAIR: 1.15,
    DepthQuality.POOR: 1.3,
}
_ENVIRONMENT_SPREAD = {
    SpreadEnvironment.TIGHT: 0.8,
    SpreadEnvironment.NORMAL: 1.0,
    SpreadEnvironment.WIDE: 1.2,
    SpreadEnvironment.VERY_WIDE: 1.5,
}
_DURATIONS = {
    StrategyType.TIGHT_SPREAD: timedelta(seconds=300),
    StrategyType.WIDE_SPREAD: timedelta(seconds=3600),
    StrategyType.INVENTORY_MANAGEMENT: timedelta(seconds=1800),
    StrategyType.TREND_FOLLOWING: timedelta(seconds=7200),
    StrategyType.VOLATILITY_ADAPTIVE: timedelta(seconds=600),
}
_LIQUIDITY_RISK = {
    DepthQuality.EXCELLENT: 10.0,
    DepthQuality.GOOD: 25.0,
    DepthQuality.FAIR: 50.0,
    DepthQuality.POOR: 80.0,
}
_VOLATILITY_RISK = {
    VolatilityImpact.LOW: 10.0,
    VolatilityImpact.MODERATE: 30.0,
    VolatilityImpact.HIGH: 60.0,
    VolatilityImpact.EXTREME: 90.0,
}
_RISK_SENTENCES = {
    RiskLevel.CONSERVATIVE: "Conservative sizing due to uncertain conditions. ",
    RiskLevel.MODERATE: "Moderate risk profile with balanced exposure. ",
    RiskLevel.AGGRESSIVE: "Aggressive positioning to capitalize on clear opportunities. ",
    RiskLevel.SPECULATIVE: "Speculative approach warranted by extreme conditions. ",
}


def price_deviation_pct(current_price: float, fair_value: float) -> float:
    return abs(current_price - fair_value) / fair_value * 100


class SignalEngine:
    """
    Folds volatility, simulated inventory and pool liquidity into a
    market-making quote: spread, size, strategy, risk and priority.

    Every step is a pure function of its inputs. The only state is the
    per-pool cache of the last emitted signal, which is never read back
    into a computation.
    """
    def __init__(self, config: dict, logger: Optional[logging.Logger] = None,
                 inventory: Optional[InventoryEngine] = None):
        mm = config['market_making']
        risk = config['risk_model']
        self.base_spread_bps = mm['base_spread_bps']
        self.max_position_eth = mm['max_position_size_eth']
        self.daily_vol_scale = risk['daily_vol_scale']
        self.var_z_score = risk['var_z_score']
        self.logger = logger or logging.getLogger(__name__)
        self.inventory = inventory or InventoryEngine(config, self.logger)
        self._lock = threading.Lock()
        self._last_signals: Dict[str, MarketMakingSignal] = {}

    # --- PUBLIC ---

    def generate(self, pool: str, fair_value: float, pool_price: float,
                 liquidity: LiquidityDepth, volatility_metrics: VolatilityMetrics) -> MarketMakingSignal:
        vm = volatility_metrics
        self.logger.debug(
            f"Volatility analysis: Short={vm.short_vol:.2f}%, Medium={vm.medium_vol:.2f}%, "
            f"Long={vm.long_vol:.2f}%, Trend={vm.volatility_trend.value}")

        conditions = self.analyze_market_conditions(vm.long_vol, liquidity, pool_price, fair_value)
        inventory = self.inventory.analyze(fair_value, liquidity)

        spread_bps = self.dynamic_spread(conditions, inventory, vm, fair_value)
        half_spread = fair_value * spread_bps / 10_000 / 2

        position_size = self.position_size(inventory, liquidity, vm)
        strategy = self.select_strategy(conditions, inventory, pool_price, fair_value)
        risk = self.risk_metrics(position_size, fair_value, vm, liquidity)
        priority = self.execution_priority(conditions, inventory, risk, vm, pool_price, fair_value)
        rationale = self.rationale(conditions, inventory, strategy, vm, spread_bps, fair_value, pool_price)

        signal = MarketMakingSignal(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            pool=pool,
            fair_value_price=fair_value,
            current_pool_price=pool_price,
            target_bid_price=fair_value - half_spread,
            target_ask_price=fair_value + half_spread,
            effective_spread_bps=spread_bps,
            position_size_eth=position_size,
            inventory_analysis=inventory,
            market_conditions=conditions,
            strategy=strategy,
            risk_metrics=risk,
            volatility_metrics=vm,
            execution_priority=priority,
            rationale=rationale,
        )

        with self._lock:
            self._last_signals[pool] = signal
        return signal

    def last_signal(self, pool: str) -> Optional[MarketMakingSignal]:
        with self._lock:
            return self._last_signals.get(pool)

    def last_signals(self) -> Dict[str, MarketMakingSignal]:
        with self._lock:
            return dict(self._last_signals)

    # --- STEPS ---

    @staticmethod
    def analyze_market_conditions(volatility_1h: float, liquidity: LiquidityDepth,
                                  current_price: float, fair_value: float) -> MarketConditions:
        diff = price_deviation_pct(current_price, fair_value)
        if diff < 0.2:
            environment = SpreadEnvironment.TIGHT
        elif diff < 0.5:
            environment = SpreadEnvironment.NORMAL
        elif diff < 1.0:
            environment = SpreadEnvironment.WIDE
        else:
            environment = SpreadEnvironment.VERY_WIDE

        if current_price > fair_value * 1.002:
            trend = MarketTrend.BULLISH
        elif current_price < fair_value * 0.998:
            trend = MarketTrend.BEARISH
        else:
            trend = MarketTrend.SIDEWAYS

        if liquidity.total_liquidity_usd > 1_000_000:
            volume = VolumeProfile.HIGH
        elif liquidity.total_liquidity_usd > 100_000:
            volume = VolumeProfile.NORMAL
        else:
            volume = VolumeProfile.LOW

        return MarketConditions(volatility_1h, liquidity, environment, trend, volume)

    def dynamic_spread(self, conditions: MarketConditions, inventory: InventoryAnalysis,
                       vm: VolatilityMetrics, fair_value: float) -> int:
        """Spread in whole bps; truncated after every multiplier, then clamped."""
        spread = int(self.base_spread_bps * vm.recommended_adjustments.spread_multiplier)

        if vm.volatility_trend == VolatilityTrend.INCREASING:
            spread = int(spread * 1.2)
        elif vm.volatility_trend == VolatilityTrend.VOLATILE:
            spread = int(spread * 1.3)

        if fair_value > 5000 or fair_value < 1000:
            spread = int(spread * 1.2)

        severity = inventory.imbalance_severity
        if severity in _SLIGHT:
            spread = int(spread * 1.1)
        elif severity in _SIGNIFICANT:
            spread = int(spread * 1.25)
        elif severity == InventoryImbalance.CRITICALLY_IMBALANCED:
            spread = int(spread * 1.5)

        spread = int(spread * _DEPTH_SPREAD[conditions.liquidity_depth.depth_quality])
        spread = int(spread * _ENVIRONMENT_SPREAD[conditions.spread_environment])

        return max(MIN_SPREAD_BPS, min(spread, MAX_SPREAD_BPS))

    def position_size(self, inventory: InventoryAnalysis, liquidity: LiquidityDepth,
                      vm: VolatilityMetrics) -> float:
        size = self.max_position_eth * 0.1
        size *= vm.recommended_adjustments.position_size_factor

        if vm.impact_assessment == VolatilityImpact.EXTREME:
            size *= 0.5
        elif (vm.impact_assessment == VolatilityImpact.HIGH
              and vm.volatility_trend == VolatilityTrend.INCREASING):
            size *= 0.7

        # keep pool impact under 1%
        if liquidity.weth_reserves > 0 and size / liquidity.weth_reserves > 0.01:
            size = liquidity.weth_reserves * 0.005

        if inventory.imbalance_severity == InventoryImbalance.CRITICALLY_IMBALANCED:
            size *= 0.3
        elif inventory.imbalance_severity in _SIGNIFICANT:
            size *= 0.7

        return max(MIN_TRADE_SIZE_ETH, min(size, self.max_position_eth))

    def select_strategy(self, conditions: MarketConditions, inventory: InventoryAnalysis,
                        current_price: float, fair_value: float) -> LiquidityStrategy:
        deviation = price_deviation_pct(current_price, fair_value)
        severity = inventory.imbalance_severity

        if conditions.price_volatility_1h > 15:
            strategy_type = StrategyType.VOLATILITY_ADAPTIVE
        elif severity in _SIGNIFICANT:
            strategy_type = StrategyType.INVENTORY_MANAGEMENT
        elif conditions.spread_environment == SpreadEnvironment.TIGHT and deviation < 0.1:
            strategy_type = StrategyType.TIGHT_SPREAD
        elif conditions.spread_environment in (SpreadEnvironment.WIDE, SpreadEnvironment.VERY_WIDE):
            strategy_type = StrategyType.WIDE_SPREAD
        else:
            strategy_type = StrategyType.TREND_FOLLOWING

        base_size = self.max_position_eth * 0.1
        bid_size, ask_size = base_size, base_size
        if strategy_type == StrategyType.INVENTORY_MANAGEMENT:
            if severity == InventoryImbalance.SIGNIFICANTLY_LONG:
                bid_size, ask_size = base_size * 0.3, base_size * 1.5
            else:
                bid_size, ask_size = base_size * 1.5, base_size * 0.3

        vol = conditions.price_volatility_1h
        if vol > 20:
            risk_level = RiskLevel.SPECULATIVE
        elif vol > 10:
            risk_level = RiskLevel.AGGRESSIVE
        elif vol > 5:
            risk_level = RiskLevel.MODERATE
        else:
            risk_level = RiskLevel.CONSERVATIVE

        return LiquidityStrategy(
            strategy_type=strategy_type,
            bid_size_eth=bid_size,
            ask_size_eth=ask_size,
            range_bounds=RangeBounds(fair_value * 0.95, fair_value * 1.05, 0.95),
            duration_estimate=_DURATIONS[strategy_type],
            expected_daily_volume=base_size * 10,
            risk_level=risk_level,
        )

    def risk_metrics(self, position_size: float, fair_value: float, vm: VolatilityMetrics,
                     liquidity: LiquidityDepth) -> RiskMetrics:
        position_value = position_size * fair_value
        daily_vol = vm.short_vol * self.daily_vol_scale
        var_1d = position_value * daily_vol / 100 * self.var_z_score

        inventory_risk = min(position_size / self.max_position_eth * 100, 100.0)
        liquidity_risk = _LIQUIDITY_RISK[liquidity.depth_quality]
        volatility_risk = _VOLATILITY_RISK[vm.impact_assessment]
        overall = (inventory_risk * 0.3
                   + liquidity_risk * 0.25
                   + volatility_risk * 0.35
                   + min(vm.short_vol, 50.0) * 0.1)

        return RiskMetrics(
            max_drawdown_usd=position_value * 0.1,
            value_at_risk_1d=var_1d,
            inventory_risk_score=inventory_risk,
            liquidity_risk_score=liquidity_risk,
            volatility_risk_score=volatility_risk,
            overall_risk_score=overall,
            recommended_max_exposure=self.max_position_eth * (100 - overall) / 100,
        )

    @staticmethod
    def execution_priority(conditions: MarketConditions, inventory: InventoryAnalysis,
                           risk: RiskMetrics, vm: VolatilityMetrics,
                           current_price: float, fair_value: float) -> ExecutionPriority:
        """First matching rule wins."""
        deviation = price_deviation_pct(current_price, fair_value)
        urgency = vm.recommended_adjustments.execution_urgency

        if urgency == ExecutionUrgency.CAUTIOUS:
            return ExecutionPriority.LOW
        if urgency == ExecutionUrgency.FAST and deviation > 0.5:
            return ExecutionPriority.IMMEDIATE
        if inventory.imbalance_severity == InventoryImbalance.CRITICALLY_IMBALANCED:
            return ExecutionPriority.IMMEDIATE
        if risk.overall_risk_score > 80:
            return ExecutionPriority.HOLD
        if deviation > 1.0 and vm.impact_assessment in (VolatilityImpact.LOW, VolatilityImpact.MODERATE):
            return ExecutionPriority.IMMEDIATE
        if conditions.price_volatility_1h > 15 or deviation > 0.3:
            return ExecutionPriority.HIGH
        if deviation > 0.1:
            return ExecutionPriority.MEDIUM
        return ExecutionPriority.LOW

    @staticmethod
    def rationale(conditions: MarketConditions, inventory: InventoryAnalysis,
                  strategy: LiquidityStrategy, vm: VolatilityMetrics, spread_bps: int,
                  fair_value: float, current_price: float) -> str:
        signed_deviation = (current_price - fair_value) / fair_value * 100
        parts = [
            f"Market Analysis: Current price ${current_price:.4f} vs fair value ${fair_value:.4f} "
            f"({signed_deviation:+.2f}% deviation). ",
            f"Volatility: Short={vm.short_vol:.1f}%, Medium={vm.medium_vol:.1f}%, Long={vm.long_vol:.1f}% "
            f"(Trend: {vm.volatility_trend.value}, Impact: {vm.impact_assessment.value}). ",
            f"Effective spread: {spread_bps} bps. ",
        ]

        st = strategy.strategy_type
        if st == StrategyType.TIGHT_SPREAD:
            parts.append("TIGHT SPREAD strategy selected due to stable conditions and tight current spreads. ")
        elif st == StrategyType.WIDE_SPREAD:
            parts.append("WIDE SPREAD strategy selected to capture larger price movements in volatile environment. ")
        elif st == StrategyType.INVENTORY_MANAGEMENT:
            parts.append(f"INVENTORY MANAGEMENT strategy selected due to "
                         f"{inventory.imbalance_severity.value} position. ")
        elif st == StrategyType.TREND_FOLLOWING:
            parts.append(f"TREND FOLLOWING strategy selected based on "
                         f"{conditions.market_trend.value} market trend. ")
        else:
            parts.append("VOLATILITY ADAPTIVE strategy selected due to high market volatility "
                         "requiring frequent adjustments. ")

        if vm.impact_assessment in (VolatilityImpact.HIGH, VolatilityImpact.EXTREME):
            adj = vm.recommended_adjustments
            parts.append(f"High volatility detected - spreads widened by {adj.spread_multiplier:.1f}x, "
                         f"position size reduced by {(1 - adj.position_size_factor) * 100:.0f}%. ")

        parts.append(_RISK_SENTENCES[strategy.risk_level])

        if inventory.rebalance_needed:
            parts.append(f"Portfolio rebalancing needed: {inventory.weth_ratio * 100:.1f}% WETH vs "
                         f"{inventory.target_weth_ratio * 100:.1f}% target. ")

        return "".join(parts)
