# dexarb/arbitrage.py
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from .config import MAX_PRICE_DEVIATION_PCT, MAX_SLIPPAGE_BPS
from .models import (ArbitrageOpportunity, LiquidityDepth, TradeDirection,
                     ValidationResult, VolatilityImpact, VolatilityMetrics)

MIN_DIVERGENCE_PCT = 0.05
SIMULATED_GAS_COST_USD = 0.02
MIN_ROI_PCT = 0.01

# Liquidity floors
MIN_WETH_RESERVE = 0.1
MIN_USD_RESERVE = 100.0
MAX_POOL_SHARE_PCT = 1.0

BASE_SLIPPAGE_BPS_PER_ETH = 50
_SLIPPAGE_FACTORS = {
    VolatilityImpact.LOW: 1.0,
    VolatilityImpact.MODERATE: 1.5,
    VolatilityImpact.HIGH: 2.0,
    VolatilityImpact.EXTREME: 3.0,
}


class ArbitrageDetector:
    """
    Turns a DEX/reference price pair into a sized opportunity.
    Pure: no I/O, no validation, never raises for well-formed input.
    """
    def __init__(self, gas_cost_usd: float = SIMULATED_GAS_COST_USD):
        self.gas_cost_usd = gas_cost_usd

    def detect(self, pool_name: str, dex_price: float, reference_price: float,
               trade_size: float) -> Optional[ArbitrageOpportunity]:
        if reference_price <= 0 or trade_size <= 0:
            return None

        price_diff = dex_price - reference_price
        price_diff_pct = abs(price_diff) / reference_price * 100
        if price_diff_pct < MIN_DIVERGENCE_PCT:
            return None

        if price_diff > 0:
            direction = TradeDirection.BUY_DEX_SELL_REFERENCE
        else:
            direction = TradeDirection.BUY_REFERENCE_SELL_DEX

        gross = trade_size * abs(price_diff)
        net = gross - self.gas_cost_usd
        roi = net / (trade_size * reference_price) * 100

        return ArbitrageOpportunity(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            pool=pool_name,
            direction=direction,
            dex_price=dex_price,
            reference_price=reference_price,
            price_diff_pct=price_diff_pct,
            size_eth=trade_size,
            gross_profit_usd=gross,
            gas_cost_usd=self.gas_cost_usd,
            net_profit_usd=net,
            roi_pct=roi,
        )


class OpportunityValidator:
    """
    Runs the pre-trade checks against a detected opportunity.
    Price sanity, liquidity, gas economics and slippage gate `all_passed`;
    high volatility only adds a warning.
    """
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def validate(self, opportunity: ArbitrageOpportunity, liquidity: LiquidityDepth,
                 volatility_metrics: VolatilityMetrics,
                 volatility_threshold: float) -> ValidationResult:
        result = ValidationResult()
        all_good = True

        # 1. Price sanity
        result.price_sanity = opportunity.price_diff_pct < MAX_PRICE_DEVIATION_PCT
        if not result.price_sanity:
            result.warnings.append(
                f"Price deviation too high: {opportunity.price_diff_pct:.2f}% "
                f"(max: {MAX_PRICE_DEVIATION_PCT:g}%)")
            all_good = False

        # 2. Volatility (advisory)
        short_vol = volatility_metrics.short_vol
        result.volatility_acceptable = short_vol < volatility_threshold
        if not result.volatility_acceptable:
            result.warnings.append(
                f"Volatility too high: {short_vol:.2f}% (threshold: {volatility_threshold:.2f}%)")

        # 3. Liquidity
        weth, usd = liquidity.weth_reserves, liquidity.usd_reserves
        result.liquidity_check = weth >= MIN_WETH_RESERVE and usd >= MIN_USD_RESERVE
        if not result.liquidity_check:
            result.warnings.append(f"Low liquidity: {weth:.4f} WETH, ${usd:.2f} USD")
            all_good = False

        if weth > 0:
            pool_share_pct = opportunity.size_eth / weth * 100
            if pool_share_pct > MAX_POOL_SHARE_PCT:
                result.warnings.append(f"Trade size is {pool_share_pct:.2f}% of pool liquidity")
                all_good = False

        # 4. Gas economics
        result.gas_economics = opportunity.net_profit_usd > 0 and opportunity.roi_pct > MIN_ROI_PCT
        if not result.gas_economics:
            result.warnings.append("Insufficient profit after gas")
            all_good = False

        # 5. Slippage, scaled by volatility impact
        factor = _SLIPPAGE_FACTORS[volatility_metrics.impact_assessment]
        estimated_slippage_bps = opportunity.size_eth * BASE_SLIPPAGE_BPS_PER_ETH * factor
        result.slippage_acceptable = estimated_slippage_bps < MAX_SLIPPAGE_BPS
        if not result.slippage_acceptable:
            result.warnings.append(
                f"Estimated slippage too high: {estimated_slippage_bps:.0f} bps (volatility-adjusted)")
            all_good = False

        result.all_passed = all_good
        if result.warnings:
            self.logger.debug(f"{opportunity.pool}: validation warnings: {'; '.join(result.warnings)}")
        return result
