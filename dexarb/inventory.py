# dexarb/inventory.py
import logging
from typing import Optional

from .models import InventoryAnalysis, InventoryImbalance, LiquidityDepth

# Simulated book: 40% of the max position held as WETH, 60% as USD
SIMULATED_WETH_SHARE = 0.4
SIMULATED_USD_SHARE = 0.6
MAX_POOL_SHARE = 0.1  # never hold more than 10% of the pool's WETH


def classify_imbalance(weth_ratio: float, target_ratio: float) -> InventoryImbalance:
    deviation = abs(weth_ratio - target_ratio)
    is_long = weth_ratio > target_ratio
    if deviation < 0.05:
        return InventoryImbalance.BALANCED
    if deviation < 0.15:
        return InventoryImbalance.SLIGHTLY_LONG if is_long else InventoryImbalance.SLIGHTLY_SHORT
    if deviation < 0.30:
        return InventoryImbalance.SIGNIFICANTLY_LONG if is_long else InventoryImbalance.SIGNIFICANTLY_SHORT
    return InventoryImbalance.CRITICALLY_IMBALANCED


class InventoryEngine:
    """
    Simulated WETH/USD inventory for the market-making signal.
    No wallet is read; balances derive from the configured max position.
    """
    def __init__(self, config: dict, logger: Optional[logging.Logger] = None):
        cfg = config['market_making']
        self.max_position_eth = cfg['max_position_size_eth']
        self.target_ratio = cfg['inventory_target_ratio']
        self.rebalance_threshold = cfg['rebalance_threshold']
        self.logger = logger or logging.getLogger(__name__)

    def analyze(self, fair_value: float, liquidity: LiquidityDepth) -> InventoryAnalysis:
        weth_balance = self.max_position_eth * SIMULATED_WETH_SHARE
        usd_balance = self.max_position_eth * fair_value * SIMULATED_USD_SHARE

        weth_balance = min(weth_balance, liquidity.weth_reserves * MAX_POOL_SHARE)

        weth_value = weth_balance * fair_value
        total_value = weth_value + usd_balance
        weth_ratio = weth_value / total_value if total_value > 0 else 0.0

        severity = classify_imbalance(weth_ratio, self.target_ratio)
        rebalance_needed = abs(weth_ratio - self.target_ratio) > self.rebalance_threshold
        rebalance_amount = 0.0
        if rebalance_needed and fair_value > 0:
            rebalance_amount = (self.target_ratio - weth_ratio) * total_value / fair_value

        return InventoryAnalysis(
            current_weth_balance=weth_balance,
            current_usd_balance=usd_balance,
            total_value_usd=total_value,
            weth_ratio=weth_ratio,
            target_weth_ratio=self.target_ratio,
            imbalance_severity=severity,
            rebalance_needed=rebalance_needed,
            rebalance_amount_eth=rebalance_amount,
        )
