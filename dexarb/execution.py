# dexarb/execution.py
import asyncio
import logging
import random
import time
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from .config import EXECUTION_TIMEOUT_SECS
from .models import (ArbitrageOpportunity, ExecutionStatus, TradeExecution,
                     VolatilityImpact, VolatilityMetrics)

SwapSubmitter = Callable[[ArbitrageOpportunity], Awaitable[str]]

SIMULATED_GAS_USED = 156_000
SIMULATED_GAS_PRICE_GWEI = 0.12
SUBMITTED_GAS_USED = 150_000
SUBMITTED_SLIPPAGE_BPS = 50

BASE_LATENCY_MS = 100
BASE_SLIPPAGE_BPS = 25

_EXTRA_LATENCY_MS = {
    VolatilityImpact.LOW: 0,
    VolatilityImpact.MODERATE: 50,
    VolatilityImpact.HIGH: 150,
    VolatilityImpact.EXTREME: 300,
}
_SUCCESS_RATE = {
    VolatilityImpact.LOW: 0.95,
    VolatilityImpact.MODERATE: 0.85,
    VolatilityImpact.HIGH: 0.70,
    VolatilityImpact.EXTREME: 0.50,
}
_EXTRA_SLIPPAGE_BPS = {
    VolatilityImpact.LOW: 0,
    VolatilityImpact.MODERATE: 25,
    VolatilityImpact.HIGH: 75,
    VolatilityImpact.EXTREME: 150,
}


class ExecutionService:
    """
    Turns a validated opportunity into a TradeExecution record.

    Without a swap submitter (the default) every trade is a dry run: latency,
    fill probability and slippage are simulated from the volatility impact.
    With one, the submitter is raced against the execution timeout. Nothing
    here signs transactions or holds keys.
    Failures never raise; they come back as FAILED records.
    """
    def __init__(self, config: dict, logger: logging.Logger,
                 submit_swap: Optional[SwapSubmitter] = None,
                 rng: Optional[random.Random] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.cfg = config['execution']
        self.logger = logger
        self.submit_swap = submit_swap
        self.rng = rng or random.Random()
        self.sleep = sleep
        self.network = self.cfg['network']
        self.timeout = self.cfg.get('timeout_seconds', EXECUTION_TIMEOUT_SECS)
        self.dry_run = submit_swap is None

    async def execute(self, opp: ArbitrageOpportunity, volatility: VolatilityMetrics) -> TradeExecution:
        started = time.monotonic()
        execution_id = str(uuid.uuid4())
        self.logger.info(f"🚀 Simulating trade execution for opportunity {opp.id}")

        if self.dry_run:
            return await self._simulate(execution_id, opp, volatility, started)

        try:
            tx_hash = await asyncio.wait_for(self.submit_swap(opp), timeout=self.timeout)
        except asyncio.TimeoutError:
            message = f"Transaction timeout after {self.timeout:g} seconds"
            self.logger.warning(f"⚠️ Execution failed: {message}")
            return self._failed(execution_id, opp, started, message)
        except Exception as e:
            # submitter failures are reported as data, not propagated
            self.logger.warning(f"⚠️ Execution failed: {e}")
            return self._failed(execution_id, opp, started, str(e))

        self.logger.info(f"📡 Transaction sent on {self.network}: {tx_hash}")
        return TradeExecution(
            id=execution_id,
            opportunity_id=opp.id,
            timestamp=datetime.now(timezone.utc),
            network=self.network,
            trade_type=opp.direction,
            status=ExecutionStatus.SUCCESS,
            tx_hash=tx_hash,
            gas_used=SUBMITTED_GAS_USED,
            gas_price_gwei=float(self.cfg['max_gas_price_gwei']),
            execution_time_ms=self._elapsed_ms(started),
            expected_profit_usd=opp.net_profit_usd,
            actual_profit_usd=opp.net_profit_usd * (1 - SUBMITTED_SLIPPAGE_BPS / 10_000),
            slippage_bps=SUBMITTED_SLIPPAGE_BPS,
        )

    async def _simulate(self, execution_id: str, opp: ArbitrageOpportunity,
                        volatility: VolatilityMetrics, started: float) -> TradeExecution:
        impact = volatility.impact_assessment
        await self.sleep((BASE_LATENCY_MS + _EXTRA_LATENCY_MS[impact]) / 1000)

        filled = self.rng.random() < _SUCCESS_RATE[impact]
        slippage_bps = BASE_SLIPPAGE_BPS + _EXTRA_SLIPPAGE_BPS[impact]
        actual_profit = opp.net_profit_usd * (1 - slippage_bps / 10_000)

        self.logger.info(f"🎭 Simulated execution: success={filled}, slippage={slippage_bps}bps")

        return TradeExecution(
            id=execution_id,
            opportunity_id=opp.id,
            timestamp=datetime.now(timezone.utc),
            network=self.network,
            trade_type=opp.direction,
            status=ExecutionStatus.SIMULATED if filled else ExecutionStatus.FAILED,
            tx_hash="0x" + uuid.uuid4().hex if filled else None,
            gas_used=SIMULATED_GAS_USED,
            gas_price_gwei=SIMULATED_GAS_PRICE_GWEI,
            execution_time_ms=self._elapsed_ms(started),
            expected_profit_usd=opp.net_profit_usd,
            actual_profit_usd=actual_profit if filled else None,
            slippage_bps=slippage_bps if filled else None,
            error_message=None if filled else "Simulated failure due to high volatility",
        )

    def _failed(self, execution_id: str, opp: ArbitrageOpportunity, started: float,
                message: str) -> TradeExecution:
        return TradeExecution(
            id=execution_id,
            opportunity_id=opp.id,
            timestamp=datetime.now(timezone.utc),
            network=self.network,
            trade_type=opp.direction,
            status=ExecutionStatus.FAILED,
            tx_hash=None,
            gas_used=None,
            gas_price_gwei=None,
            execution_time_ms=self._elapsed_ms(started),
            expected_profit_usd=opp.net_profit_usd,
            error_message=message,
        )

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
