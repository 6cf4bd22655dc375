"""
Tests for the dry-run simulator and the submitter path of ExecutionService.
"""

import asyncio
import random

import pytest

from dexarb.arbitrage import ArbitrageDetector
from dexarb.config import normalize_config
from dexarb.execution import ExecutionService
from dexarb.models import ExecutionStatus, VolatilityMetrics


class StubRandom(random.Random):
    def __init__(self, value):
        super().__init__()
        self.value = value

    def random(self):
        return self.value


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def opportunity():
    return ArbitrageDetector().detect("WETH/USDC", 3010.0, 3000.0, 0.1)


class TestSimulation:
    """Tests for dry-run execution."""

    @pytest.mark.asyncio
    async def test_filled(self, config, logger, opportunity, calm_metrics):
        sleep = RecordingSleep()
        service = ExecutionService(config, logger, rng=StubRandom(0.0), sleep=sleep)

        execution = await service.execute(opportunity, calm_metrics)

        assert service.dry_run is True
        assert execution.status == ExecutionStatus.SIMULATED
        assert execution.succeeded
        assert execution.opportunity_id == opportunity.id
        assert execution.tx_hash.startswith("0x") and len(execution.tx_hash) == 34
        assert execution.gas_used == 156_000
        assert execution.slippage_bps == 25
        assert execution.actual_profit_usd == pytest.approx(0.98 * (1 - 25 / 10_000))
        assert execution.network == "Base Sepolia"
        assert sleep.delays == pytest.approx([0.1])

    @pytest.mark.asyncio
    async def test_unfilled_in_extreme_volatility(self, config, logger, opportunity):
        """At EXTREME impact the fill rate is 50%; a 0.99 draw misses."""
        sleep = RecordingSleep()
        service = ExecutionService(config, logger, rng=StubRandom(0.99), sleep=sleep)
        extreme = VolatilityMetrics.from_levels(12.0, 12.0, 12.0)

        execution = await service.execute(opportunity, extreme)

        assert execution.status == ExecutionStatus.FAILED
        assert not execution.succeeded
        assert execution.tx_hash is None
        assert execution.actual_profit_usd is None
        assert execution.error_message == "Simulated failure due to high volatility"
        assert sleep.delays == pytest.approx([0.4])

    @pytest.mark.asyncio
    async def test_fill_rate_tracks_impact(self, config, logger, opportunity):
        """A 0.8 draw fills at MODERATE (85%) but not at HIGH (70%)."""
        service = ExecutionService(config, logger, rng=StubRandom(0.8), sleep=RecordingSleep())

        moderate = await service.execute(opportunity, VolatilityMetrics.from_levels(3.0, 3.0, 3.0))
        high = await service.execute(opportunity, VolatilityMetrics.from_levels(6.0, 6.0, 6.0))

        assert moderate.status == ExecutionStatus.SIMULATED
        assert moderate.slippage_bps == 50
        assert high.status == ExecutionStatus.FAILED


class TestSubmitter:
    """Tests for the submitter path."""

    @pytest.mark.asyncio
    async def test_success(self, config, logger, opportunity, calm_metrics):
        async def submit(opp):
            return "0xabc"

        service = ExecutionService(config, logger, submit_swap=submit)
        execution = await service.execute(opportunity, calm_metrics)

        assert service.dry_run is False
        assert execution.status == ExecutionStatus.SUCCESS
        assert execution.tx_hash == "0xabc"
        assert execution.gas_used == 150_000
        assert execution.gas_price_gwei == 50.0
        assert execution.actual_profit_usd == pytest.approx(0.98 * 0.995)

    @pytest.mark.asyncio
    async def test_timeout(self, logger, opportunity, calm_metrics):
        config = normalize_config({'execution': {'timeout_seconds': 0.05}})

        async def hang(opp):
            await asyncio.sleep(10)

        execution = await ExecutionService(config, logger, submit_swap=hang).execute(opportunity, calm_metrics)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.error_message == "Transaction timeout after 0.05 seconds"

    @pytest.mark.asyncio
    async def test_submitter_error_is_reported(self, config, logger, opportunity, calm_metrics):
        async def broken(opp):
            raise RuntimeError("nonce too low")

        execution = await ExecutionService(config, logger, submit_swap=broken).execute(opportunity, calm_metrics)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.error_message == "nonce too low"
        assert execution.gas_used is None
