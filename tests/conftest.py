"""
Shared fixtures for the dexarb test-suite.
"""

import logging

import pytest

from dexarb.config import normalize_config
from dexarb.models import LiquidityDepth, PoolInfo, VolatilityMetrics

WETH = "0x4200000000000000000000000000000000000006"
USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"


class FakeClock:
    """Manually advanced clock for time-dependent components."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def config():
    return normalize_config({})


@pytest.fixture
def logger():
    return logging.getLogger("dexarb-tests")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def calm_metrics():
    """1%/1%/1%: LOW impact, STABLE trend."""
    return VolatilityMetrics.from_levels(1.0, 1.0, 1.0)


@pytest.fixture
def deep_liquidity():
    """~$20M pool: 5000 WETH and $5M USDC at $3000."""
    return LiquidityDepth.from_reserves(5000.0, 5_000_000.0, 3000.0)


@pytest.fixture
def pool():
    return PoolInfo(name="WETH/USDC", address="0xcDAC0d6c6C59727a65F871236188350531885C43",
                    token0=WETH, token1=USDC)
