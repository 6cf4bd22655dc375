# dexarb/health.py
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from .config import PRICE_STALENESS_SECONDS
from .models import HealthStatus
from .resilience import CircuitBreaker

STATS_EVERY_OPPORTUNITIES = 50
STATS_EVERY_SIGNALS = 25
STATS_EVERY_EXECUTIONS = 10
ERROR_BUDGET = 1000


@dataclass(slots=True)
class SessionStats:
    """Running counters for one monitoring session."""
    started_at: Optional[float] = None
    total_opportunities: int = 0
    profitable_opportunities: int = 0
    total_potential_profit: float = 0.0
    total_signals: int = 0
    total_executions: int = 0
    successful_executions: int = 0
    persist_failures: int = 0
    error_counts: Dict[str, int] = field(default_factory=dict)
    clock: Callable[[], float] = field(default=time.time, repr=False, compare=False)

    def __post_init__(self):
        if self.started_at is None:
            self.started_at = self.clock()

    def record_error(self, key: str):
        self.error_counts[key] = self.error_counts.get(key, 0) + 1

    @property
    def total_errors(self) -> int:
        return sum(self.error_counts.values())

    @property
    def runtime_seconds(self) -> float:
        return self.clock() - self.started_at

    @property
    def success_rate(self) -> float:
        if not self.total_opportunities:
            return 0.0
        return self.profitable_opportunities / self.total_opportunities * 100

    @property
    def execution_success_rate(self) -> float:
        if not self.total_executions:
            return 0.0
        return self.successful_executions / self.total_executions * 100

    @property
    def signals_per_minute(self) -> float:
        runtime = self.runtime_seconds
        return self.total_signals * 60 / runtime if runtime > 0 else 0.0

    def stats_due(self) -> bool:
        return ((self.total_opportunities > 0 and self.total_opportunities % STATS_EVERY_OPPORTUNITIES == 0)
                or (self.total_signals > 0 and self.total_signals % STATS_EVERY_SIGNALS == 0)
                or (self.total_executions > 0 and self.total_executions % STATS_EVERY_EXECUTIONS == 0))


def run_health_check(last_dex_update: Optional[float], last_reference_update: Optional[float],
                     breaker: CircuitBreaker, started_at: float,
                     now: Optional[float] = None) -> HealthStatus:
    now = time.time() if now is None else now
    state = breaker.snapshot()
    return HealthStatus(
        dex_connection=last_dex_update is not None and now - last_dex_update < PRICE_STALENESS_SECONDS,
        reference_connection=(last_reference_update is not None
                              and now - last_reference_update < PRICE_STALENESS_SECONDS),
        last_dex_update=last_dex_update,
        last_reference_update=last_reference_update,
        consecutive_errors=state.consecutive_errors,
        circuit_breaker_active=state.is_open,
        uptime_seconds=int(now - started_at),
    )


class HealthReporter:
    """
    Background task logging a health line at a fixed interval.
    Only reads snapshots; never mutates breaker or tracker state.
    """
    def __init__(self, status_source: Callable[[], HealthStatus],
                 error_source: Callable[[], Dict[str, int]],
                 logger: logging.Logger, interval: float = 30.0):
        self.status_source = status_source
        self.error_source = error_source
        self.logger = logger
        self.interval = interval

    def report(self) -> HealthStatus:
        health = self.status_source()
        self.logger.info(
            f"🏥 Health Check: DEX={'OK' if health.dex_connection else 'FAIL'}, "
            f"REF={'OK' if health.reference_connection else 'FAIL'}, "
            f"Uptime={health.uptime_seconds}s, Errors={health.consecutive_errors}"
            f"{', BREAKER OPEN' if health.circuit_breaker_active else ''}")
        errors = self.error_source()
        if errors:
            self.logger.debug(f"Error summary: {errors}")
        return health

    async def run(self, stop: asyncio.Event):
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                self.report()
