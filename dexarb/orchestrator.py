# dexarb/orchestrator.py
import asyncio
import logging
import signal
import time
from enum import Enum
from typing import Callable, List, Optional

from .arbitrage import ArbitrageDetector, OpportunityValidator
from .display import Display
from .errors import ContractError, InsufficientLiquidityError
from .execution import ExecutionService
from .health import ERROR_BUDGET, HealthReporter, SessionStats, run_health_check
from .logger import AsyncAuditLogger, AsyncRecordSink, execution_row
from .market_making import SignalEngine
from .models import ArbitrageOpportunity, HealthStatus, LiquidityDepth, PoolInfo, VolatilityMetrics
from .resilience import CircuitBreaker, ErrorRecovery, RecoveryType
from .volatility import VolatilityTracker

BREAKER_WAIT_SECONDS = 10.0
MAX_STALE_REFERENCE_USES = 3


class TickOutcome(Enum):
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    BREAKER_OPEN = "BREAKER_OPEN"
    RETRY = "RETRY"
    SHUTDOWN = "SHUTDOWN"


class ArbitrageMonitor:
    """
    The periodic monitoring loop.

    Each tick: breaker gate, reference price (with recovery dispatch),
    volatility update, then every pool in declaration order. A failing pool
    never stops the others. Collaborators are injected so the loop can run
    against fakes.
    """
    def __init__(self, config: dict, logger: logging.Logger,
                 reference_feed, pool_source, pools: List[PoolInfo],
                 breaker: CircuitBreaker, recovery: ErrorRecovery,
                 tracker: Optional[VolatilityTracker] = None,
                 detector: Optional[ArbitrageDetector] = None,
                 validator: Optional[OpportunityValidator] = None,
                 signal_engine: Optional[SignalEngine] = None,
                 executor: Optional[ExecutionService] = None,
                 sink: Optional[AsyncRecordSink] = None,
                 audit_log: Optional[AsyncAuditLogger] = None,
                 display: Optional[Display] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config
        self.logger = logger
        self.reference_feed = reference_feed
        self.pool_source = pool_source
        self.pools = pools
        self.breaker = breaker
        self.recovery = recovery
        self.tracker = tracker or VolatilityTracker(logger)
        self.detector = detector or ArbitrageDetector()
        self.validator = validator or OpportunityValidator(logger)
        self.signal_engine = signal_engine or SignalEngine(config, logger)
        self.executor = executor
        self.sink = sink
        self.audit_log = audit_log
        self.display = display
        self.clock = clock

        system = config['system']
        self.tick_interval = system['tick_interval_seconds']
        self.safety_checks = system['enable_safety_checks']
        self.trade_size = config['trading']['trade_size_eth']
        self.min_profit = config['trading']['min_profit_usd']
        self.volatility_threshold = config['volatility']['threshold_pct']
        self.market_making = config['market_making']['enabled']
        self.trade_execution = config['execution']['enabled']
        self.breaker_wait_seconds = BREAKER_WAIT_SECONDS

        self.stats = SessionStats(clock=clock)
        self.health = HealthReporter(self.health_status, self.recovery.error_counts, logger,
                                     interval=system['health_interval_seconds'])
        self.last_reference_price: Optional[float] = None
        self.last_reference_update: Optional[float] = None
        self.last_dex_update: Optional[float] = None
        self.consecutive_reference_failures = 0
        self._last_stats_key = None
        self._error_warning_at = ERROR_BUDGET
        self._stop = asyncio.Event()

    # --- LIFECYCLE ---

    def request_stop(self):
        if not self._stop.is_set():
            self.logger.info("📛 Received shutdown signal, finishing current tick...")
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except NotImplementedError:
                # no loop signal support (Windows); KeyboardInterrupt still stops main
                self.logger.debug(f"Signal handler for {sig.name} not supported on this platform")

    async def _pause(self, seconds: float):
        """Sleeps, but wakes early on shutdown."""
        if seconds <= 0 or self._stop.is_set():
            return
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run(self):
        self.logger.info("🚀 Starting main monitoring loop...")
        health_task = asyncio.create_task(self.health.run(self._stop))
        try:
            while not self._stop.is_set():
                outcome = await self.tick()
                if outcome == TickOutcome.SHUTDOWN:
                    break
                if outcome == TickOutcome.RETRY:
                    continue
                await self._pause(self.tick_interval)
        finally:
            self._stop.set()
            await health_task
            self.logger.info("🛑 Monitoring loop stopped")
            if self.display:
                self.display.final_stats(self.stats, self.recovery.error_counts())

    def health_status(self) -> HealthStatus:
        return run_health_check(self.last_dex_update, self.last_reference_update,
                                self.breaker, self.stats.started_at, now=self.clock())

    # --- TICK ---

    async def tick(self) -> TickOutcome:
        if not self.breaker.can_proceed():
            self.logger.warning(
                f"⚡ Circuit breaker is OPEN, waiting for cooldown "
                f"({self.breaker.cooldown_remaining():.0f}s left)...")
            await self._pause(self.breaker_wait_seconds)
            return TickOutcome.BREAKER_OPEN

        reference_price, outcome = await self._reference_price()
        if reference_price is None:
            return outcome

        metrics = self.tracker.metrics()

        for pool in self.pools:
            try:
                await self.process_pool(pool, reference_price, metrics)
            except InsufficientLiquidityError as e:
                self.stats.record_error(f"pool_{pool.name}")
                self.logger.debug(f"Pool {pool.name} has insufficient liquidity: {e}")
            except ContractError as e:
                self.stats.record_error(f"pool_{pool.name}")
                self.logger.warning(f"Contract error for pool {pool.name}: {e}")
                if self.breaker.record_error():
                    self.logger.error("Circuit breaker activated due to contract errors")
            except Exception as e:
                # one broken pool must not stop the others
                self.stats.record_error(f"pool_{pool.name}")
                self.logger.error(f"Error processing pool {pool.name}: {e}", exc_info=True)

        self._report_progress()
        return TickOutcome.COMPLETED

    async def _reference_price(self):
        """Returns (price, outcome); price is None when the tick must end early."""
        try:
            price = await self.reference_feed.fetch_reference_price()
        except Exception as e:
            return await self._recover_reference(e)

        self.last_reference_price = price
        self.last_reference_update = self.clock()
        self.consecutive_reference_failures = 0
        self.breaker.record_success()
        self.tracker.add_price(price)
        return price, TickOutcome.COMPLETED

    async def _recover_reference(self, error: Exception):
        self.consecutive_reference_failures += 1
        self.stats.record_error("reference_price")
        action = self.recovery.handle_error(error, "reference price fetch")

        if action.type == RecoveryType.RETRY:
            self.logger.warning(f"Reference error (attempt {self.consecutive_reference_failures}): "
                                f"{error}. Retrying in {action.delay:.1f}s")
            await self._pause(action.delay)
            return None, TickOutcome.RETRY

        if action.type == RecoveryType.SHUTDOWN:
            self.logger.critical(f"Critical error - shutting down: {action.reason}")
            self._stop.set()
            return None, TickOutcome.SHUTDOWN

        if action.type == RecoveryType.SKIP:
            return self._use_stale_reference()

        self.logger.error(f"Unhandled reference error: {error}")
        return None, TickOutcome.SKIPPED

    def _use_stale_reference(self):
        if self.last_reference_price is None:
            self.logger.error("No fallback reference price available")
            return None, TickOutcome.SKIPPED
        if self.consecutive_reference_failures > MAX_STALE_REFERENCE_USES:
            self.logger.error(f"Too many reference failures ({self.consecutive_reference_failures}), "
                              f"skipping iteration")
            if self.breaker.record_error():
                self.logger.error("Circuit breaker activated due to reference errors")
            return None, TickOutcome.SKIPPED
        age = self.clock() - self.last_reference_update
        self.logger.warning(f"Using last known reference price: ${self.last_reference_price:.2f} "
                            f"(age: {age:.0f}s)")
        return self.last_reference_price, TickOutcome.COMPLETED

    # --- POOLS ---

    async def process_pool(self, pool: PoolInfo, reference_price: float, metrics: VolatilityMetrics):
        dex_price = await self.pool_source.fetch_pool_price(pool)
        self.last_dex_update = self.clock()

        diff_pct = abs(dex_price - reference_price) / reference_price * 100
        self.logger.info(f"💹 {pool.name} | DEX: ${dex_price:.4f} | REF: ${reference_price:.4f} | "
                         f"Diff: {diff_pct:.3f}% | Vol: {metrics.short_vol:.2f}%")

        opportunity = self.detector.detect(pool.name, dex_price, reference_price, self.trade_size)

        liquidity: Optional[LiquidityDepth] = None
        if (opportunity is not None and self.safety_checks) or self.market_making:
            liquidity = await self.pool_source.fetch_liquidity_depth(pool, reference_price)

        if opportunity is not None:
            opportunity.volatility_assessment = metrics
            await self._handle_opportunity(opportunity, liquidity, metrics)

        if self.market_making:
            signal = self.signal_engine.generate(pool.name, reference_price, dex_price, liquidity, metrics)
            self.stats.total_signals += 1
            if self.display:
                self.display.signal(signal)
            self._persist('signal', signal)

    async def _handle_opportunity(self, opp: ArbitrageOpportunity, liquidity: Optional[LiquidityDepth],
                                  metrics: VolatilityMetrics):
        self.stats.total_opportunities += 1

        if self.safety_checks:
            opp.validation_checks = self.validator.validate(opp, liquidity, metrics, self.volatility_threshold)
            if not opp.validation_checks.all_passed:
                self.logger.warning(f"Arbitrage opportunity failed validation: {opp.validation_checks.warnings}")
                return

        if opp.net_profit_usd < self.min_profit:
            return

        self.stats.profitable_opportunities += 1
        self.stats.total_potential_profit += opp.net_profit_usd
        self.logger.warning(f"🎯 ARBITRAGE OPPORTUNITY #{self.stats.profitable_opportunities} | {opp.pool} | "
                            f"{opp.direction.value} | Net ${opp.net_profit_usd:.2f} | ROI {opp.roi_pct:.3f}%")

        if self.trade_execution and self.executor is not None:
            execution = await self.executor.execute(opp, metrics)
            self.stats.total_executions += 1
            if execution.succeeded:
                self.stats.successful_executions += 1
            opp.execution_simulation = execution
            if self.display:
                self.display.execution(execution)
            self._persist('execution', execution)
            if self.audit_log is not None:
                await self.audit_log.log_trade(execution_row(execution))

        if self.display:
            self.display.opportunity(opp, self.stats.profitable_opportunities)
        self._persist('opportunity', opp)

    def _persist(self, kind: str, record):
        if self.sink is None:
            return
        try:
            self.sink.persist(kind, record)
        except (ValueError, asyncio.QueueFull) as e:
            self.stats.persist_failures += 1
            self.stats.record_error(f"save_{kind}")
            self.logger.error(f"Failed to queue {kind} record: {e}")

    # --- REPORTING ---

    def _report_progress(self):
        stats = self.stats
        key = (stats.total_opportunities, stats.total_signals, stats.total_executions)
        if stats.stats_due() and key != self._last_stats_key:
            self._last_stats_key = key
            self.logger.info(
                f"📊 Session: {stats.total_opportunities} opportunities "
                f"({stats.profitable_opportunities} validated, ${stats.total_potential_profit:.2f}), "
                f"{stats.total_signals} signals, {stats.successful_executions}/{stats.total_executions} executions")
            if self.display:
                self.display.session_stats(stats, self.breaker.snapshot())

        # warn once per further ERROR_BUDGET errors
        total_errors = stats.total_errors
        if total_errors > self._error_warning_at:
            self._error_warning_at = total_errors + ERROR_BUDGET
            self.logger.error(f"Too many total errors ({total_errors}), consider restarting")
            self.logger.warning(f"Error breakdown: {stats.error_counts}")
