# main.py
import asyncio
import os
import sys

import questionary

from dexarb.config import load_config
from dexarb.display import Display
from dexarb.errors import ConfigError
from dexarb.execution import ExecutionService
from dexarb.logger import AsyncAuditLogger, AsyncRecordSink, setup_console_logger
from dexarb.market_engine import ReferencePriceFeed
from dexarb.orchestrator import ArbitrageMonitor
from dexarb.pool_engine import PoolEngine
from dexarb.resilience import CircuitBreaker, ErrorRecovery

CONFIG_PATH = os.environ.get("DEXARB_CONFIG", "config.yaml")


def startup_selection(config):
    """Interactive CLI to pick which configured pools to monitor."""
    print("\n🚀 DEX ARBITRAGE MONITOR \n")
    names = [p['name'] for p in config['network']['pools']]
    selected = questionary.checkbox("Select Pools to Monitor:", choices=names).ask()
    if not selected:
        print("No pools selected. Exiting.")
        sys.exit()
    config['network']['pools'] = [p for p in config['network']['pools'] if p['name'] in selected]
    return config


class MonitorApp:
    def __init__(self, config: dict):
        self.config = config
        out_dir = config['output']['directory']
        self.logger = setup_console_logger("DexArb", config['system']['log_level'],
                                           log_dir=os.path.join(out_dir, 'logs'))
        self.sink = AsyncRecordSink(out_dir, self.logger)
        self.audit_log = AsyncAuditLogger(config['output']['trade_log'], self.logger)
        self.reference_feed = ReferencePriceFeed(config, self.logger)
        self.pool_engine = PoolEngine(config, self.logger)
        self.breaker = CircuitBreaker.from_config(config, self.logger)
        self.recovery = ErrorRecovery(logger=self.logger)

    async def run(self):
        try:
            print("Initializing Diagnostic Checks...")
            await self.sink.start()
            await self.audit_log.start()
            await self.pool_engine.start()

            if not await self.reference_feed.initialize():
                print("❌ Diagnostic Failed. Reference exchange unreachable.")
                return

            pools = await self.pool_engine.validate_pools()

            executor = None
            if self.config['execution']['enabled']:
                executor = ExecutionService(self.config, self.logger)
                self.logger.info(f"⚡ Trade execution enabled ({self.config['execution']['network']}, dry run)")

            monitor = ArbitrageMonitor(
                self.config, self.logger,
                reference_feed=self.reference_feed,
                pool_source=self.pool_engine,
                pools=pools,
                breaker=self.breaker,
                recovery=self.recovery,
                executor=executor,
                sink=self.sink,
                audit_log=self.audit_log,
                display=Display(),
            )
            monitor.install_signal_handlers()
            await monitor.run()
        finally:
            print("Shutting down resources...")
            await self.sink.stop()
            await self.audit_log.stop()
            await self.pool_engine.shutdown()
            await self.reference_feed.shutdown()


if __name__ == "__main__":
    try:
        conf = load_config(CONFIG_PATH)
    except ConfigError as e:
        print(f"❌ {e}")
        sys.exit(1)
    try:
        if conf['system']['interactive']:
            conf = startup_selection(conf)
        app = MonitorApp(conf)
        try:
            import uvloop
            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        except ImportError:
            pass
        asyncio.run(app.run())
    except ConfigError as e:
        print(f"❌ {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n🛑 Monitor Stopped by User.")
        sys.exit()
