"""
Tests for configuration loading and the health/session bookkeeping.
"""

import pytest

from dexarb.config import DEFAULT_CONFIG, load_config, normalize_config
from dexarb.errors import ConfigError
from dexarb.health import HealthReporter, SessionStats, run_health_check
from dexarb.resilience import CircuitBreaker


class TestNormalizeConfig:
    """Tests for normalize_config and load_config."""

    def test_defaults(self):
        cfg = normalize_config()

        assert cfg['trading']['trade_size_eth'] == 0.1
        assert cfg['circuit_breaker']['max_consecutive_errors'] == 5
        assert cfg['system']['tick_interval_seconds'] == 2.0
        assert len(cfg['network']['pools']) == 2

    def test_partial_override_keeps_siblings(self):
        cfg = normalize_config({'trading': {'trade_size_eth': 0.5}})

        assert cfg['trading']['trade_size_eth'] == 0.5
        assert cfg['trading']['min_profit_usd'] == 0.5

    def test_defaults_not_mutated(self):
        normalize_config({'trading': {'trade_size_eth': 2.0}})

        assert DEFAULT_CONFIG['trading']['trade_size_eth'] == 0.1

    def test_bounded_values_clamped(self):
        cfg = normalize_config({
            'trading': {'trade_size_eth': 50, 'min_profit_usd': 0.0},
            'market_making': {'base_spread_bps': 1},
            'execution': {'max_gas_price_gwei': 1000, 'slippage_tolerance_bps': 500},
        })

        assert cfg['trading']['trade_size_eth'] == 10.0
        assert cfg['trading']['min_profit_usd'] == 0.10
        assert cfg['market_making']['base_spread_bps'] == 10
        assert cfg['execution']['max_gas_price_gwei'] == 200
        assert cfg['execution']['slippage_tolerance_bps'] == 100

    def test_env_expansion(self, monkeypatch):
        monkeypatch.setenv("ALCHEMY_API_KEY", "secret-key")

        cfg = normalize_config()

        assert cfg['network']['rpc_url'].endswith("/v2/secret-key")

    def test_sepolia_defaults(self):
        cfg = normalize_config({'network': {'name': 'sepolia'}})

        assert 'base-sepolia' in cfg['network']['rpc_url']
        assert [p['name'] for p in cfg['network']['pools']] == ['WETH/USDC-Sepolia']
        assert list(cfg['network']['usd_tokens']) == ['USDC']

    @pytest.mark.parametrize("raw", [
        {'market_making': {'max_position_size_eth': 0}},
        {'market_making': {'inventory_target_ratio': 1.5}},
        {'circuit_breaker': {'max_consecutive_errors': 0}},
        {'network': {'pools': []}},
        {'trading': {'trade_size_eth': 'lots'}},
    ])
    def test_invalid_values(self, raw):
        with pytest.raises(ConfigError):
            normalize_config(raw)

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(tmp_path / "nope.yaml"))

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("trading:\n  trade_size_eth: 0.25\nsystem:\n  interactive: false\n")

        cfg = load_config(str(path))

        assert cfg['trading']['trade_size_eth'] == 0.25
        assert cfg['system']['interactive'] is False

    def test_load_non_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigError):
            load_config(str(path))


class TestHealth:
    """Tests for SessionStats and the health check."""

    def test_session_stats(self):
        stats = SessionStats(started_at=0.0)
        stats.total_opportunities = 4
        stats.profitable_opportunities = 1
        stats.record_error("pool_A")
        stats.record_error("pool_A")
        stats.record_error("reference_price")

        assert stats.success_rate == 25.0
        assert stats.execution_success_rate == 0.0
        assert stats.total_errors == 3
        assert stats.error_counts == {"pool_A": 2, "reference_price": 1}

    def test_runtime_uses_injected_clock(self, clock):
        stats = SessionStats(clock=clock)
        stats.total_signals = 30

        clock.advance(120)

        assert stats.started_at == 1_000_000
        assert stats.runtime_seconds == 120
        assert stats.signals_per_minute == 15.0

    def test_stats_due(self):
        stats = SessionStats()
        assert stats.stats_due() is False

        stats.total_signals = 25
        assert stats.stats_due() is True

        stats.total_signals = 26
        stats.total_executions = 10
        assert stats.stats_due() is True

    def test_health_check_staleness(self):
        breaker = CircuitBreaker(5, 300)
        health = run_health_check(last_dex_update=995.0, last_reference_update=980.0,
                                  breaker=breaker, started_at=900.0, now=1000.0)

        assert health.dex_connection is True
        assert health.reference_connection is False
        assert health.uptime_seconds == 100
        assert health.circuit_breaker_active is False

    def test_reporter_logs(self, logger, caplog):
        breaker = CircuitBreaker(1, 300)
        breaker.record_error()
        reporter = HealthReporter(
            lambda: run_health_check(None, None, breaker, 0.0, now=10.0),
            lambda: {"network_timeout": 2}, logger)

        with caplog.at_level("INFO", logger=logger.name):
            health = reporter.report()

        assert health.circuit_breaker_active is True
        assert "DEX=FAIL" in caplog.text
        assert "BREAKER OPEN" in caplog.text
