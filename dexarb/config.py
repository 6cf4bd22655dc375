# dexarb/config.py
import copy
import os
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError

# Trade sizing bounds
MIN_TRADE_SIZE_ETH = 0.01
MAX_TRADE_SIZE_ETH = 10.0
MIN_PROFIT_USD = 0.10
MAX_SLIPPAGE_BPS = 100  # 1%
PRICE_STALENESS_SECONDS = 10
MAX_PRICE_DEVIATION_PCT = 10.0  # max DEX/reference divergence before a price is considered broken

# Market making
DEFAULT_SPREAD_BPS = 30
MIN_SPREAD_BPS = 10
MAX_SPREAD_BPS = 200

# Execution
DEFAULT_GAS_PRICE_GWEI = 50
MAX_GAS_PRICE_GWEI = 200
EXECUTION_TIMEOUT_SECS = 30

DEFAULT_CONFIG: Dict[str, Any] = {
    'system': {
        'log_level': 'INFO',
        'interactive': True,
        'tick_interval_seconds': 2.0,
        'health_interval_seconds': 30.0,
        'enable_safety_checks': True,
    },
    'network': {
        'name': 'mainnet',
        'rpc_url': 'https://base-mainnet.g.alchemy.com/v2/${ALCHEMY_API_KEY}',
        'request_timeout_seconds': 10.0,
        'weth': '0x4200000000000000000000000000000000000006',
        'usd_tokens': {
            'USDC': '0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913',
            'USDbC': '0xd9aAEc86B65D86f6A7B5B1b0c42FFA531710b6CA',
        },
        'pools': [
            {'name': 'vAMM-WETH/USDbC', 'address': '0xB4885Bc63399BF5518b994c1d0C153334Ee579D0'},
            {'name': 'WETH/USDC', 'address': '0xcDAC0d6c6C59727a65F871236188350531885C43'},
        ],
    },
    'reference': {
        'exchange': 'binance',
        'symbol': 'ETH/USDC',
        'timeout_ms': 3000,
    },
    'trading': {
        'trade_size_eth': 0.1,
        'min_profit_usd': 0.50,
    },
    'market_making': {
        'enabled': True,
        'base_spread_bps': DEFAULT_SPREAD_BPS,
        'max_position_size_eth': 5.0,
        'inventory_target_ratio': 0.5,
        'rebalance_threshold': 0.1,
    },
    'execution': {
        'enabled': False,
        'network': 'Base Sepolia',
        'max_gas_price_gwei': DEFAULT_GAS_PRICE_GWEI,
        'slippage_tolerance_bps': 50,
        'timeout_seconds': EXECUTION_TIMEOUT_SECS,
    },
    'volatility': {
        'threshold_pct': 5.0,
    },
    'risk_model': {
        # short-term volatility scaled to a 1-day horizon, then a 95% one-sided z-score
        'daily_vol_scale': 4.899,
        'var_z_score': 1.65,
    },
    'circuit_breaker': {
        'max_consecutive_errors': 5,
        'cooldown_seconds': 300,
    },
    'output': {
        'directory': 'output',
        'trade_log': 'output/executions/trade_audit.csv',
    },
}


SEPOLIA_NETWORK: Dict[str, Any] = {
    'name': 'sepolia',
    'rpc_url': 'https://base-sepolia.g.alchemy.com/v2/${ALCHEMY_API_KEY}',
    'weth': '0x4200000000000000000000000000000000000006',
    # USDC stands in for both USD tokens on Sepolia
    'usd_tokens': {
        'USDC': '0xAF33ADd7918F685B2A82C1077bd8c07d220FFA04',
    },
    'pools': [
        {'name': 'WETH/USDC-Sepolia', 'address': '0x92b8274aba7ab667bee7eb776ec1de32438d90bf'},
    ],
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _expand_env(value: Any) -> Any:
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


def _clamp(value: float, low: Optional[float] = None, high: Optional[float] = None) -> float:
    if low is not None:
        value = max(value, low)
    if high is not None:
        value = min(value, high)
    return value


def normalize_config(raw: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Merges a (possibly partial) config over the defaults, expands ${VAR}
    references and clamps the bounded values.
    """
    raw = raw or {}
    base = DEFAULT_CONFIG
    if (raw.get('network') or {}).get('name') == 'sepolia':
        base = copy.deepcopy(DEFAULT_CONFIG)
        base['network'].update(copy.deepcopy(SEPOLIA_NETWORK))
    cfg = _expand_env(_merge(base, raw))

    try:
        trading = cfg['trading']
        trading['trade_size_eth'] = _clamp(float(trading['trade_size_eth']),
                                           MIN_TRADE_SIZE_ETH, MAX_TRADE_SIZE_ETH)
        trading['min_profit_usd'] = _clamp(float(trading['min_profit_usd']), MIN_PROFIT_USD)

        mm = cfg['market_making']
        mm['base_spread_bps'] = int(_clamp(int(mm['base_spread_bps']), MIN_SPREAD_BPS, MAX_SPREAD_BPS))
        mm['max_position_size_eth'] = float(mm['max_position_size_eth'])
        mm['inventory_target_ratio'] = float(mm['inventory_target_ratio'])
        mm['rebalance_threshold'] = float(mm['rebalance_threshold'])

        ex = cfg['execution']
        ex['max_gas_price_gwei'] = int(_clamp(int(ex['max_gas_price_gwei']), high=MAX_GAS_PRICE_GWEI))
        ex['slippage_tolerance_bps'] = int(_clamp(int(ex['slippage_tolerance_bps']), high=MAX_SLIPPAGE_BPS))

        cb = cfg['circuit_breaker']
        cb['max_consecutive_errors'] = int(cb['max_consecutive_errors'])
        cb['cooldown_seconds'] = float(cb['cooldown_seconds'])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}") from e

    if mm['max_position_size_eth'] <= 0:
        raise ConfigError("market_making.max_position_size_eth must be positive")
    if not 0 < mm['inventory_target_ratio'] < 1:
        raise ConfigError("market_making.inventory_target_ratio must be between 0 and 1")
    if cb['max_consecutive_errors'] < 1:
        raise ConfigError("circuit_breaker.max_consecutive_errors must be at least 1")
    if not cfg['network']['pools']:
        raise ConfigError("network.pools must list at least one pool")

    return cfg


def load_config(path: str = "config.yaml") -> Dict[str, Any]:
    if not os.path.exists(path):
        raise ConfigError(f"Config file not found: {path}")
    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return normalize_config(raw)
