# dexarb/pool_engine.py
import asyncio
import itertools
import logging
import time
from typing import Dict, List, Optional, Tuple

import aiohttp

from .errors import (BotError, ConfigError, ContractError, DataParsingError,
                     InsufficientLiquidityError, NetworkError, validate_price)
from .models import LiquidityDepth, PoolInfo
from .resilience import RetryConfig, retry_with_backoff

# 4-byte function selectors
GET_RESERVES = "0x0902f1ac"
TOKEN0 = "0x0dfe1681"
TOKEN1 = "0xd21220a7"
STABLE = "0x22be3de1"

WETH_DECIMALS = 18
USD_DECIMALS = 6

PRICE_RETRY = RetryConfig(max_attempts=3, initial_delay=0.2)

_TRANSIENT = (aiohttp.ClientError, asyncio.TimeoutError)


def decode_words(data: str) -> List[int]:
    """Splits an eth_call hex result into 32-byte unsigned integers."""
    if not isinstance(data, str) or not data.startswith("0x"):
        raise DataParsingError(f"eth_call result is not hex: {data!r}")
    body = data[2:]
    if not body or len(body) % 64:
        raise DataParsingError(f"eth_call result has {len(body)} hex chars, expected 32-byte words")
    try:
        return [int(body[i:i + 64], 16) for i in range(0, len(body), 64)]
    except ValueError as e:
        raise DataParsingError(f"eth_call result is not hex: {data!r}") from e


def decode_address(data: str) -> str:
    word = decode_words(data)[0]
    return "0x" + format(word, "064x")[-40:]


def decode_bool(data: str) -> bool:
    return decode_words(data)[0] != 0


class PoolEngine:
    """
    Reads pool identity and reserves over raw JSON-RPC eth_call.
    Only the handful of read-only calls the monitor needs are supported,
    with hand-decoded 32-byte return words.
    """
    def __init__(self, config: dict, logger: logging.Logger,
                 session: Optional[aiohttp.ClientSession] = None,
                 reserves_retry: RetryConfig = RetryConfig(),
                 price_retry: RetryConfig = PRICE_RETRY):
        self.cfg = config['network']
        self.logger = logger
        self.reserves_retry = reserves_retry
        self.price_retry = price_retry
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count(1)
        self.weth = self.cfg['weth'].lower()
        self.usd_tokens = {a.lower() for a in self.cfg['usd_tokens'].values()}
        self.last_update: Optional[float] = None

    async def start(self):
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg['request_timeout_seconds'])
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def shutdown(self):
        if self._session is not None and self._owns_session:
            await self._session.close()

    # --- RAW RPC ---

    async def eth_call(self, to: str, data: str) -> str:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "eth_call",
            "params": [{"to": to, "data": data}, "latest"],
        }
        async with self._session.post(self.cfg['rpc_url'], json=payload) as resp:
            resp.raise_for_status()
            body = await resp.json(content_type=None)
        if 'error' in body:
            err = body['error']
            message = err.get('message', err) if isinstance(err, dict) else err
            raise ContractError(to, f"eth_call {data} reverted: {message}")
        if 'result' not in body:
            raise DataParsingError(f"eth_call response without result: {body}")
        self.last_update = time.time()
        return body['result']

    # --- POOL IDENTITY ---

    async def fetch_pool_identity(self, name: str, address: str) -> PoolInfo:
        self.logger.debug(f"Getting info for pool: {name} at {address}")
        token0 = decode_address(await self.eth_call(address, TOKEN0))
        token1 = decode_address(await self.eth_call(address, TOKEN1))
        is_stable = decode_bool(await self.eth_call(address, STABLE))
        return PoolInfo(name=name, address=address, token0=token0, token1=token1, is_stable=is_stable)

    def is_weth_usd_pair(self, pool: PoolInfo) -> bool:
        tokens = {pool.token0.lower(), pool.token1.lower()}
        return self.weth in tokens and bool(tokens & self.usd_tokens)

    # --- RESERVES ---

    async def _read_reserves(self, pool: PoolInfo) -> Tuple[int, int]:
        words = decode_words(await self.eth_call(pool.address, GET_RESERVES))
        if len(words) < 2:
            raise DataParsingError(f"getReserves for {pool.name} returned {len(words)} words")
        return words[0], words[1]

    async def fetch_pool_reserves(self, pool: PoolInfo) -> Tuple[int, int]:
        """
        Raw (reserve0, reserve1) integers.
        A pool with an empty side raises InsufficientLiquidityError.
        """
        r0, r1 = await retry_with_backoff(
            lambda: self._read_reserves(pool), self.reserves_retry,
            f"get reserves for {pool.name}",
            retry_on=_TRANSIENT + (ContractError, DataParsingError),
            logger=self.logger,
        )
        if r0 == 0 or r1 == 0:
            raise InsufficientLiquidityError(pool.name, f"zero reserves ({r0}, {r1})")
        return r0, r1

    def normalize_reserves(self, pool: PoolInfo, r0: int, r1: int) -> Tuple[float, float]:
        """Orients raw reserves as (WETH, USD) in human units."""
        token0, token1 = pool.token0.lower(), pool.token1.lower()
        if token0 == self.weth:
            weth_raw, usd_raw, usd_token = r0, r1, token1
        elif token1 == self.weth:
            weth_raw, usd_raw, usd_token = r1, r0, token0
        else:
            raise ContractError(pool.name, "Not a WETH/USD pool")
        usd_decimals = USD_DECIMALS if usd_token in self.usd_tokens else 18
        return weth_raw / 10 ** WETH_DECIMALS, usd_raw / 10 ** usd_decimals

    # --- PRICE & DEPTH ---

    async def _compute_price(self, pool: PoolInfo) -> float:
        r0, r1 = await self._read_reserves(pool)
        if r0 == 0 or r1 == 0:
            raise InsufficientLiquidityError(pool.name, "Pool has zero reserves")
        weth, usd = self.normalize_reserves(pool, r0, r1)
        return validate_price(usd / weth, "DEX")

    async def fetch_pool_price(self, pool: PoolInfo) -> float:
        try:
            return await retry_with_backoff(
                lambda: self._compute_price(pool), self.price_retry,
                f"calculate price for {pool.name}",
                retry_on=_TRANSIENT + (BotError,),
                logger=self.logger,
            )
        except NetworkError as e:
            raise ContractError(pool.name, f"Failed to calculate pool price: {e.__cause__}") from e

    async def fetch_liquidity_depth(self, pool: PoolInfo, fair_value: float) -> LiquidityDepth:
        r0, r1 = await self.fetch_pool_reserves(pool)
        weth, usd = self.normalize_reserves(pool, r0, r1)
        return LiquidityDepth.from_reserves(weth, usd, fair_value)

    # --- STARTUP ---

    async def _validate_pool(self, name: str, address: str) -> PoolInfo:
        pool = await self.fetch_pool_identity(name, address)
        if not self.is_weth_usd_pair(pool):
            raise ContractError(name, "Not a WETH/USD pool")
        r0, r1 = await self._read_reserves(pool)
        if r0 == 0 or r1 == 0:
            raise InsufficientLiquidityError(name, "Pool has zero liquidity")
        return pool

    async def validate_pools(self, pool_configs: Optional[List[Dict[str, str]]] = None) -> List[PoolInfo]:
        """
        Confirms every configured pool is a live WETH/USD pair.
        Invalid pools are dropped; if none survive, startup cannot continue.
        """
        pool_configs = pool_configs if pool_configs is not None else self.cfg['pools']
        self.logger.info(f"🔍 Validating pools on {self.cfg['name']}...")
        valid: List[PoolInfo] = []
        failures = 0

        for entry in pool_configs:
            name, address = entry['name'], entry['address']
            try:
                pool = await retry_with_backoff(
                    lambda: self._validate_pool(name, address), RetryConfig(),
                    f"validate pool {name}",
                    retry_on=_TRANSIENT + (BotError,),
                    logger=self.logger,
                )
            except NetworkError as e:
                failures += 1
                self.logger.error(f"❌ {name} - Validation failed: {e.__cause__}")
                continue
            self.logger.info(f"✅ {name} - Valid WETH/USD pool")
            valid.append(pool)

        if not valid:
            raise ConfigError("All pools failed validation")
        self.logger.info(f"✅ Validated {len(valid)} pools (failed: {failures})")
        return valid

