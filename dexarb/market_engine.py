# dexarb/market_engine.py
import asyncio
import logging
import time
from typing import Optional

import ccxt.async_support as ccxt

from .errors import DataParsingError, validate_price
from .resilience import RetryConfig, retry_with_backoff

REFERENCE_RETRY = RetryConfig(max_attempts=5, initial_delay=0.2)


class ReferencePriceFeed:
    """
    Centralized-exchange reference price (ETH/USDC last trade) over ccxt REST.
    Transient exchange failures are retried here; the caller only ever sees a
    band-checked price, a NetworkError or a PriceValidationError.
    """
    def __init__(self, config: dict, logger: logging.Logger,
                 client: Optional[ccxt.Exchange] = None,
                 retry_config: RetryConfig = REFERENCE_RETRY):
        self.cfg = config['reference']
        self.logger = logger
        self.retry_config = retry_config
        self.client = client
        self.last_update: Optional[float] = None

    async def initialize(self) -> bool:
        """
        Builds the public (unauthenticated) client and checks the symbol exists.
        """
        name = self.cfg['exchange']
        self.logger.info(f"📡 CONNECTING REFERENCE FEED ({name.upper()} {self.cfg['symbol']})...")
        try:
            if self.client is None:
                ex_class = getattr(ccxt, name)
                self.client = ex_class({
                    'timeout': self.cfg['timeout_ms'],
                    'enableRateLimit': True,
                    'options': {'defaultType': 'spot'}
                })
            await self.client.load_markets()
            if self.cfg['symbol'] not in self.client.markets:
                self.logger.critical(f"   ❌ {name.upper():<10} | Unknown symbol {self.cfg['symbol']}")
                return False
            self.logger.info(f"   ✅ {name.upper():<10} | Markets loaded")
            return True

        except ccxt.RequestTimeout:
            self.logger.error(f"   ❌ {name.upper():<10} | TIMEOUT: Exchange API is slow or down.")
        except ccxt.ExchangeNotAvailable:
            self.logger.error(f"   ❌ {name.upper():<10} | MAINTENANCE: Exchange is currently offline.")
        except (ccxt.BaseError, AttributeError) as e:
            self.logger.critical(f"   ❌ {name.upper():<10} | UNKNOWN ERROR: {str(e)}")
        return False

    async def _fetch_once(self) -> float:
        ticker = await self.client.fetch_ticker(self.cfg['symbol'])
        price = ticker.get('last') or ticker.get('close')
        if price is None:
            raise DataParsingError(f"{self.cfg['exchange']} ticker for {self.cfg['symbol']} has no last price")
        return float(price)

    async def fetch_reference_price(self) -> float:
        price = await retry_with_backoff(
            self._fetch_once, self.retry_config, "reference price fetch",
            retry_on=(ccxt.NetworkError, ccxt.ExchangeError, asyncio.TimeoutError),
            logger=self.logger,
        )
        validate_price(price, self.cfg['exchange'])
        self.last_update = time.time()
        return price

    async def shutdown(self):
        if self.client is not None:
            await self.client.close()
