# dexarb/volatility.py
import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

from .models import VolatilityMetrics

SHORT_WINDOW_SECS = 300     # 5 min
MEDIUM_WINDOW_SECS = 1800   # 30 min
LONG_WINDOW_SECS = 3600     # 1 hour
MIN_SAMPLES = 10


@dataclass(frozen=True, slots=True)
class PriceSample:
    timestamp: float
    price: float


class VolatilityWindow:
    """
    Time-bounded series of price samples for a single lookback.
    Samples are kept in timestamp order and evicted from the front once
    they fall out of the lookback.
    """
    def __init__(self, lookback_seconds: float):
        self.lookback_seconds = lookback_seconds
        self._samples: Deque[PriceSample] = deque()

    def __len__(self) -> int:
        return len(self._samples)

    def add(self, sample: PriceSample):
        self._samples.append(sample)
        self.evict(sample.timestamp)

    def evict(self, now: float):
        while self._samples and now - self._samples[0].timestamp > self.lookback_seconds:
            self._samples.popleft()

    def std_dev(self) -> Optional[float]:
        if len(self._samples) < MIN_SAMPLES:
            return None
        prices = [s.price for s in self._samples]
        mean = sum(prices) / len(prices)
        variance = sum((p - mean) ** 2 for p in prices) / len(prices)
        return math.sqrt(variance)

    def volatility_pct(self) -> Optional[float]:
        std = self.std_dev()
        if std is None:
            return None
        mean = sum(s.price for s in self._samples) / len(self._samples)
        if mean <= 0:
            return None
        return std / mean * 100


class VolatilityTracker:
    """
    Tracks reference-price volatility over 5m / 30m / 1h windows.
    Writers and readers may live on different tasks, so every public
    operation holds the lock for its full duration.
    """
    def __init__(self, logger: Optional[logging.Logger] = None,
                 clock: Callable[[], float] = time.time):
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, VolatilityWindow] = {
            'short': VolatilityWindow(SHORT_WINDOW_SECS),
            'medium': VolatilityWindow(MEDIUM_WINDOW_SECS),
            'long': VolatilityWindow(LONG_WINDOW_SECS),
        }
        self._last_timestamp: Optional[float] = None

    def add_price(self, price: float, timestamp: Optional[float] = None):
        if price is None or not math.isfinite(price) or price <= 0:
            self.logger.debug(f"Ignoring unusable price sample: {price}")
            return

        now = self.clock()
        ts = now if timestamp is None else timestamp
        if ts > now:
            self.logger.warning(f"⚠️ Dropping future-dated price sample ({ts - now:.1f}s ahead)")
            return

        with self._lock:
            # windows stay ordered oldest-first
            if self._last_timestamp is not None and ts < self._last_timestamp:
                self.logger.warning(
                    f"⚠️ Dropping out-of-order price sample ({self._last_timestamp - ts:.1f}s late)")
                return
            self._last_timestamp = ts
            sample = PriceSample(ts, price)
            for window in self._windows.values():
                window.add(sample)

    def volatility_percentages(self) -> Dict[str, Optional[float]]:
        with self._lock:
            return {name: w.volatility_pct() for name, w in self._windows.items()}

    def sample_counts(self) -> Dict[str, int]:
        with self._lock:
            return {name: len(w) for name, w in self._windows.items()}

    def metrics(self) -> VolatilityMetrics:
        levels = self.volatility_percentages()
        return VolatilityMetrics.from_levels(levels['short'], levels['medium'], levels['long'])
