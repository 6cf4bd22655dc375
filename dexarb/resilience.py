# dexarb/resilience.py
import asyncio
import logging
import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar

from .errors import ErrorKind, NetworkError, classify_error

T = TypeVar("T")

_module_logger = logging.getLogger(__name__)


# --- CIRCUIT BREAKER ---

@dataclass(frozen=True, slots=True)
class CircuitBreakerState:
    consecutive_errors: int
    is_open: bool
    opened_at: Optional[float]
    cooldown_seconds: float


class CircuitBreaker:
    """
    Trips after N consecutive errors and blocks all work until the cooldown
    has elapsed. The next can_proceed() after the cooldown closes it again
    and clears the error count; a reported success closes it at once.
    """
    def __init__(self, max_consecutive_errors: int = 5, cooldown_seconds: float = 300,
                 logger: Optional[logging.Logger] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.max_consecutive_errors = max_consecutive_errors
        self.cooldown_seconds = cooldown_seconds
        self.logger = logger or _module_logger
        self.clock = clock
        self._lock = threading.Lock()
        self._consecutive_errors = 0
        self._is_open = False
        self._opened_at: Optional[float] = None

    @classmethod
    def from_config(cls, config: dict, logger: Optional[logging.Logger] = None,
                    clock: Callable[[], float] = time.monotonic) -> "CircuitBreaker":
        cfg = config['circuit_breaker']
        return cls(cfg['max_consecutive_errors'], cfg['cooldown_seconds'], logger, clock)

    def record_success(self):
        with self._lock:
            self._consecutive_errors = 0
            if self._is_open:
                self._is_open = False
                self._opened_at = None
                self.logger.info("✅ Circuit breaker closed after a successful call")

    def record_error(self) -> bool:
        """Counts a failure. Returns True only on the call that trips the breaker."""
        with self._lock:
            self._consecutive_errors += 1
            if not self._is_open and self._consecutive_errors >= self.max_consecutive_errors:
                self._is_open = True
                self._opened_at = self.clock()
                self.logger.critical(
                    f"⛔ CIRCUIT BREAKER OPEN: {self._consecutive_errors} consecutive errors "
                    f"(cooldown {self.cooldown_seconds:.0f}s)")
                return True
            return False

    def can_proceed(self) -> bool:
        with self._lock:
            if not self._is_open:
                return True
            if self.clock() - self._opened_at >= self.cooldown_seconds:
                self._is_open = False
                self._opened_at = None
                self._consecutive_errors = 0
                self.logger.info("✅ Circuit breaker closed after cooldown")
                return True
            return False

    def cooldown_remaining(self) -> float:
        with self._lock:
            if not self._is_open:
                return 0.0
            return max(0.0, self.cooldown_seconds - (self.clock() - self._opened_at))

    def snapshot(self) -> CircuitBreakerState:
        with self._lock:
            return CircuitBreakerState(self._consecutive_errors, self._is_open,
                                       self._opened_at, self.cooldown_seconds)


# --- RETRY ---

@dataclass(frozen=True, slots=True)
class RetryConfig:
    max_attempts: int = 3
    initial_delay: float = 0.1    # seconds
    max_delay: float = 5.0
    exponential_base: float = 2.0
    jitter: bool = True           # +/-5% on every delay after the first


def next_delay(delay: float, config: RetryConfig, rng: Optional[random.Random] = None) -> float:
    """Grows a backoff delay by one step: cap first, then jitter."""
    delay = min(delay * config.exponential_base, config.max_delay)
    if config.jitter:
        jitter = delay * 0.05
        delay += (rng or random).uniform(-jitter, jitter)
    return max(0.0, delay)


async def retry_with_backoff(operation: Callable[[], Awaitable[T]], config: RetryConfig,
                             context: str,
                             retry_on: Tuple[Type[BaseException], ...] = (Exception,),
                             logger: Optional[logging.Logger] = None,
                             sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> T:
    """
    Runs `operation` until it succeeds or `config.max_attempts` attempts have failed.

    The first retry waits `initial_delay`; each later one multiplies the delay by
    `exponential_base`, capped at `max_delay`. Exceptions outside `retry_on`
    propagate on the spot. Exhaustion raises NetworkError chained to the last failure.
    """
    log = logger or _module_logger
    delay = config.initial_delay
    last_error: Optional[BaseException] = None

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = await operation()
            if attempt > 1:
                log.info(f"✅ {context} succeeded on attempt {attempt}")
            return result
        except retry_on as e:
            last_error = e
            if attempt == config.max_attempts:
                break
            log.warning(f"⚠️ {context} failed (attempt {attempt}/{config.max_attempts}), "
                        f"retrying in {delay * 1000:.0f}ms: {e}")
            await sleep(delay)
            delay = next_delay(delay, config)

    log.error(f"❌ {context} failed after {config.max_attempts} attempts: {last_error}")
    raise NetworkError(f"{context}: {last_error}", retry_count=config.max_attempts) from last_error


# --- ERROR RECOVERY ---

class RecoveryType(Enum):
    RETRY = "RETRY"
    FALLBACK = "FALLBACK"
    SKIP = "SKIP"
    SHUTDOWN = "SHUTDOWN"
    ESCALATE = "ESCALATE"


@dataclass(frozen=True, slots=True)
class RecoveryStrategy:
    """One row of the recovery table."""
    type: RecoveryType
    max_attempts: int = 0
    delay: float = 0.0
    source: Optional[str] = None
    log_level: int = logging.WARNING
    reason: Optional[str] = None

    @classmethod
    def retry(cls, max_attempts: int, delay: float) -> "RecoveryStrategy":
        return cls(RecoveryType.RETRY, max_attempts=max_attempts, delay=delay)

    @classmethod
    def fallback(cls, source: str) -> "RecoveryStrategy":
        return cls(RecoveryType.FALLBACK, source=source)

    @classmethod
    def skip(cls, log_level: int = logging.WARNING) -> "RecoveryStrategy":
        return cls(RecoveryType.SKIP, log_level=log_level)

    @classmethod
    def shutdown(cls, reason: str) -> "RecoveryStrategy":
        return cls(RecoveryType.SHUTDOWN, reason=reason)


@dataclass(frozen=True, slots=True)
class RecoveryAction:
    """What the caller should do about one failure."""
    type: RecoveryType
    delay: float = 0.0
    source: Optional[str] = None
    reason: Optional[str] = None

    def __str__(self) -> str:
        if self.type == RecoveryType.RETRY:
            return f"Retry({self.delay * 1000:.0f}ms)"
        if self.type == RecoveryType.FALLBACK:
            return f"Fallback({self.source})"
        if self.type == RecoveryType.SHUTDOWN:
            return f"Shutdown({self.reason})"
        return self.type.value.capitalize()


ESCALATE = RecoveryAction(RecoveryType.ESCALATE)


def default_recovery_table() -> Dict[ErrorKind, RecoveryStrategy]:
    return {
        ErrorKind.NETWORK_TIMEOUT: RecoveryStrategy.retry(max_attempts=5, delay=1.0),
        ErrorKind.INVALID_PRICE: RecoveryStrategy.skip(logging.WARNING),
        ErrorKind.CONTRACT_ERROR: RecoveryStrategy.fallback("backup_pool"),
    }


class ErrorRecovery:
    """
    Maps a classified failure onto a recovery action.
    Occurrence counters only ever grow, so a retry budget, once spent,
    stays spent for the life of the process.
    """
    def __init__(self, table: Optional[Dict[ErrorKind, RecoveryStrategy]] = None,
                 logger: Optional[logging.Logger] = None):
        self.table = table if table is not None else default_recovery_table()
        self.logger = logger or _module_logger
        self._lock = threading.Lock()
        self._counts: Dict[ErrorKind, int] = {}

    def handle_error(self, error: BaseException, context: str) -> RecoveryAction:
        kind = classify_error(error)
        label = kind.value if kind else type(error).__name__

        with self._lock:
            if kind is not None:
                self._counts[kind] = self._counts.get(kind, 0) + 1
                count = self._counts[kind]
            else:
                count = None

        strategy = self.table.get(kind) if kind is not None else None
        if strategy is None:
            action = ESCALATE
            level = logging.ERROR
        elif strategy.type == RecoveryType.RETRY:
            if count <= strategy.max_attempts:
                action = RecoveryAction(RecoveryType.RETRY, delay=strategy.delay)
                level = logging.WARNING
            else:
                action = ESCALATE
                level = logging.ERROR
        elif strategy.type == RecoveryType.FALLBACK:
            action = RecoveryAction(RecoveryType.FALLBACK, source=strategy.source)
            level = logging.WARNING
        elif strategy.type == RecoveryType.SKIP:
            action = RecoveryAction(RecoveryType.SKIP)
            level = strategy.log_level
        else:
            action = RecoveryAction(RecoveryType.SHUTDOWN, reason=strategy.reason)
            level = logging.CRITICAL

        seen = f" (#{count})" if count is not None else ""
        self.logger.log(level, f"🛟 Recovery [{context}] {label}{seen} -> {action}: {error}")
        return action

    def error_counts(self) -> Dict[str, int]:
        with self._lock:
            return {kind.value: n for kind, n in self._counts.items()}
