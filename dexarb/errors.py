# dexarb/errors.py
from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """
    Closed classification used by the recovery table.
    Every BotError subclass maps to exactly one kind.
    """
    NETWORK_TIMEOUT = "network_timeout"
    INVALID_PRICE = "invalid_price"
    CONTRACT_ERROR = "contract_error"
    LOW_LIQUIDITY = "low_liquidity"
    PARSE_ERROR = "parse_error"
    CIRCUIT_BREAKER = "circuit_breaker"


class BotError(Exception):
    kind: ErrorKind


class NetworkError(BotError):
    """Transient failure, raised once retries are exhausted."""
    kind = ErrorKind.NETWORK_TIMEOUT

    def __init__(self, message: str, retry_count: int = 0):
        super().__init__(f"Network error: {message}")
        self.message = message
        self.retry_count = retry_count


class ContractError(BotError):
    kind = ErrorKind.CONTRACT_ERROR

    def __init__(self, pool: str, message: str):
        super().__init__(f"Contract interaction failed: {pool} - {message}")
        self.pool = pool
        self.message = message


class PriceValidationError(BotError):
    kind = ErrorKind.INVALID_PRICE

    def __init__(self, source: str, price: float, reason: str):
        super().__init__(f"Price validation failed: {source} price ${price} is invalid - {reason}")
        self.source = source
        self.price = price
        self.reason = reason


class InsufficientLiquidityError(BotError):
    kind = ErrorKind.LOW_LIQUIDITY

    def __init__(self, pool: str, details: str):
        super().__init__(f"Insufficient liquidity: {pool} - {details}")
        self.pool = pool
        self.details = details


class DataParsingError(BotError):
    kind = ErrorKind.PARSE_ERROR

    def __init__(self, context: str):
        super().__init__(f"Data parsing error: {context}")
        self.context = context


class CircuitBreakerOpenError(BotError):
    kind = ErrorKind.CIRCUIT_BREAKER

    def __init__(self, reason: str, cooldown_remaining: float):
        super().__init__(f"Circuit breaker active: {reason}")
        self.reason = reason
        self.cooldown_remaining = cooldown_remaining


class ConfigError(Exception):
    """Invalid or missing startup configuration."""


def classify_error(error: BaseException) -> Optional[ErrorKind]:
    """Returns the recovery classification of an error, or None for errors outside the taxonomy."""
    if isinstance(error, BotError):
        return error.kind
    return None


def validate_price(price: float, source: str) -> float:
    """
    Rejects prices outside the [$100, $100000] sanity band.
    """
    if price <= 0:
        raise PriceValidationError(source, price, "Price is zero or negative")
    if price < 100 or price > 100_000:
        raise PriceValidationError(source, price, "Price outside valid range")
    return price
