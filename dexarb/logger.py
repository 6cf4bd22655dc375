# dexarb/logger.py
import asyncio
import dataclasses
import json
import logging
import os
import sys
from datetime import datetime, timedelta, timezone
from enum import Enum
from logging.handlers import TimedRotatingFileHandler
from typing import Any, Dict, List, Optional, Tuple

import aiofiles
from aiocsv import AsyncWriter

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(module)s | %(message)s'

# record kind -> (sub directory, file prefix)
RECORD_PATHS: Dict[str, Tuple[str, str]] = {
    'opportunity': ('opportunities', 'arbitrage'),
    'signal': ('market_making', 'signals'),
    'execution': ('executions', 'trades'),
}

TRADE_LOG_HEADER = ['timestamp', 'execution_id', 'opportunity_id', 'network', 'direction',
                    'status', 'tx_hash', 'expected_profit_usd', 'actual_profit_usd',
                    'slippage_bps', 'execution_time_ms', 'error']


def setup_console_logger(name: str, level: str, log_dir: Optional[str] = None):
    """
    Sets up the standard Python logger for console output, plus an hourly
    rotating file under `log_dir` when one is given.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        formatter = logging.Formatter(LOG_FORMAT)
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = TimedRotatingFileHandler(
                os.path.join(log_dir, 'arbitrage_monitor.log'), when='H', backupCount=48)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger


def to_record(value: Any) -> Any:
    """Flattens dataclasses, enums and datetimes into JSON-ready values."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_record(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, dict):
        return {k: to_record(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_record(v) for v in value]
    return value


class AsyncRecordSink:
    """
    Fire-and-forget JSON Lines persistence.
    Producers only enqueue; a background worker owns all disk I/O, one file
    per record kind per UTC day. A failed write is logged and counted, never raised.
    """
    def __init__(self, directory: str, logger: Optional[logging.Logger] = None):
        self.directory = directory
        self.logger = logger or logging.getLogger(__name__)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None
        self.written = 0
        self.failures = 0

    def path_for(self, kind: str, when: Optional[datetime] = None) -> str:
        sub_dir, prefix = RECORD_PATHS[kind]
        day = (when or datetime.now(timezone.utc)).strftime('%Y-%m-%d')
        return os.path.join(self.directory, sub_dir, f"{prefix}_{day}.jsonl")

    async def start(self):
        for sub_dir, _ in RECORD_PATHS.values():
            os.makedirs(os.path.join(self.directory, sub_dir), exist_ok=True)
        self._worker_task = asyncio.create_task(self._writer_worker())

    def persist(self, kind: str, record: Any):
        """Non-blocking: queues the record and returns immediately."""
        if kind not in RECORD_PATHS:
            raise ValueError(f"Unknown record kind: {kind}")
        self._queue.put_nowait((kind, record))

    async def _writer_worker(self):
        while True:
            kind, record = await self._queue.get()
            try:
                line = json.dumps(to_record(record))
                async with aiofiles.open(self.path_for(kind), mode='a') as f:
                    await f.write(line + "\n")
                self.written += 1
            except (OSError, TypeError, ValueError) as e:
                self.failures += 1
                self.logger.error(f"❌ Failed to persist {kind} record: {e}")
            finally:
                self._queue.task_done()

    async def stop(self):
        """Drains whatever is queued, then stops the worker."""
        if self._worker_task is None:
            return
        await self._queue.join()
        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        self._worker_task = None


class AsyncAuditLogger:
    """
    CSV audit trail of trade executions.
    Decouples disk I/O from the monitoring loop using an asyncio Queue.
    """
    def __init__(self, filepath: str, logger: Optional[logging.Logger] = None):
        self.filepath = filepath
        self.logger = logger or logging.getLogger(__name__)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None

    async def start(self):
        """
        Creates the file with a header row if missing and starts the background writer.
        """
        directory = os.path.dirname(self.filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)

        if not os.path.exists(self.filepath):
            async with aiofiles.open(self.filepath, mode='w', newline='') as f:
                writer = AsyncWriter(f, dialect='unix')
                await writer.writerow(TRADE_LOG_HEADER)
        self._worker_task = asyncio.create_task(self._writer_worker())

    async def log_trade(self, data: List[Any]):
        await self._queue.put(data)

    async def _writer_worker(self):
        while True:
            row = await self._queue.get()
            try:
                async with aiofiles.open(self.filepath, mode='a', newline='') as f:
                    writer = AsyncWriter(f, dialect='unix')
                    await writer.writerow(row)
            except OSError as e:
                self.logger.error(f"LOGGING FAILURE: {e}")
            finally:
                self._queue.task_done()

    async def stop(self):
        if self._worker_task is None:
            return
        await self._queue.join()
        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        self._worker_task = None


def execution_row(execution) -> List[Any]:
    """One CSV row of TRADE_LOG_HEADER for a TradeExecution."""
    actual = execution.actual_profit_usd
    return [
        execution.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
        execution.id,
        execution.opportunity_id,
        execution.network,
        execution.trade_type.name,
        execution.status.value,
        execution.tx_hash or '',
        f"{execution.expected_profit_usd:.4f}",
        f"{actual:.4f}" if actual is not None else '',
        execution.slippage_bps if execution.slippage_bps is not None else '',
        execution.execution_time_ms,
        execution.error_message or '',
    ]
