"""
Tests for record serialisation and the async JSONL / CSV writers.
"""

import json
import os
from datetime import datetime, timezone

import pytest

from dexarb.arbitrage import ArbitrageDetector
from dexarb.logger import (TRADE_LOG_HEADER, AsyncAuditLogger, AsyncRecordSink,
                           execution_row, setup_console_logger, to_record)
from dexarb.models import ExecutionStatus, TradeDirection, TradeExecution


def _execution(status=ExecutionStatus.SIMULATED):
    return TradeExecution(
        id="exec-1",
        opportunity_id="opp-1",
        timestamp=datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc),
        network="Base Sepolia",
        trade_type=TradeDirection.BUY_DEX_SELL_REFERENCE,
        status=status,
        tx_hash="0xdead",
        gas_used=156_000,
        gas_price_gwei=0.12,
        execution_time_ms=104,
        expected_profit_usd=0.98,
        actual_profit_usd=0.9775,
        slippage_bps=25,
    )


class TestToRecord:
    """Tests for to_record."""

    def test_flattens_opportunity(self):
        opp = ArbitrageDetector().detect("WETH/USDC", 3010.0, 3000.0, 0.1)
        record = to_record(opp)

        assert record['direction'] == "Buy on DEX -> Sell on reference"
        assert record['validation_checks']['all_passed'] is False
        assert record['timestamp'].endswith("+00:00")
        json.dumps(record)

    def test_execution_row(self):
        row = execution_row(_execution())

        assert len(row) == len(TRADE_LOG_HEADER)
        assert row[0] == "2024-05-01 12:30:00"
        assert row[4] == "BUY_DEX_SELL_REFERENCE"
        assert row[5] == "SIMULATED"
        assert row[7] == "0.9800"
        assert row[11] == ""


class TestAsyncRecordSink:
    """Tests for AsyncRecordSink."""

    def test_daily_path(self, tmp_path):
        sink = AsyncRecordSink(str(tmp_path))
        when = datetime(2024, 5, 1, tzinfo=timezone.utc)

        assert sink.path_for('signal', when) == os.path.join(
            str(tmp_path), 'market_making', 'signals_2024-05-01.jsonl')

    @pytest.mark.asyncio
    async def test_writes_json_lines(self, tmp_path):
        sink = AsyncRecordSink(str(tmp_path))
        await sink.start()

        sink.persist('execution', _execution())
        sink.persist('execution', _execution(ExecutionStatus.FAILED))
        await sink.stop()

        with open(sink.path_for('execution')) as f:
            lines = [json.loads(line) for line in f]
        assert [line['status'] for line in lines] == ["SIMULATED", "FAILED"]
        assert sink.written == 2
        assert sink.failures == 0

    def test_unknown_kind_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            AsyncRecordSink(str(tmp_path)).persist('quote', {})

    @pytest.mark.asyncio
    async def test_unserialisable_record_counted(self, tmp_path):
        sink = AsyncRecordSink(str(tmp_path))
        await sink.start()

        sink.persist('signal', {'bad': object()})
        await sink.stop()

        assert sink.failures == 1
        assert sink.written == 0


class TestAsyncAuditLogger:
    """Tests for the CSV trade audit."""

    @pytest.mark.asyncio
    async def test_header_then_rows(self, tmp_path):
        path = tmp_path / "executions" / "trade_audit.csv"
        audit = AsyncAuditLogger(str(path))
        await audit.start()
        await audit.log_trade(execution_row(_execution()))
        await audit.stop()

        lines = path.read_text().splitlines()
        assert lines[0].replace('"', '') == ",".join(TRADE_LOG_HEADER)
        assert "exec-1" in lines[1]
        assert len(lines) == 2


def test_console_logger_file_handler(tmp_path):
    logger = setup_console_logger("dexarb-file-test", "DEBUG", log_dir=str(tmp_path))

    assert len(logger.handlers) == 2
    assert os.path.exists(tmp_path / "arbitrage_monitor.log")
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)
