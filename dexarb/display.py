# dexarb/display.py
from typing import Dict, Optional

from rich.console import Console, Group
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table

from .health import SessionStats
from .models import (ArbitrageOpportunity, ExecutionPriority, MarketMakingSignal,
                     TradeExecution, VolatilityImpact)
from .resilience import CircuitBreakerState

_PRIORITY_STYLE = {
    ExecutionPriority.IMMEDIATE: "bold red",
    ExecutionPriority.HIGH: "yellow",
    ExecutionPriority.MEDIUM: "cyan",
    ExecutionPriority.LOW: "dim",
    ExecutionPriority.HOLD: "magenta",
}
_IMPACT_STYLE = {
    VolatilityImpact.LOW: "green",
    VolatilityImpact.MODERATE: "yellow",
    VolatilityImpact.HIGH: "red",
    VolatilityImpact.EXTREME: "bold red",
}


def _kv_table(title: Optional[str] = None) -> Table:
    table = Table(title=title, show_header=False, box=None, pad_edge=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")
    return table


def signal_panel(signal: MarketMakingSignal) -> Panel:
    vm = signal.volatility_metrics
    inv = signal.inventory_analysis
    risk = signal.risk_metrics

    quote = _kv_table("📈 Quote")
    quote.add_row("Fair value", f"${signal.fair_value_price:,.4f}")
    quote.add_row("Pool price", f"${signal.current_pool_price:,.4f}")
    quote.add_row("Bid / Ask", f"${signal.target_bid_price:,.4f} / ${signal.target_ask_price:,.4f}")
    quote.add_row("Spread", f"{signal.effective_spread_bps} bps")
    quote.add_row("Size", f"{signal.position_size_eth:.4f} ETH")

    vol = _kv_table("🌊 Volatility")
    vol.add_row("5m / 30m / 1h", f"{vm.short_vol:.2f}% / {vm.medium_vol:.2f}% / {vm.long_vol:.2f}%")
    vol.add_row("Trend", vm.volatility_trend.value)
    vol.add_row("Impact", f"[{_IMPACT_STYLE[vm.impact_assessment]}]{vm.impact_assessment.value}[/]")
    vol.add_row("Urgency", vm.recommended_adjustments.execution_urgency.value)

    book = _kv_table("💰 Inventory & Risk")
    book.add_row("WETH ratio", f"{inv.weth_ratio * 100:.1f}% (target {inv.target_weth_ratio * 100:.1f}%)")
    book.add_row("Imbalance", inv.imbalance_severity.value)
    book.add_row("VaR 1d", f"${risk.value_at_risk_1d:,.2f}")
    book.add_row("Risk score", f"{risk.overall_risk_score:.1f}")

    priority = signal.execution_priority
    header = (f"[bold]{signal.strategy.strategy_type.value}[/bold] | "
              f"risk {signal.strategy.risk_level.value} | "
              f"priority [{_PRIORITY_STYLE[priority]}]{priority.value}[/]")

    grid = Table.grid(expand=True)
    grid.add_row(quote, vol, book)
    return Panel(Group(header, grid, f"[dim]{signal.rationale}[/dim]"),
                 title=f"🤖 MARKET MAKING SIGNAL | {signal.pool}")


def opportunity_panel(opp: ArbitrageOpportunity, number: int) -> Panel:
    table = _kv_table()
    table.add_row("Strategy", opp.direction.value)
    table.add_row("DEX price", f"${opp.dex_price:,.4f}")
    table.add_row("Reference price", f"${opp.reference_price:,.4f}")
    table.add_row("Divergence", f"{opp.price_diff_pct:.3f}%")
    table.add_row("Net profit", f"[green]${opp.net_profit_usd:,.2f}[/green]")
    table.add_row("ROI", f"{opp.roi_pct:.3f}%")
    if opp.volatility_assessment is not None:
        vm = opp.volatility_assessment
        table.add_row("Volatility", f"{vm.short_vol:.2f}% ({vm.impact_assessment.value})")
    if opp.validation_checks.all_passed:
        table.add_row("Checks", "[green]✅ All validation checks passed[/green]")
    return Panel(table, title=f"🎯 ARBITRAGE OPPORTUNITY #{number} [VALIDATED] | {opp.pool}",
                 border_style="yellow")


def execution_panel(execution: TradeExecution) -> Panel:
    table = _kv_table()
    table.add_row("Status", execution.status.value)
    table.add_row("Network", execution.network)
    table.add_row("Direction", execution.trade_type.value)
    table.add_row("Tx", execution.tx_hash or "-")
    table.add_row("Expected profit", f"${execution.expected_profit_usd:,.4f}")
    if execution.actual_profit_usd is not None:
        table.add_row("Actual profit", f"${execution.actual_profit_usd:,.4f}")
    if execution.slippage_bps is not None:
        table.add_row("Slippage", f"{execution.slippage_bps} bps")
    table.add_row("Time", f"{execution.execution_time_ms} ms")
    if execution.error_message:
        table.add_row("Error", f"[red]{execution.error_message}[/red]")
    style = "green" if execution.succeeded else "red"
    return Panel(table, title=f"⚡ TRADE EXECUTION | {execution.id[:8]}", border_style=style)


def session_stats_layout(stats: SessionStats, breaker: CircuitBreakerState) -> Layout:
    arb = Table(title="🎯 Arbitrage")
    arb.add_column("Metric", style="cyan")
    arb.add_column("Value", justify="right", style="green")
    arb.add_row("Opportunities", str(stats.total_opportunities))
    arb.add_row("Validated", f"{stats.profitable_opportunities} ({stats.success_rate:.1f}%)")
    arb.add_row("Potential profit", f"${stats.total_potential_profit:,.2f}")
    arb.add_row("Executions", f"{stats.successful_executions}/{stats.total_executions} "
                              f"({stats.execution_success_rate:.1f}%)")

    mm = Table(title="🤖 Market Making")
    mm.add_column("Metric", style="cyan")
    mm.add_column("Value", justify="right", style="green")
    mm.add_row("Signals", str(stats.total_signals))
    mm.add_row("Signals / min", f"{stats.signals_per_minute:.1f}")

    errors = Table(title="🛟 Errors")
    errors.add_column("Source", style="magenta")
    errors.add_column("Count", justify="right")
    for key, count in sorted(stats.error_counts.items()):
        errors.add_row(key, str(count))

    layout = Layout()
    layout.split_column(Layout(name="top"), Layout(name="bottom"))
    layout["top"].split_row(Layout(Panel(arb)), Layout(Panel(mm)), Layout(Panel(errors)))

    breaker_text = ("[bold red]OPEN[/bold red]" if breaker.is_open
                    else f"[green]closed[/green] ({breaker.consecutive_errors} consecutive errors)")
    footer = Panel(f"[bold]Runtime {stats.runtime_seconds / 60:.1f} min | Circuit breaker {breaker_text}[/bold]",
                   style="white on blue")
    layout["bottom"].update(footer)
    layout["bottom"].size = 3
    return layout


class Display:
    """Renders monitor events to the terminal."""
    def __init__(self, console: Optional[Console] = None, enabled: bool = True):
        self.console = console or Console()
        self.enabled = enabled

    def signal(self, signal: MarketMakingSignal):
        if self.enabled:
            self.console.print(signal_panel(signal))

    def opportunity(self, opp: ArbitrageOpportunity, number: int):
        if self.enabled:
            self.console.print(opportunity_panel(opp, number))

    def execution(self, execution: TradeExecution):
        if self.enabled:
            self.console.print(execution_panel(execution))

    def session_stats(self, stats: SessionStats, breaker: CircuitBreakerState):
        if self.enabled:
            self.console.print(session_stats_layout(stats, breaker), height=14)

    def final_stats(self, stats: SessionStats, error_counts: Dict[str, int]):
        if not self.enabled:
            return
        table = _kv_table("🛑 Final statistics")
        table.add_row("Total runtime", f"{stats.runtime_seconds:.0f}s")
        table.add_row("Arbitrage opportunities found", str(stats.total_opportunities))
        table.add_row("Profitable arbitrage opportunities", str(stats.profitable_opportunities))
        table.add_row("Total potential arbitrage profit", f"${stats.total_potential_profit:,.2f}")
        table.add_row("Market making signals generated", str(stats.total_signals))
        table.add_row("Trade executions simulated", str(stats.total_executions))
        table.add_row("Successful executions", str(stats.successful_executions))
        table.add_row("Recovered errors", str(error_counts or "-"))
        self.console.print(Panel(table))
