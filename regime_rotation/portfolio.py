"""
Long/short sector rotation backtest and performance statistics.

Contains:
- Regime-to-sector mapping (long / short sector books per regime)
- Weekly simulation with a 1-week ranking lag
- Performance metrics (total return, CAGR, vol, Sharpe, MaxDD, win rate)
- Calendar-year returns
- Trade export helpers

Each week the portfolio holds 50% gross long and 50% gross short, equally
weighted across the selected stocks of each side.

Outputs: BacktestResult (equity_curve, yearly_returns, trades_by_date, metrics)
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Tuple

import numpy as np
import pandas as pd

from regime_rotation.labels import (
    GOLDILOCKS, SLOWDOWN, STAGFLATION, OVERHEATING, REGIME_NAMES,
)
from regime_rotation.utils import log, log_section, log_debug


class NoOverlappingDatesError(ValueError):
    """Fewer than 2 dates are shared by the regime, sector and stock tables."""


class NoTradableWeeksError(NoOverlappingDatesError):
    """Shared dates exist but none of them falls on or after the cutoff."""


# =============================================================================
# SECTOR MAPPING
# =============================================================================

SECTOR_TICKERS = [
    "IYR US Equity",
    "IYZ US Equity",
    "XLB US Equity",
    "XLE US Equity",
    "XLF US Equity",
    "XLI US Equity",
    "XLK US Equity",
    "XLP US Equity",
    "XLU US Equity",
    "XLV US Equity",
    "XLY US Equity",
]


@dataclass(frozen=True)
class SectorBook:
    """Sectors bought and sold while a regime is active."""
    long: Tuple[str, ...]
    short: Tuple[str, ...]


def _us(*tickers: str) -> Tuple[str, ...]:
    return tuple(f"{t} US Equity" for t in tickers)


REGIME_SECTOR_CONFIG: Mapping[int, SectorBook] = MappingProxyType({
    GOLDILOCKS: SectorBook(long=_us("XLY", "XLK", "XLF"), short=_us("XLU", "XLP")),
    SLOWDOWN: SectorBook(long=_us("XLP", "XLU", "XLV"), short=_us("XLY", "XLF", "XLI")),
    STAGFLATION: SectorBook(long=_us("XLE", "XLB"), short=_us("XLF", "XLK", "XLY")),
    OVERHEATING: SectorBook(long=_us("XLF", "XLI", "XLV"), short=_us("XLU", "XLP")),
})

GROSS_LONG = 0.5
GROSS_SHORT = 0.5


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class Position:
    """One stock held for one week. Short weights are negative."""
    ticker: str
    sector_etf: str
    stock_return: float
    weight: float
    pnl: float


@dataclass
class TradeRecord:
    """Books held during one simulated week."""
    date: str
    regime: int
    weekly_return: float
    longs: List[Position] = field(default_factory=list)
    shorts: List[Position] = field(default_factory=list)


@dataclass
class PerformanceMetrics:
    """Portfolio performance metrics."""
    start_date: str
    end_date: str
    final_value: float
    total_return: float
    cagr: float
    volatility: float          # annualized
    sharpe_ratio: float
    max_drawdown: float        # <= 0
    win_rate: float
    weekly_mean: float
    n_periods: int


@dataclass
class BacktestResult:
    equity_curve: pd.DataFrame
    yearly_returns: pd.DataFrame
    trades_by_date: Dict[str, TradeRecord]
    metrics: PerformanceMetrics
    trade_dates: List[str]


# =============================================================================
# STOCK SELECTION
# =============================================================================

def _is_finite(value) -> bool:
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def select_stocks(
    rank_rows: List[dict],
    sector: str,
    top_n: int,
    best: bool,
) -> List[dict]:
    """
    Pick ``top_n`` stocks of ``sector`` by their ranking-week return.

    best=True takes the highest returns (long side), best=False the lowest
    (short side). Equal returns keep their input order.
    """
    eligible = [r for r in rank_rows if r["sector_etf"] == sector and _is_finite(r["ret"])]
    ordered = sorted(eligible, key=lambda r: -r["ret"] if best else r["ret"])
    return ordered[:top_n]


def _candidates(
    sectors: Tuple[str, ...],
    rank_rows: List[dict],
    trade_returns: Dict[str, float],
    top_n: int,
    best: bool,
) -> List[Tuple[str, str, float]]:
    out = []
    for sector in sectors:
        for row in select_stocks(rank_rows, sector, top_n, best):
            r_trade = trade_returns.get(row["stock_ticker"])
            if r_trade is not None and _is_finite(r_trade):
                out.append((row["stock_ticker"], sector, float(r_trade)))
    return out


def build_positions(
    long_candidates: List[Tuple[str, str, float]],
    short_candidates: List[Tuple[str, str, float]],
) -> Tuple[List[Position], List[Position]]:
    """Equal-weight each side to 50% gross; an empty side is not reallocated."""
    longs, shorts = [], []
    if long_candidates:
        w = GROSS_LONG / len(long_candidates)
        longs = [Position(t, s, r, w, w * r) for t, s, r in long_candidates]
    if short_candidates:
        w = -GROSS_SHORT / len(short_candidates)
        shorts = [Position(t, s, r, w, w * r) for t, s, r in short_candidates]
    return longs, shorts


# =============================================================================
# BACKTEST
# =============================================================================

def _stock_tables(stock_returns: pd.DataFrame) -> Tuple[Dict[str, List[dict]], Dict[str, Dict[str, float]]]:
    """Rows per date (ranking input) and ticker -> finite return per date."""
    rows_by_date: Dict[str, List[dict]] = {}
    rets_by_date: Dict[str, Dict[str, float]] = {}
    for rec in stock_returns[["date_key", "stock_ticker", "sector_etf", "ret"]].to_dict("records"):
        key = rec["date_key"]
        if key is None or (isinstance(key, float) and np.isnan(key)):
            continue
        rows_by_date.setdefault(key, []).append(rec)
        rets = rets_by_date.setdefault(key, {})
        if rec["stock_ticker"] is not None and _is_finite(rec["ret"]):
            rets[rec["stock_ticker"]] = float(rec["ret"])
    return rows_by_date, rets_by_date


def run_backtest(
    regime_series: pd.Series,
    sector_returns: pd.DataFrame,
    stock_returns: pd.DataFrame,
    sector_config: Mapping[int, SectorBook] = REGIME_SECTOR_CONFIG,
    top_n: int = 5,
    cutoff: str = "2015-01-01",
    initial_capital: float = 1_000_000.0,
    periods_per_year: int = 52,
) -> BacktestResult:
    """
    Simulate the weekly long/short rotation.

    Stocks are ranked on the previous shared date and held over the trade date
    (1-week lag). The first shared date is only used for ranking.

    Args:
        regime_series: Regime id per date_key
        sector_returns: Frame indexed by date_key
        stock_returns: Frame [date_key, stock_ticker, sector_etf, ret]
        sector_config: Regime id -> SectorBook
        top_n: Stocks per sector on each side
        cutoff: First tradable date
        initial_capital: Starting equity

    Returns:
        BacktestResult

    Raises:
        NoOverlappingDatesError: Fewer than 2 shared dates
        NoTradableWeeksError: No shared date on/after the cutoff
    """
    log_section("LONG/SHORT SECTOR ROTATION BACKTEST")

    regime_by_date = {
        k: int(v) for k, v in regime_series.items()
        if isinstance(k, str) and _is_finite(v)
    }
    sector_dates = set(sector_returns.index)
    rows_by_date, rets_by_date = _stock_tables(stock_returns)

    dates = sorted(d for d in regime_by_date if d in sector_dates and d in rows_by_date)
    if len(dates) < 2:
        raise NoOverlappingDatesError(
            f"Not enough overlapping dates between the 3 tables ({len(dates)} shared)"
        )
    log(f"  Shared dates: {len(dates)} ({dates[0]} to {dates[-1]})")

    cutoff_ts = pd.Timestamp(cutoff)
    equity = initial_capital
    curve = []
    trades: Dict[str, TradeRecord] = {}

    for i in range(1, len(dates)):
        trade_date = dates[i]
        if pd.Timestamp(trade_date) < cutoff_ts:
            continue

        rank_date = dates[i - 1]
        regime = regime_by_date[trade_date]
        book = sector_config.get(regime)
        if book is None:
            log_debug(f"  {trade_date}: no sector book for regime {regime}, flat week")
            curve.append({"date": trade_date, "equity": equity, "ret": 0.0})
            trades[trade_date] = TradeRecord(trade_date, regime, 0.0)
            continue

        rank_rows = rows_by_date.get(rank_date, [])
        trade_rets = rets_by_date.get(trade_date, {})
        long_c = _candidates(book.long, rank_rows, trade_rets, top_n, best=True)
        short_c = _candidates(book.short, rank_rows, trade_rets, top_n, best=False)

        longs, shorts = build_positions(long_c, short_c)
        weekly_ret = float(sum(p.pnl for p in longs) + sum(p.pnl for p in shorts))

        equity *= 1 + weekly_ret
        curve.append({"date": trade_date, "equity": equity, "ret": weekly_ret})
        trades[trade_date] = TradeRecord(trade_date, regime, weekly_ret, longs, shorts)

    if not curve:
        raise NoTradableWeeksError(f"No valid weeks on or after the {cutoff} cutoff")

    equity_curve = pd.DataFrame(curve, columns=["date", "equity", "ret"])
    yearly = compute_yearly_returns(equity_curve)
    metrics = compute_performance_metrics(equity_curve, initial_capital, periods_per_year)

    log(f"✓ Backtest: {metrics.n_periods} weeks | {metrics.start_date} to {metrics.end_date}")
    log(f"  Final value={metrics.final_value:,.0f} | CAGR={metrics.cagr:.2%} "
        f"| Sharpe={metrics.sharpe_ratio:.2f} | MaxDD={metrics.max_drawdown:.2%}")

    return BacktestResult(
        equity_curve=equity_curve,
        yearly_returns=yearly,
        trades_by_date=trades,
        metrics=metrics,
        trade_dates=sorted(trades),
    )


# =============================================================================
# PERFORMANCE METRICS
# =============================================================================

def compute_performance_metrics(
    equity_curve: pd.DataFrame,
    initial_capital: float,
    periods_per_year: int = 52,
) -> PerformanceMetrics:
    """
    Summary statistics of a weekly equity curve.

    Sharpe is CAGR divided by annualized volatility (not mean excess return),
    and is 0 when volatility is 0. CAGR (and so Sharpe) is NaN once equity
    falls to or below zero.

    Args:
        equity_curve: Frame [date, equity, ret], one row per week
        initial_capital: Equity before the first week
        periods_per_year: 52 for weekly

    Returns:
        PerformanceMetrics
    """
    returns = equity_curve["ret"].to_numpy(dtype=float)
    equity = equity_curve["equity"].to_numpy(dtype=float)
    n = len(returns)

    final_value = float(equity[-1]) if n else initial_capital
    total_return = final_value / initial_capital - 1
    if n == 0:
        cagr = 0.0
    elif 1 + total_return <= 0:
        # Wiped-out equity has no real growth rate
        cagr = float("nan")
    else:
        cagr = (1 + total_return) ** (periods_per_year / n) - 1

    mean = float(returns.sum() / (n or 1))
    variance = float(((returns - mean) ** 2).sum() / (n - 1 if n > 1 else 1))
    vol_annual = math.sqrt(variance) * math.sqrt(periods_per_year)
    sharpe = cagr / vol_annual if vol_annual else 0.0

    peak = initial_capital
    max_dd = 0.0
    for value in equity:
        peak = max(peak, value)
        max_dd = min(max_dd, (value - peak) / peak)

    return PerformanceMetrics(
        start_date=str(equity_curve["date"].iloc[0]) if n else "",
        end_date=str(equity_curve["date"].iloc[-1]) if n else "",
        final_value=final_value,
        total_return=total_return,
        cagr=cagr,
        volatility=vol_annual,
        sharpe_ratio=sharpe,
        max_drawdown=max_dd,
        win_rate=float((returns > 0).sum() / (n or 1)),
        weekly_mean=mean,
        n_periods=n,
    )


def compute_yearly_returns(equity_curve: pd.DataFrame) -> pd.DataFrame:
    """Compounded weekly returns per calendar year of the trade date."""
    if len(equity_curve) == 0:
        return pd.DataFrame(columns=["year", "ret"])
    years = pd.to_datetime(equity_curve["date"]).dt.year
    growth = (1 + equity_curve["ret"]).groupby(years).prod()
    return pd.DataFrame({"year": growth.index.astype(int), "ret": growth.to_numpy() - 1})


def metrics_to_dict(metrics: PerformanceMetrics) -> Dict[str, float]:
    """Convert PerformanceMetrics to dictionary."""
    return {
        "start_date": metrics.start_date,
        "end_date": metrics.end_date,
        "final_value": metrics.final_value,
        "total_return": metrics.total_return,
        "cagr": metrics.cagr,
        "volatility": metrics.volatility,
        "sharpe_ratio": metrics.sharpe_ratio,
        "max_drawdown": metrics.max_drawdown,
        "win_rate": metrics.win_rate,
        "weekly_mean": metrics.weekly_mean,
        "n_periods": metrics.n_periods,
    }


# =============================================================================
# EXPORT HELPERS
# =============================================================================

def trades_to_frame(trades_by_date: Mapping[str, TradeRecord]) -> pd.DataFrame:
    """One row per position held, long and short, across all weeks."""
    rows = []
    for date in sorted(trades_by_date):
        rec = trades_by_date[date]
        for side, positions in (("long", rec.longs), ("short", rec.shorts)):
            for p in positions:
                rows.append({
                    "date": rec.date,
                    "regime": rec.regime,
                    "regime_name": REGIME_NAMES.get(rec.regime, str(rec.regime)),
                    "side": side,
                    "ticker": p.ticker,
                    "sector_etf": p.sector_etf,
                    "stock_return": p.stock_return,
                    "weight": p.weight,
                    "pnl": p.pnl,
                    "weekly_return": rec.weekly_return,
                })
    columns = ["date", "regime", "regime_name", "side", "ticker", "sector_etf",
               "stock_return", "weight", "pnl", "weekly_return"]
    return pd.DataFrame(rows, columns=columns)


def analyze_regime_performance(result: BacktestResult) -> pd.DataFrame:
    """Average weekly return and hit rate per regime over the simulated weeks."""
    rows = []
    for rec in result.trades_by_date.values():
        rows.append({"regime": rec.regime, "ret": rec.weekly_return})
    df = pd.DataFrame(rows, columns=["regime", "ret"])

    out = []
    for regime, g in df.groupby("regime"):
        out.append({
            "regime": int(regime),
            "regime_name": REGIME_NAMES.get(int(regime), str(regime)),
            "n_weeks": len(g),
            "avg_weekly_return": g["ret"].mean(),
            "win_rate": (g["ret"] > 0).mean(),
        })
    return pd.DataFrame(out, columns=["regime", "regime_name", "n_weeks",
                                      "avg_weekly_return", "win_rate"])
