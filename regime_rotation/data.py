"""
CSV loading and date normalization.

Reads the three input tables of the pipeline:
- weekly macro feature file (21 z-scored features + a date column)
- weekly sector ETF returns (one column per sector ticker)
- weekly stock constituent returns (long format)

Every table gets a canonical ``date_key`` ("YYYY-MM-DD") used to join them.
Outputs: macro_df + MacroStats, sector_df (indexed by date_key), stock_df
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from regime_rotation.labels import FEATURE_COLS
from regime_rotation.portfolio import SECTOR_TICKERS
from regime_rotation.utils import log, log_section, log_debug

DATE_KEY = "date_key"

# Exact (case-insensitive) header names accepted when no header contains "date"
ALT_DATE_HEADERS = ("month", "time", "yyyymm")

STOCK_REQUIRED_COLS = ("date", "stock_ticker")
STOCK_COLS = ["date", "stock_ticker", "sector_etf", "ret"]


# =============================================================================
# DATE HELPERS
# =============================================================================

def normalize_date(value) -> Optional[str]:
    """
    Canonical "YYYY-MM-DD" form of a date-like value, or None if unparseable.

    Six-digit values are read as YYYYMM (first day of the month).
    """
    if value is None:
        return None
    if isinstance(value, float) and np.isnan(value):
        return None

    text = str(value).strip()
    if not text:
        return None
    if text.endswith(".0") and text[:-2].isdigit():
        text = text[:-2]

    fmt = "%Y%m" if (len(text) == 6 and text.isdigit()) else None
    ts = pd.to_datetime(text, format=fmt, errors="coerce")
    if pd.isna(ts):
        return None
    return ts.strftime("%Y-%m-%d")


def detect_date_column(columns: Iterable[str]) -> Optional[str]:
    """First header containing "date", else one named month/time/yyyymm."""
    columns = list(columns)
    for col in columns:
        if "date" in str(col).lower():
            return col
    for col in columns:
        if str(col).lower() in ALT_DATE_HEADERS:
            return col
    return None


def _read_csv(path: Path) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    df = pd.read_csv(path, skipinitialspace=True)
    df.columns = [str(c).strip() for c in df.columns]
    return df


# =============================================================================
# MACRO FEATURES
# =============================================================================

@dataclass(frozen=True)
class MacroStats:
    """Diagnostics of a loaded macro feature file."""
    total_rows: int
    date_column: Optional[str]
    date_range: str
    available_features: List[str]
    missing_features: List[str]


def load_macro_features(path: Path) -> Tuple[pd.DataFrame, MacroStats]:
    """
    Load the weekly macro feature file.

    Feature columns are coerced to numeric (blank or text cells -> NaN) and rows
    whose date cannot be parsed are dropped.

    Args:
        path: CSV with a date column and the 21 FEATURE_COLS

    Returns:
        (df with an added "date_key" column, MacroStats)

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If there is no date column or features are missing
    """
    log_section("LOADING MACRO FEATURES")
    raw = _read_csv(path)

    date_col = detect_date_column(raw.columns)
    available = [f for f in FEATURE_COLS if f in raw.columns]
    missing = [f for f in FEATURE_COLS if f not in raw.columns]

    date_range = "N/A"
    if date_col is not None and len(raw) > 0:
        parsed = pd.to_datetime(raw[date_col].astype(str), errors="coerce")
        if parsed.notna().any():
            ordered = raw.loc[parsed.sort_values(kind="stable").dropna().index, date_col]
            date_range = f"{ordered.iloc[0]} to {ordered.iloc[-1]}"

    stats = MacroStats(
        total_rows=len(raw),
        date_column=date_col,
        date_range=date_range,
        available_features=available,
        missing_features=missing,
    )

    if date_col is None:
        raise ValueError(f"No date column found in {path.name}: {list(raw.columns)}")
    if missing:
        raise ValueError(f"Missing {len(missing)} features in {path.name}: {missing}")

    df = raw.copy()
    for col in FEATURE_COLS:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    df[DATE_KEY] = [normalize_date(v) for v in df[date_col]]

    n_bad = int(df[DATE_KEY].isna().sum())
    df = df[df[DATE_KEY].notna()].reset_index(drop=True)

    log(f"✓ Macro: {len(df)} rows | date column '{date_col}' | {date_range}")
    log(f"  Features: {len(available)}/{len(FEATURE_COLS)} available")
    if n_bad:
        log(f"  ⚠️  Dropped {n_bad} rows with unparseable dates")
    log_debug(f"  Columns: {list(raw.columns)}")

    return df, stats


# =============================================================================
# SECTOR RETURNS
# =============================================================================

def _sector_date_column(columns: List[str]) -> str:
    for col in columns:
        if col.lower() == "date":
            return col
    for col in columns:
        if "date" in col.lower():
            return col
    return columns[0]


def load_sector_returns(path: Path) -> pd.DataFrame:
    """
    Load weekly sector ETF returns.

    Returns:
        DataFrame indexed by date_key, one float column per SECTOR_TICKERS entry
        found in the file (non-numeric cells -> NaN)
    """
    log_section("LOADING SECTOR RETURNS")
    raw = _read_csv(path)
    if raw.shape[1] == 0:
        raise ValueError(f"Sector file has no columns: {path.name}")

    date_col = _sector_date_column(list(raw.columns))
    tickers = [t for t in SECTOR_TICKERS if t in raw.columns]

    df = pd.DataFrame({t: pd.to_numeric(raw[t], errors="coerce") for t in tickers})
    df[DATE_KEY] = [normalize_date(v) for v in raw[date_col]]
    df = df[df[DATE_KEY].notna()].set_index(DATE_KEY)

    log(f"✓ Sectors: {len(df)} weeks | {len(tickers)}/{len(SECTOR_TICKERS)} tickers "
        f"| date column '{date_col}'")
    return df


# =============================================================================
# STOCK RETURNS
# =============================================================================

def load_stock_returns(path: Path) -> pd.DataFrame:
    """
    Load weekly stock constituent returns (long format).

    Rows with an unparseable date or a missing/non-numeric ``ret`` are dropped.

    Returns:
        DataFrame [date_key, date, stock_ticker, sector_etf, ret]

    Raises:
        ValueError: If the "date" or "stock_ticker" column is absent
    """
    log_section("LOADING STOCK RETURNS")
    raw = _read_csv(path)

    absent = [c for c in STOCK_REQUIRED_COLS if c not in raw.columns]
    if absent:
        raise ValueError(
            f"Stock file must have at least: {', '.join(STOCK_COLS)} columns "
            f"(missing {absent})"
        )

    df = raw.reindex(columns=STOCK_COLS).copy()
    df["ret"] = pd.to_numeric(df["ret"], errors="coerce")
    df.insert(0, DATE_KEY, [normalize_date(v) for v in df["date"]])

    n_raw = len(df)
    df = df[df[DATE_KEY].notna() & df["ret"].notna()].reset_index(drop=True)

    log(f"✓ Stocks: {len(df)} rows | {df['stock_ticker'].nunique()} tickers "
        f"| {df[DATE_KEY].nunique()} weeks")
    if n_raw > len(df):
        log_debug(f"  Dropped {n_raw - len(df)} rows without a date or return")
    return df
