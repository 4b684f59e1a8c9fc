"""
Rule-based macro regime labels.

Every weekly row of z-scored macro features is assigned to one of four
regimes by an ordered list of threshold rules; the first rule that matches
wins and a fallback cascade guarantees that every row gets a label.

Outputs: label_regime(row) -> int, label_regimes(df) -> df with "regime"

================================================================================
REGIME RULES (R = spx_ret_3w_z, V = vix_z, G = pmi_z, I = breakeven10_z)
================================================================================

    1. Stagflation  (2):  G <= 0, I >= 0.75, V >= 0
    2. Overheating  (3):  R >= 0.5, V <= -0.5, vvix_z + rv_3w_z < -0.3
    3. Slowdown     (1):  R <= -0.5, G <= 0, V >= 0
    4. Goldilocks   (0):  R >= 0.5, V <= 0, G >= 0, -0.5 <= I <= 0.75

    Fallback (in order):
       R > 0, V < 0, ip_yoy_z - unemp_z > 0     -> Goldilocks
       R < 0, V > 0                             -> Slowdown
       I > 0.5 or cpi_yoy_z > 0.75              -> Stagflation
       otherwise                                -> Overheating

Missing values (None / NaN) are read as 0 for every decision field.
================================================================================
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from regime_rotation.utils import log, log_section


# =============================================================================
# COLUMN DEFINITIONS (used throughout the project)
# =============================================================================

# 21 z-scored macro features, in the order of the source CSV
FEATURE_COLS = [
    "spx_ret_1w_z",
    "spx_ret_3w_z",
    "spx_ret_6w_z",
    "vix_z",
    "rv_3w_z",
    "vix_ts_z",
    "vvix_z",
    "hy_ret_3w_z",
    "slope_2s10s_z",
    "pmi_z",
    "pmi_chg_3w_z",
    "breakeven10_z",
    "breakeven_chg_3w_z",
    "cpi_yoy_z",
    "ip_yoy_z",
    "unemp_z",
    "aaii_spread_z",
    "cg_ratio_z",
    "oil_ret_3w_z",
    "gold_ret_3w_z",
    "capex_ret_6w_z",
]

FEATURE_GROUPS: Dict[str, List[str]] = {
    "Market Returns & Momentum": ["spx_ret_1w_z", "spx_ret_3w_z", "spx_ret_6w_z"],
    "Volatility & Risk": ["vix_z", "rv_3w_z", "vix_ts_z", "vvix_z"],
    "Credit & Rates": ["hy_ret_3w_z", "slope_2s10s_z"],
    "Growth Indicators": ["pmi_z", "pmi_chg_3w_z", "ip_yoy_z", "unemp_z"],
    "Inflation": ["breakeven10_z", "breakeven_chg_3w_z", "cpi_yoy_z"],
    "Sentiment": ["aaii_spread_z"],
    "Commodities & Cross-Asset": [
        "cg_ratio_z",
        "oil_ret_3w_z",
        "gold_ret_3w_z",
        "capex_ret_6w_z",
    ],
}

# Decision fields read by the rules
RETURNS_COL = "spx_ret_3w_z"
VOLATILITY_COL = "vix_z"
GROWTH_COL = "pmi_z"
INFLATION_COL = "breakeven10_z"

LABEL_COL = "regime"


# =============================================================================
# REGIME METADATA
# =============================================================================

GOLDILOCKS, SLOWDOWN, STAGFLATION, OVERHEATING = 0, 1, 2, 3
N_REGIMES = 4


@dataclass(frozen=True)
class RegimeInfo:
    """Display metadata for one regime."""
    regime_id: int
    name: str
    color: str
    criteria: str


REGIMES: Dict[int, RegimeInfo] = {
    GOLDILOCKS: RegimeInfo(GOLDILOCKS, "Goldilocks", "#10b981", "R≥0.5, V≤0, G≥0, -0.5≤I≤0.75"),
    SLOWDOWN: RegimeInfo(SLOWDOWN, "Slowdown", "#ef4444", "R≤-0.5, G≤0, V≥0"),
    STAGFLATION: RegimeInfo(STAGFLATION, "Stagflation", "#f59e0b", "G≤0, I≥0.75, V≥0"),
    OVERHEATING: RegimeInfo(OVERHEATING, "Overheating", "#8b5cf6", "R≥0.5, V≤-0.5, Optimism High"),
}

REGIME_NAMES = {k: v.name for k, v in REGIMES.items()}


# =============================================================================
# RULE TABLE
# =============================================================================

@dataclass(frozen=True)
class Signals:
    """The macro readings the rules look at, with missing values read as 0."""
    returns: float
    volatility: float
    growth: float
    inflation: float
    vol_stress: float
    growth_momentum: float
    cpi: float


@dataclass(frozen=True)
class LabelRule:
    """A predicate over Signals and the regime it assigns."""
    regime: int
    name: str
    predicate: Callable[[Signals], bool]


LABEL_RULES: Tuple[LabelRule, ...] = (
    LabelRule(
        STAGFLATION, "stagflation",
        lambda s: s.growth <= 0 and s.inflation >= 0.75 and s.volatility >= 0,
    ),
    LabelRule(
        OVERHEATING, "overheating",
        lambda s: s.returns >= 0.5 and s.volatility <= -0.5 and s.vol_stress < -0.3,
    ),
    LabelRule(
        SLOWDOWN, "slowdown",
        lambda s: s.returns <= -0.5 and s.growth <= 0 and s.volatility >= 0,
    ),
    LabelRule(
        GOLDILOCKS, "goldilocks",
        lambda s: (s.returns >= 0.5 and s.volatility <= 0 and s.growth >= 0
                   and -0.5 <= s.inflation <= 0.75),
    ),
)

FALLBACK_RULES: Tuple[LabelRule, ...] = (
    LabelRule(
        GOLDILOCKS, "fallback_goldilocks",
        lambda s: s.returns > 0 and s.volatility < 0 and s.growth_momentum > 0,
    ),
    LabelRule(
        SLOWDOWN, "fallback_slowdown",
        lambda s: s.returns < 0 and s.volatility > 0,
    ),
    LabelRule(
        STAGFLATION, "fallback_stagflation",
        lambda s: s.inflation > 0.5 or s.cpi > 0.75,
    ),
)

DEFAULT_REGIME = OVERHEATING


def _value(row: Mapping, key: str) -> float:
    """Read a decision field; None, NaN and absent keys count as 0."""
    v = row.get(key)
    if v is None:
        return 0.0
    try:
        v = float(v)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if np.isnan(v) else v


def extract_signals(row: Mapping) -> Signals:
    """Build the rule inputs from one feature row (dict or pd.Series)."""
    return Signals(
        returns=_value(row, RETURNS_COL),
        volatility=_value(row, VOLATILITY_COL),
        growth=_value(row, GROWTH_COL),
        inflation=_value(row, INFLATION_COL),
        vol_stress=_value(row, "vvix_z") + _value(row, "rv_3w_z"),
        growth_momentum=_value(row, "ip_yoy_z") - _value(row, "unemp_z"),
        cpi=_value(row, "cpi_yoy_z"),
    )


def matching_rule(row: Mapping) -> Optional[LabelRule]:
    """Return the first rule (primary, then fallback) matching ``row``."""
    signals = extract_signals(row)
    for rule in LABEL_RULES + FALLBACK_RULES:
        if rule.predicate(signals):
            return rule
    return None


def label_regime(row: Mapping) -> int:
    """Assign a regime id in {0, 1, 2, 3} to one feature row."""
    rule = matching_rule(row)
    return DEFAULT_REGIME if rule is None else rule.regime


# =============================================================================
# MAIN FUNCTION
# =============================================================================

def label_regimes(df: pd.DataFrame) -> pd.DataFrame:
    """
    Label every row of a macro feature frame.

    Args:
        df: Feature rows (the 21 FEATURE_COLS, nulls allowed)

    Returns:
        Copy of ``df`` with an int "regime" column
    """
    out = df.copy()
    out[LABEL_COL] = [label_regime(row) for row in df.to_dict("records")]
    out[LABEL_COL] = out[LABEL_COL].astype(int)
    return out


def regime_distribution(labels: pd.Series) -> pd.Series:
    """Share of rows per regime, always indexed 0..3."""
    if len(labels) == 0:
        return pd.Series(0.0, index=range(N_REGIMES))
    return labels.value_counts(normalize=True).reindex(range(N_REGIMES)).fillna(0.0)


def build_labels(df: pd.DataFrame) -> pd.DataFrame:
    """Label the macro frame and log the resulting regime mix."""
    log_section("REGIME LABELING (RULE-BASED)")

    labeled = label_regimes(df)
    dist = regime_distribution(labeled[LABEL_COL])

    log(f"✓ Labeled {len(labeled)} rows | rules={len(LABEL_RULES)} "
        f"| fallback={len(FALLBACK_RULES)}")
    log("Dist: " + " | ".join(f"{REGIME_NAMES[k]} {dist[k]:.1%}" for k in range(N_REGIMES)))

    return labeled
