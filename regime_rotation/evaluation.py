"""
Labeling, training and evaluation of the regime classifier.

Contains:
- Fixed calendar split (train 2005-2015, test 2016+)
- Classification metrics (overall and per regime)
- label_and_train: rule labels -> forest -> predictions -> importance

================================================================================
TRAIN / TEST SPLIT
================================================================================

The split is a fixed policy and is not read from config:

    train: TRAIN_START_YEAR <= year <= TRAIN_END_YEAR   (2005-2015)
    test:  year >= TEST_START_YEAR                      (2016+)

Rows before 2005 take part in neither partition. Accuracy is reported in
percent. The forest learns to reproduce the rule-based labels, so test
accuracy measures how well the rules generalize through the learned splits.
================================================================================
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd

from sklearn.metrics import accuracy_score, balanced_accuracy_score, confusion_matrix, f1_score

from regime_rotation.data import DATE_KEY, normalize_date
from regime_rotation.labels import FEATURE_COLS, LABEL_COL, N_REGIMES, REGIME_NAMES, build_labels
from regime_rotation.models import (
    MAX_DEPTH, MIN_SAMPLES_LEAF, MIN_SAMPLES_SPLIT, N_TREES,
    RandomForest, compute_feature_importance, predict_frame, train_random_forest,
)
from regime_rotation.utils import log, log_section, log_debug, log_df

TRAIN_START_YEAR = 2005
TRAIN_END_YEAR = 2015
TEST_START_YEAR = 2016

PROBA_COLS = [f"p{k}" for k in range(N_REGIMES)]


class InputIncompleteError(ValueError):
    """Training was requested without usable training-period rows."""


# =============================================================================
# TEMPORAL SPLIT
# =============================================================================

def split_train_test(df: pd.DataFrame) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Split rows on the calendar year of ``date_key``.

    Args:
        df: Rows with a "date_key" column

    Returns:
        (train_df, test_df)
    """
    years = pd.to_datetime(df[DATE_KEY]).dt.year
    train = df[(years >= TRAIN_START_YEAR) & (years <= TRAIN_END_YEAR)]
    test = df[years >= TEST_START_YEAR]
    return train.reset_index(drop=True), test.reset_index(drop=True)


# =============================================================================
# METRICS
# =============================================================================

def compute_metrics(y_true: np.ndarray, y_pred: np.ndarray) -> Dict[str, float]:
    """
    Overall classification metrics over the 4 regimes.

    Returns NaN for every metric when there are no rows.
    """
    if len(y_true) == 0:
        return {"accuracy": np.nan, "balanced_accuracy": np.nan, "macro_f1": np.nan}
    return {
        "accuracy": accuracy_score(y_true, y_pred),
        "balanced_accuracy": balanced_accuracy_score(y_true, y_pred),
        "macro_f1": f1_score(
            y_true, y_pred, labels=list(range(N_REGIMES)), average="macro", zero_division=0
        ),
    }


def compute_per_regime_accuracy(y_true: np.ndarray, y_pred: np.ndarray) -> pd.DataFrame:
    """
    Accuracy (%) of the rows whose actual label is each regime.

    A regime with no rows gets accuracy 0.

    Returns:
        DataFrame [regime, name, accuracy, count], one row per regime 0..3
    """
    cm = confusion_matrix(y_true, y_pred, labels=list(range(N_REGIMES)))
    rows = []
    for k in range(N_REGIMES):
        count = int(cm[k].sum())
        acc = cm[k, k] / count * 100.0 if count > 0 else 0.0
        rows.append({"regime": k, "name": REGIME_NAMES[k], "accuracy": acc, "count": count})
    return pd.DataFrame(rows, columns=["regime", "name", "accuracy", "count"])


def _prediction_frame(df: pd.DataFrame, date_col: str, proba: np.ndarray) -> pd.DataFrame:
    out = pd.DataFrame({
        "date": df[date_col].to_numpy(),
        DATE_KEY: df[DATE_KEY].to_numpy(),
        "actual": df[LABEL_COL].to_numpy(dtype=int),
        "predicted": proba.argmax(axis=1) if len(proba) else np.zeros(0, dtype=int),
    })
    for k, col in enumerate(PROBA_COLS):
        out[col] = proba[:, k]
    return out


# =============================================================================
# MAIN FUNCTION
# =============================================================================

@dataclass
class TrainingResult:
    """Everything produced by label_and_train."""
    forest: RandomForest
    train_accuracy: float                 # percent
    per_regime_accuracy: pd.DataFrame
    train_predictions: pd.DataFrame
    test_predictions: pd.DataFrame
    test_accuracy: float                  # percent, NaN without test rows
    feature_importance: pd.DataFrame
    labeled: pd.DataFrame


def label_and_train(
    rows: pd.DataFrame,
    date_col: str,
    n_trees: int = N_TREES,
    rng: Optional[np.random.Generator] = None,
    max_depth: int = MAX_DEPTH,
    min_samples_split: int = MIN_SAMPLES_SPLIT,
    min_samples_leaf: int = MIN_SAMPLES_LEAF,
) -> TrainingResult:
    """
    Label every row with the rules, then train and evaluate the forest.

    Args:
        rows: Macro feature rows (the 21 FEATURE_COLS and ``date_col``)
        date_col: Name of the date column
        n_trees: Forest size
        rng: numpy Generator for bootstrap and feature draws (None = unseeded)

    Returns:
        TrainingResult

    Raises:
        InputIncompleteError: Missing feature / date columns, or no rows in
            the training years
    """
    log_section("LABEL + TRAIN RANDOM FOREST")

    missing = [c for c in FEATURE_COLS + [date_col] if c not in rows.columns]
    if missing:
        raise InputIncompleteError(f"Missing required columns: {missing}")

    labeled = build_labels(rows)
    if DATE_KEY not in labeled.columns:
        labeled[DATE_KEY] = [normalize_date(v) for v in labeled[date_col]]
    labeled = labeled[labeled[DATE_KEY].notna()].reset_index(drop=True)

    train, test = split_train_test(labeled)
    log(f"  Train: {len(train)} rows ({TRAIN_START_YEAR}-{TRAIN_END_YEAR}) | "
        f"Test: {len(test)} rows ({TEST_START_YEAR}+)")
    if len(train) == 0:
        raise InputIncompleteError(
            f"No training data in {TRAIN_START_YEAR}-{TRAIN_END_YEAR} range"
        )

    forest = train_random_forest(
        train[FEATURE_COLS],
        train[LABEL_COL],
        FEATURE_COLS,
        n_trees=n_trees,
        rng=rng,
        max_depth=max_depth,
        min_samples_split=min_samples_split,
        min_samples_leaf=min_samples_leaf,
    )

    train_preds = _prediction_frame(train, date_col, predict_frame(forest, train[FEATURE_COLS]))
    test_preds = _prediction_frame(test, date_col, predict_frame(forest, test[FEATURE_COLS]))

    train_metrics = compute_metrics(train_preds["actual"], train_preds["predicted"])
    test_metrics = compute_metrics(test_preds["actual"], test_preds["predicted"])
    train_acc = train_metrics["accuracy"] * 100.0
    test_acc = test_metrics["accuracy"] * 100.0

    per_regime = compute_per_regime_accuracy(train_preds["actual"], train_preds["predicted"])
    importance = compute_feature_importance(forest, FEATURE_COLS)

    log(f"✓ Train accuracy: {train_acc:.1f}% | macro-F1={train_metrics['macro_f1']:.3f}")
    if len(test):
        log(f"✓ Test accuracy:  {test_acc:.1f}% | macro-F1={test_metrics['macro_f1']:.3f}")
    else:
        log("  ⚠️  No test rows (2016+)")
    log("Per regime: " + " | ".join(
        f"{r.name} {r.accuracy:.1f}% (n={r.count})" for r in per_regime.itertuples()
    ))
    log_debug("Top features:")
    log_df(importance, level=2)

    return TrainingResult(
        forest=forest,
        train_accuracy=train_acc,
        per_regime_accuracy=per_regime,
        train_predictions=train_preds,
        test_predictions=test_preds,
        test_accuracy=test_acc,
        feature_importance=importance,
        labeled=labeled,
    )


def regime_series(labeled: pd.DataFrame) -> pd.Series:
    """Regime id per date_key, the input of the backtest."""
    s = labeled.set_index(DATE_KEY)[LABEL_COL].astype(int)
    return s[~s.index.duplicated(keep="last")]
