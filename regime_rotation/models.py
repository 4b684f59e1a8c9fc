"""
Random forest built from first principles.

Contains:
- Gini impurity over the 4 regime classes
- Recursive decision tree training (random feature subset per node,
  quartile cut points, minimum leaf size)
- Bootstrap-aggregated forest training
- Tree / forest prediction with per-node fallback for missing values
- Depth-weighted split-count feature importance
- Model persistence

Outputs: RandomForest, probability vectors, feature importance table
"""
from __future__ import annotations

import math
import pickle
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from regime_rotation.labels import N_REGIMES
from regime_rotation.utils import log, log_debug

# =============================================================================
# TREE PARAMETERS
# =============================================================================

MAX_DEPTH = 12
MIN_SAMPLES_SPLIT = 15
MIN_SAMPLES_LEAF = 5
N_TREES = 100

# Candidate cut points: index-based percentiles of the sorted non-null values
SPLIT_QUANTILES = (0.25, 0.5, 0.75)


# =============================================================================
# TREE STRUCTURE
# =============================================================================

@dataclass(frozen=True)
class LeafNode:
    """Terminal node holding a predicted class."""
    prediction: int


@dataclass(frozen=True)
class InternalNode:
    """
    Binary split on one feature.

    ``left`` receives value <= threshold, ``right`` value > threshold.
    ``fallback`` is the majority class of the rows the node was built from and
    is returned when a sample has no usable value for ``feature``.
    """
    feature: str
    threshold: float
    fallback: int
    left: "DecisionNode"
    right: "DecisionNode"


DecisionNode = Union[LeafNode, InternalNode]


@dataclass
class RandomForest:
    """Ordered collection of independently trained trees."""
    trees: List[DecisionNode] = field(default_factory=list)
    feature_names: List[str] = field(default_factory=list)

    @property
    def n_trees(self) -> int:
        return len(self.trees)


# =============================================================================
# IMPURITY
# =============================================================================

def class_counts(y: np.ndarray) -> np.ndarray:
    """Counts per class, always of length 4."""
    return np.bincount(np.asarray(y, dtype=int), minlength=N_REGIMES)[:N_REGIMES]


def majority_class(y: np.ndarray) -> int:
    """Most frequent class; ties go to the lowest class id."""
    return int(np.argmax(class_counts(y)))


def gini_impurity(y: np.ndarray) -> float:
    """
    Gini impurity 1 - sum(share^2) over the 4 classes.

    An empty label set has impurity 1; split search never scores empty sides.
    """
    n = len(y)
    if n == 0:
        return 1.0
    shares = class_counts(y) / n
    return float(1.0 - np.sum(shares ** 2))


# =============================================================================
# TREE TRAINING
# =============================================================================

def n_split_features(n_features: int) -> int:
    """Size of the random feature subset evaluated at each node."""
    return max(1, math.ceil(math.sqrt(n_features)))


def _best_split(
    X: np.ndarray,
    y: np.ndarray,
    candidates: np.ndarray,
    min_samples_leaf: int,
) -> Optional[tuple]:
    """
    Search quartile cut points over the candidate features.

    Returns (feature_index, threshold) of the lowest weighted impurity, keeping
    the first one found on ties, or None when every split is rejected.
    """
    n = len(y)
    best = None
    best_score = math.inf

    for j in candidates:
        col = X[:, j]
        present = ~np.isnan(col)
        values = np.sort(col[present])
        if len(values) == 0:
            continue

        for q in SPLIT_QUANTILES:
            threshold = values[int(math.floor(len(values) * q))]
            left = present & (col <= threshold)
            right = present & (col > threshold)
            n_left, n_right = int(left.sum()), int(right.sum())
            if n_left < min_samples_leaf or n_right < min_samples_leaf:
                continue

            score = (n_left / n) * gini_impurity(y[left]) + \
                    (n_right / n) * gini_impurity(y[right])
            if score < best_score:
                best_score = score
                best = (int(j), float(threshold))

    return best


def train_decision_tree(
    X: np.ndarray,
    y: np.ndarray,
    feature_names: Sequence[str],
    rng: np.random.Generator,
    depth: int = 0,
    max_depth: int = MAX_DEPTH,
    min_samples_split: int = MIN_SAMPLES_SPLIT,
    min_samples_leaf: int = MIN_SAMPLES_LEAF,
) -> DecisionNode:
    """
    Grow one tree by recursive impurity-minimizing partitioning.

    Args:
        X: Feature matrix (n_rows, n_features), NaN for missing values
        y: Class labels in {0, 1, 2, 3}
        feature_names: Column names of X
        rng: Source of the per-node feature subsets
        depth: Depth of the node being built (root = 0)
        max_depth: Nodes at this depth become leaves
        min_samples_split: Nodes with fewer rows become leaves
        min_samples_leaf: Minimum rows on each side of a split

    Returns:
        Root node of the (sub)tree
    """
    if depth >= max_depth or len(y) < min_samples_split:
        return LeafNode(majority_class(y))

    n_features = X.shape[1]
    candidates = rng.choice(n_features, size=n_split_features(n_features), replace=False)

    split = _best_split(X, y, candidates, min_samples_leaf)
    if split is None:
        return LeafNode(majority_class(y))

    j, threshold = split
    col = X[:, j]
    present = ~np.isnan(col)
    left = present & (col <= threshold)
    right = present & (col > threshold)
    if not left.any() or not right.any():
        return LeafNode(majority_class(y))

    kwargs = dict(
        rng=rng,
        depth=depth + 1,
        max_depth=max_depth,
        min_samples_split=min_samples_split,
        min_samples_leaf=min_samples_leaf,
    )
    return InternalNode(
        feature=feature_names[j],
        threshold=threshold,
        fallback=majority_class(y),
        left=train_decision_tree(X[left], y[left], feature_names, **kwargs),
        right=train_decision_tree(X[right], y[right], feature_names, **kwargs),
    )


# =============================================================================
# FOREST TRAINING
# =============================================================================

def _as_matrix(X: Union[pd.DataFrame, np.ndarray], feature_names: Sequence[str]) -> np.ndarray:
    """Float matrix with NaN for missing or non-numeric cells."""
    if isinstance(X, pd.DataFrame):
        X = X[list(feature_names)].apply(pd.to_numeric, errors="coerce")
    return np.asarray(X, dtype=float)


def train_random_forest(
    X: Union[pd.DataFrame, np.ndarray],
    y: Union[pd.Series, np.ndarray],
    feature_names: Sequence[str],
    n_trees: int = N_TREES,
    rng: Optional[np.random.Generator] = None,
    max_depth: int = MAX_DEPTH,
    min_samples_split: int = MIN_SAMPLES_SPLIT,
    min_samples_leaf: int = MIN_SAMPLES_LEAF,
) -> RandomForest:
    """
    Train ``n_trees`` trees, each on its own bootstrap resample.

    Each resample draws len(X) rows with replacement. No pruning and no
    out-of-bag scoring.

    Args:
        X: Training rows (DataFrame with feature_names columns, or matrix)
        y: Class labels in {0, 1, 2, 3}
        feature_names: Features available to the splits
        n_trees: Ensemble size
        rng: numpy Generator; None trains unseeded

    Returns:
        RandomForest
    """
    if rng is None:
        rng = np.random.default_rng()

    X = _as_matrix(X, feature_names)
    y = np.asarray(y, dtype=int)
    n = len(y)

    trees = []
    for t in range(n_trees):
        idx = rng.integers(0, n, size=n)
        trees.append(train_decision_tree(
            X[idx], y[idx], list(feature_names), rng,
            max_depth=max_depth,
            min_samples_split=min_samples_split,
            min_samples_leaf=min_samples_leaf,
        ))
        log_debug(f"  tree {t + 1}/{n_trees}: depth={tree_depth(trees[-1])} "
                  f"leaves={count_leaves(trees[-1])}")

    log(f"✓ Forest trained: {n_trees} trees | {n} rows | {len(feature_names)} features")
    return RandomForest(trees=trees, feature_names=list(feature_names))


def tree_depth(node: DecisionNode) -> int:
    if isinstance(node, LeafNode):
        return 0
    return 1 + max(tree_depth(node.left), tree_depth(node.right))


def count_leaves(node: DecisionNode) -> int:
    if isinstance(node, LeafNode):
        return 1
    return count_leaves(node.left) + count_leaves(node.right)


# =============================================================================
# PREDICTION
# =============================================================================

def _numeric(value) -> Optional[float]:
    """Float value of a cell, or None when missing or non-numeric."""
    if value is None or isinstance(value, (bool, np.bool_)):
        return None
    if not isinstance(value, (int, float, np.integer, np.floating)):
        return None
    value = float(value)
    return None if math.isnan(value) else value


def predict_tree(node: DecisionNode, sample: Mapping) -> int:
    """Route one sample (dict or pd.Series) to a leaf and return its class."""
    while isinstance(node, InternalNode):
        value = _numeric(sample.get(node.feature))
        if value is None:
            return node.fallback
        node = node.left if value <= node.threshold else node.right
    return node.prediction


def predict_forest(forest: RandomForest, sample: Mapping) -> np.ndarray:
    """Share of tree votes per class, a length-4 vector summing to 1."""
    votes = np.zeros(N_REGIMES)
    for tree in forest.trees:
        votes[predict_tree(tree, sample)] += 1
    return votes / len(forest.trees)


def predict_frame(forest: RandomForest, df: pd.DataFrame) -> np.ndarray:
    """
    Class probability matrix (n_rows, 4) for every row of ``df``.

    Feature cells are coerced to numbers the same way as in training, so
    numeric text routes like the number and unparseable text takes the fallback.
    """
    if len(df) == 0:
        return np.zeros((0, N_REGIMES))
    cols = [f for f in forest.feature_names if f in df.columns]
    df = df.assign(**{f: pd.to_numeric(df[f], errors="coerce") for f in cols})
    return np.vstack([predict_forest(forest, row) for row in df.to_dict("records")])


# =============================================================================
# FEATURE IMPORTANCE
# =============================================================================

def _accumulate_importance(node: DecisionNode, scores: dict, depth: int = 0) -> None:
    if isinstance(node, LeafNode):
        return
    scores[node.feature] = scores.get(node.feature, 0.0) + 1.0 / (depth + 1)
    _accumulate_importance(node.left, scores, depth + 1)
    _accumulate_importance(node.right, scores, depth + 1)


def compute_feature_importance(
    forest: RandomForest,
    feature_names: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Depth-weighted split counts, as percentages summing to 100.

    Every internal node adds 1/(depth+1) to its split feature. A forest of
    leaves only gives 0 for every feature.

    Returns:
        DataFrame [feature, importance], every feature once, sorted descending
    """
    names = list(feature_names if feature_names is not None else forest.feature_names)
    scores = {f: 0.0 for f in names}
    for tree in forest.trees:
        _accumulate_importance(tree, scores)

    total = sum(scores.values()) or 1.0
    rows = [{"feature": f, "importance": scores[f] / total * 100.0} for f in names]
    rows = sorted(rows, key=lambda r: -r["importance"])
    return pd.DataFrame(rows, columns=["feature", "importance"])


# =============================================================================
# MODEL PERSISTENCE
# =============================================================================

def save_model(model: RandomForest, path: Path, model_name: str) -> Path:
    """Save model to disk."""
    path.mkdir(parents=True, exist_ok=True)
    filepath = path / f"{model_name}.pkl"
    with open(filepath, "wb") as f:
        pickle.dump(model, f)
    log_debug(f"  Saved: {filepath}")
    return filepath


def load_model(path: Path, model_name: str) -> RandomForest:
    """Load model from disk."""
    filepath = path / f"{model_name}.pkl"
    with open(filepath, "rb") as f:
        return pickle.load(f)
