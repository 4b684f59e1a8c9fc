"""
Configuration management.

Loads config/config.yaml and provides typed, immutable Config dataclasses.
The train/test year split and the regime-to-sector table are fixed policy and
live next to the code that uses them, not here.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pandas as pd
import yaml

# =============================================================================
# DATACLASSES
# =============================================================================

@dataclass(frozen=True)
class Paths:
    """Input files and output directory."""
    macro_csv: str
    sector_csv: Optional[str] = None
    stock_csv: Optional[str] = None
    results_dir: str = "results"


@dataclass(frozen=True)
class RunConfig:
    """Runtime configuration."""
    seed: int = 42
    seeded: bool = True          # False = fresh entropy on every run
    save_tables: bool = True
    save_model: bool = True


@dataclass(frozen=True)
class ProjectConfig:
    """Project metadata."""
    name: str
    version: str = "v1.0-weekly"


@dataclass(frozen=True)
class ForestConfig:
    """Random forest parameters."""
    n_trees: int = 100
    max_depth: int = 12
    min_samples_split: int = 15  # nodes smaller than this become leaves
    min_samples_leaf: int = 5    # each side of a split needs at least this many rows

    # Output control
    verbose: int = 1             # 0=silent, 1=summary, 2=debug
    table_rows: int = 5


@dataclass(frozen=True)
class BacktestConfig:
    """Long/short rotation backtest parameters."""
    cutoff: str = "2015-01-01"
    initial_capital: float = 1_000_000.0
    top_n: int = 5               # names per sector on each book
    periods_per_year: int = 52


@dataclass(frozen=True)
class Config:
    """Master configuration object combining all sections."""
    project: ProjectConfig
    paths: Paths
    run: RunConfig
    forest: ForestConfig
    backtest: BacktestConfig


# =============================================================================
# YAML LOADER
# =============================================================================

def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config.yaml

    Returns:
        Populated Config object

    Raises:
        FileNotFoundError: If config file doesn't exist
        KeyError: If required keys are missing
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as f:
        d = yaml.safe_load(f) or {}

    project_data = d.get("project", {})
    paths_data = d.get("paths", {})
    run_data = d.get("run", {})
    forest_data = d.get("forest", {})
    backtest_data = d.get("backtest", {})

    return Config(
        project=ProjectConfig(
            name=project_data.get("name", "Macro Regime Sector Rotation"),
            version=project_data.get("version", "v1.0-weekly"),
        ),
        paths=Paths(
            macro_csv=paths_data["macro_csv"],
            sector_csv=paths_data.get("sector_csv"),
            stock_csv=paths_data.get("stock_csv"),
            results_dir=paths_data.get("results_dir", "results"),
        ),
        run=RunConfig(
            seed=int(run_data.get("seed", 42)),
            seeded=bool(run_data.get("seeded", True)),
            save_tables=bool(run_data.get("save_tables", True)),
            save_model=bool(run_data.get("save_model", True)),
        ),
        forest=ForestConfig(
            n_trees=int(forest_data.get("n_trees", 100)),
            max_depth=int(forest_data.get("max_depth", 12)),
            min_samples_split=int(forest_data.get("min_samples_split", 15)),
            min_samples_leaf=int(forest_data.get("min_samples_leaf", 5)),
            verbose=int(forest_data.get("verbose", 1)),
            table_rows=int(forest_data.get("table_rows", 5)),
        ),
        backtest=BacktestConfig(
            cutoff=str(backtest_data.get("cutoff", "2015-01-01")),
            initial_capital=float(backtest_data.get("initial_capital", 1_000_000.0)),
            top_n=int(backtest_data.get("top_n", 5)),
            periods_per_year=int(backtest_data.get("periods_per_year", 52)),
        ),
    )


# =============================================================================
# VALIDATION
# =============================================================================

def validate_config(cfg: Config) -> None:
    """
    Validate configuration values.

    Raises:
        AssertionError: If validation fails
    """
    assert cfg.forest.n_trees >= 1, "n_trees must be >= 1"
    assert cfg.forest.max_depth >= 1, "max_depth must be >= 1"
    assert cfg.forest.min_samples_leaf >= 1, "min_samples_leaf must be >= 1"
    assert cfg.forest.min_samples_split >= 2 * cfg.forest.min_samples_leaf, \
        "min_samples_split must allow two leaves of min_samples_leaf rows"

    assert cfg.forest.verbose in [0, 1, 2], "verbose must be 0, 1, or 2"

    assert cfg.backtest.top_n >= 1, "top_n must be >= 1"
    assert cfg.backtest.initial_capital > 0, "initial_capital must be positive"
    assert cfg.backtest.periods_per_year > 0, "periods_per_year must be positive"
    assert not pd.isna(pd.to_datetime(cfg.backtest.cutoff, errors="coerce")), \
        f"cutoff is not a valid date: {cfg.backtest.cutoff!r}"

    # Backtest needs both return tables or neither
    assert (cfg.paths.sector_csv is None) == (cfg.paths.stock_csv is None), \
        "sector_csv and stock_csv must be given together"
