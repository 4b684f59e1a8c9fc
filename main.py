#!/usr/bin/env python3
"""
Macro Regime Sector Rotation - Main Pipeline
============================================
Labels weekly macro data with rule-based regimes, trains a random forest to
reproduce them, and backtests a long/short sector rotation driven by the
regime of each week.

Usage:
    python main.py
    python main.py --config config/config.yaml
"""
from __future__ import annotations

# =============================================================================
# IMPORTS
# =============================================================================

# Standard library
import argparse
import sys
from datetime import datetime
from pathlib import Path

# Third-party
import pandas as pd

# Project modules
from regime_rotation.config import load_config, validate_config
from regime_rotation.utils import (
    set_seeds, make_rng, set_verbose, set_logfile, get_project_root,
    create_run_folder, copy_config_to_run, log, log_section,
    log_environment_versions,
)
from regime_rotation.data import load_macro_features, load_sector_returns, load_stock_returns
from regime_rotation.models import save_model
from regime_rotation.evaluation import InputIncompleteError, label_and_train, regime_series
from regime_rotation.portfolio import (
    NoOverlappingDatesError, analyze_regime_performance, metrics_to_dict,
    run_backtest, trades_to_frame,
)


# =============================================================================
# SETUP
# =============================================================================

def setup(config_path: Path = None):
    """Load config and set up the run environment."""
    project_root = get_project_root()

    if config_path is None:
        config_path = project_root / "config" / "config.yaml"

    cfg = load_config(config_path)
    validate_config(cfg)

    set_verbose(cfg.forest.verbose, cfg.forest.table_rows)
    if cfg.run.seeded:
        set_seeds(cfg.run.seed)

    results_dirs = create_run_folder(project_root / cfg.paths.results_dir)
    set_logfile(results_dirs["logs"] / "run.log")

    log_section(f"{cfg.project.name.upper()} ({cfg.project.version}): SETUP")
    copy_config_to_run(config_path, results_dirs["run_dir"])
    log_environment_versions(save_csv=results_dirs["tables"] / "environment_versions.csv")

    log(f"✓ Config loaded | Seed={cfg.run.seed} (seeded={cfg.run.seeded}) "
        f"| Trees={cfg.forest.n_trees} | Depth={cfg.forest.max_depth}")

    return cfg, project_root, results_dirs


def _resolve(project_root: Path, path: str) -> Path:
    p = Path(path)
    return p if p.is_absolute() else project_root / p


def _save_table(df: pd.DataFrame, tables_dir: Path, name: str) -> None:
    df.to_csv(tables_dir / f"{name}.csv", index=False)


# =============================================================================
# MAIN PIPELINE
# =============================================================================

def run_pipeline(config_path: Path = None) -> dict:
    """Execute the full pipeline."""
    start_time = datetime.now()

    cfg, project_root, results_dirs = setup(config_path)
    tables = results_dirs["tables"]
    rng = make_rng(cfg.run.seed if cfg.run.seeded else None)

    # -------------------------------------------------------------------------
    # Labels + Forest
    # -------------------------------------------------------------------------
    macro_df, macro_stats = load_macro_features(_resolve(project_root, cfg.paths.macro_csv))

    training = label_and_train(
        macro_df,
        macro_stats.date_column,
        n_trees=cfg.forest.n_trees,
        rng=rng,
        max_depth=cfg.forest.max_depth,
        min_samples_split=cfg.forest.min_samples_split,
        min_samples_leaf=cfg.forest.min_samples_leaf,
    )

    # -------------------------------------------------------------------------
    # Backtest
    # -------------------------------------------------------------------------
    backtest = None
    if cfg.paths.sector_csv and cfg.paths.stock_csv:
        sector_df = load_sector_returns(_resolve(project_root, cfg.paths.sector_csv))
        stock_df = load_stock_returns(_resolve(project_root, cfg.paths.stock_csv))
        backtest = run_backtest(
            regime_series(training.labeled),
            sector_df,
            stock_df,
            top_n=cfg.backtest.top_n,
            cutoff=cfg.backtest.cutoff,
            initial_capital=cfg.backtest.initial_capital,
            periods_per_year=cfg.backtest.periods_per_year,
        )
    else:
        log("  Backtest skipped: sector_csv / stock_csv not configured")

    # -------------------------------------------------------------------------
    # Artifacts
    # -------------------------------------------------------------------------
    if cfg.run.save_tables:
        _save_table(training.train_predictions, tables, "train_predictions")
        _save_table(training.test_predictions, tables, "test_predictions")
        _save_table(training.per_regime_accuracy, tables, "per_regime_accuracy")
        _save_table(training.feature_importance, tables, "feature_importance")

        summary = {
            "train_accuracy": training.train_accuracy,
            "test_accuracy": training.test_accuracy,
            "n_trees": training.forest.n_trees,
        }
        if backtest is not None:
            _save_table(backtest.equity_curve, tables, "equity_curve")
            _save_table(backtest.yearly_returns, tables, "yearly_returns")
            _save_table(trades_to_frame(backtest.trades_by_date), tables, "trades")
            _save_table(analyze_regime_performance(backtest), tables, "regime_performance")
            summary.update(metrics_to_dict(backtest.metrics))
        _save_table(pd.DataFrame([summary]), tables, "summary")
        log(f"✓ Tables saved to {tables}")

    if cfg.run.save_model:
        save_model(training.forest, results_dirs["models"], "random_forest")

    # -------------------------------------------------------------------------
    # FINAL SUMMARY
    # -------------------------------------------------------------------------
    duration = (datetime.now() - start_time).total_seconds()

    log_section("PIPELINE COMPLETE")
    log(f"  Runtime: {duration:.1f}s")
    log(f"  Train accuracy: {training.train_accuracy:.1f}%")
    if backtest is not None:
        m = backtest.metrics
        log(f"  Backtest {m.start_date} to {m.end_date}: CAGR {m.cagr:.1%} | "
            f"Sharpe {m.sharpe_ratio:.2f} | MaxDD {m.max_drawdown:.1%}")
    log(f"\n  📁 Run folder: {results_dirs['run_dir']}")

    return {
        "cfg": cfg,
        "training": training,
        "backtest": backtest,
        "results_dirs": results_dirs,
    }


# =============================================================================
# CLI ENTRY POINT
# =============================================================================

def main():
    parser = argparse.ArgumentParser(description="Macro Regime Sector Rotation")
    parser.add_argument("--config", "-c", type=Path, default=None)
    args = parser.parse_args()

    try:
        run_pipeline(config_path=args.config)
        return 0
    except (InputIncompleteError, NoOverlappingDatesError, FileNotFoundError) as e:
        log(f"✗ Pipeline failed: {e}")
        return 1
    except Exception as e:
        log(f"✗ Pipeline failed: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
