"""
Utility functions and helpers.

Contains:
- Reproducibility helpers (set_seeds, make_rng)
- Logging/printing helpers (log, log_section, log_df, log_debug)
- Path helpers (get_project_root, create_run_folder)
- Environment version logging
"""
from __future__ import annotations

import os
import random
import shutil
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

import numpy as np
import pandas as pd


# =============================================================================
# PATH HELPERS
# =============================================================================

def get_project_root() -> Path:
    """
    Get the project root directory.

    Assumes this file is at: <project_root>/regime_rotation/utils.py
    """
    return Path(__file__).resolve().parents[1]


def create_run_folder(results_dir: Path, timestamp: str = None) -> Dict[str, Path]:
    """
    Create a timestamped run folder for pipeline outputs.

    Structure:
        results/runs/YYYYMMDD_HHMMSS/
            tables/
            logs/
            models/
            config_used.yaml  (copied by main.py)

    Args:
        results_dir: Base results directory (e.g., "results")
        timestamp: Optional timestamp string. If None, uses current time.

    Returns:
        Dictionary mapping subdir names to paths
    """
    if timestamp is None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

    run_dir = results_dir / "runs" / timestamp
    tables = run_dir / "tables"
    logs = run_dir / "logs"
    models = run_dir / "models"

    for d in (tables, logs, models):
        d.mkdir(parents=True, exist_ok=True)

    log(f"  📁 Run folder: {run_dir}")

    return {
        "run_dir": run_dir,
        "tables": tables,
        "logs": logs,
        "models": models,
    }


def copy_config_to_run(config_path: Path, run_dir: Path) -> Path:
    """Copy config file to run folder so every run can be reproduced."""
    dest_path = run_dir / "config_used.yaml"
    shutil.copy2(config_path, dest_path)
    log(f"  📋 Config saved: {dest_path.name}")
    return dest_path


# =============================================================================
# REPRODUCIBILITY
# =============================================================================

def set_seeds(seed: int) -> None:
    """
    Seed the global generators (Python random, NumPy legacy, PYTHONHASHSEED).

    Only third-party code drawing from global state is affected; the forest
    draws from the generator returned by make_rng.
    """
    os.environ["PYTHONHASHSEED"] = str(seed)
    random.seed(seed)
    np.random.seed(seed)


def make_rng(seed: Optional[int]) -> np.random.Generator:
    """
    Build the generator used for bootstrap draws and feature subsampling.

    A None seed gives an unseeded generator (fresh OS entropy per run).
    """
    return np.random.default_rng(seed)


# =============================================================================
# LOGGING HELPERS (Controlled Output)
# =============================================================================

# Global verbose level (set by main.py from config)
_VERBOSE_LEVEL: int = 1
_TABLE_ROWS: int = 5
_LOGFILE: Optional[Path] = None


def set_verbose(level: int, table_rows: int = 5) -> None:
    """Set global verbosity level."""
    global _VERBOSE_LEVEL, _TABLE_ROWS
    _VERBOSE_LEVEL = level
    _TABLE_ROWS = table_rows


def set_logfile(logfile: Optional[Path]) -> None:
    """Tee every printed message into ``logfile`` (None disables)."""
    global _LOGFILE
    _LOGFILE = logfile


def _write_logfile(text: str, logfile: Optional[Path]) -> None:
    target = logfile or _LOGFILE
    if target is None:
        return
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("a", encoding="utf-8") as f:
        f.write(text + "\n")


def log(msg: str, level: int = 1, logfile: Optional[Path] = None) -> None:
    """
    Print message if verbosity level is sufficient.

    Args:
        msg: Message to print
        level: Required verbosity level (1=summary, 2=debug)
        logfile: Optional path to also write to log file
    """
    if _VERBOSE_LEVEL >= level:
        print(msg)
        _write_logfile(msg, logfile)


def log_section(title: str, level: int = 1, logfile: Optional[Path] = None) -> None:
    """Print section header if verbosity level is sufficient."""
    if _VERBOSE_LEVEL >= level:
        header = f"\n{'='*80}\n{title}\n{'='*80}"
        print(header)
        _write_logfile(header, logfile)


def log_debug(msg: str, logfile: Optional[Path] = None) -> None:
    """Print debug message (only if VERBOSE >= 2)."""
    log(msg, level=2, logfile=logfile)


def log_df(df: pd.DataFrame, n: int = None, level: int = 1) -> None:
    """Print DataFrame head if verbosity level is sufficient."""
    if _VERBOSE_LEVEL >= level:
        n = n or _TABLE_ROWS
        text = df.head(n).to_string()
        print(text)
        _write_logfile(text, None)


# =============================================================================
# ENVIRONMENT VERIFICATION
# =============================================================================

# Minimum required versions (for compatibility checks)
REQUIRED_VERSIONS = {
    "python": "3.9",
    "numpy": "1.24",
    "pandas": "2.0",
    "sklearn": "1.3",
    "pyyaml": "6.0",
}


def get_environment_info() -> Dict[str, str]:
    """Collect the versions of every package the pipeline imports."""
    import sklearn
    import yaml

    return {
        "python": sys.version.split()[0],
        "numpy": np.__version__,
        "pandas": pd.__version__,
        "sklearn": sklearn.__version__,
        "pyyaml": yaml.__version__,
    }


def log_environment_versions(save_csv: Optional[Path] = None) -> Dict[str, str]:
    """
    Log package versions against the minimum supported versions.

    Args:
        save_csv: Optional path to save versions as CSV

    Returns:
        Dictionary of package names to versions
    """
    from packaging import version as pkg_version

    env_info = get_environment_info()

    lines = [
        "=" * 60,
        "ENVIRONMENT VERSIONS",
        "=" * 60,
    ]
    for pkg, ver in env_info.items():
        required = REQUIRED_VERSIONS.get(pkg, "0.0")
        ok = pkg_version.parse(ver) >= pkg_version.parse(required)
        status = "✓" if ok else f"⚠️  (need >= {required})"
        lines.append(f"  {pkg:12s}: {ver:12s} {status}")
    lines.append("=" * 60)

    log("\n".join(lines))

    if save_csv is not None:
        save_csv.parent.mkdir(parents=True, exist_ok=True)
        df = pd.DataFrame([
            {"package": pkg, "version": ver, "required": REQUIRED_VERSIONS.get(pkg, "")}
            for pkg, ver in env_info.items()
        ])
        df.to_csv(save_csv, index=False)
        log_debug(f"  Versions saved to: {save_csv}")

    return env_info
