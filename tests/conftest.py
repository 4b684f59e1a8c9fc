import numpy as np
import pandas as pd
import pytest

from regime_rotation.labels import FEATURE_COLS
from regime_rotation.utils import set_logfile, set_verbose


@pytest.fixture(autouse=True)
def quiet_logs():
    set_verbose(0)
    set_logfile(None)
    yield
    set_verbose(1)


def make_feature_row(**overrides):
    """All 21 features at 0, with selected fields overridden."""
    row = {col: 0.0 for col in FEATURE_COLS}
    row.update(overrides)
    return row


@pytest.fixture
def goldilocks_rows():
    """20 weekly rows that all satisfy the Goldilocks rule."""
    dates = pd.date_range("2010-01-01", periods=20, freq="W-FRI")
    rows = [
        make_feature_row(spx_ret_3w_z=1.0, vix_z=-1.0, pmi_z=1.0, breakeven10_z=0.0)
        for _ in dates
    ]
    df = pd.DataFrame(rows)
    df.insert(0, "date", dates.strftime("%Y-%m-%d"))
    return df


@pytest.fixture
def separable_data():
    """200 rows, class 1 when feature a > 0 else class 0."""
    rng = np.random.default_rng(7)
    X = np.column_stack([rng.normal(size=200), rng.normal(size=200)])
    y = (X[:, 0] > 0).astype(int)
    return X, y, ["a", "b"]


@pytest.fixture
def macro_frame():
    """Weekly macro rows 2004-2018 with random features and a regime mix."""
    rng = np.random.default_rng(3)
    dates = pd.date_range("2004-01-02", "2018-12-28", freq="W-FRI")
    df = pd.DataFrame(rng.normal(size=(len(dates), len(FEATURE_COLS))), columns=FEATURE_COLS)
    df.insert(0, "date", dates.strftime("%Y-%m-%d"))
    return df


@pytest.fixture
def one_sector_tables():
    """
    Two shared weeks, one long sector with 3 stocks.

    Ranking week returns 3%, 2%, 1%; trade week returns 5%, -2%, 1%.
    """
    rank, trade = "2015-01-02", "2015-01-09"
    regimes = pd.Series({rank: 0, trade: 0})
    sectors = pd.DataFrame({"XLK US Equity": [0.01, 0.02]}, index=pd.Index([rank, trade], name="date_key"))
    stocks = pd.DataFrame({
        "date_key": [rank] * 3 + [trade] * 3,
        "stock_ticker": ["AAA", "BBB", "CCC"] * 2,
        "sector_etf": ["XLK US Equity"] * 6,
        "ret": [0.03, 0.02, 0.01, 0.05, -0.02, 0.01],
    })
    return regimes, sectors, stocks
