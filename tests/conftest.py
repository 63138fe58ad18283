import numpy as np
import pandas as pd
import pytest
from flask import Flask

import dash_wrappers
import portfolio_engine
from api import api
from data_loader import clear_market_data_cache
from metrics_store import LocalJSONStore


def make_series(dates, values):
    return [{"date": d.strftime("%Y-%m-%d"), "value": float(v)} for d, v in zip(dates, values)]


@pytest.fixture(autouse=True)
def reset_caches(monkeypatch):
    clear_market_data_cache()
    monkeypatch.setattr(dash_wrappers, "_DATA_CACHE", None)
    yield
    clear_market_data_cache()


@pytest.fixture
def trading_days():
    return pd.bdate_range("2021-01-04", "2024-06-28")


@pytest.fixture
def benchmark_series(trading_days):
    i = np.arange(len(trading_days))
    returns = 0.0004 + 0.01 * np.sin(i / 7.0)
    return make_series(trading_days, 4000 * np.cumprod(1 + returns))


@pytest.fixture
def portfolio_series(trading_days):
    i = np.arange(len(trading_days))
    returns = 0.0003 + 0.008 * np.sin(i / 7.0) + 0.002 * np.cos(i / 3.0)
    return make_series(trading_days, 100000 * np.cumprod(1 + returns))


@pytest.fixture
def tbill_rates(trading_days):
    return {d.strftime("%Y-%m-%d"): 0.045 for d in trading_days}


@pytest.fixture
def market_data(benchmark_series, tbill_rates):
    return {
        "benchmark": benchmark_series,
        "tbill_rates": tbill_rates,
        "source": "test",
    }


@pytest.fixture
def portfolio_csv(portfolio_series, benchmark_series):
    """Two portfolios: a synthetic one and a 25x copy of the benchmark."""
    lines = ["Date,Clockwise Max Growth,Clockwise Moderate"]
    for port, bench in zip(portfolio_series, benchmark_series):
        year, month, day = port["date"].split("-")
        date = f"{int(month)}/{int(day)}/{year}"
        lines.append(f'{date},"{port["value"]:,.2f}","{bench["value"] * 25:,.2f}"')
    return "\n".join(lines)


@pytest.fixture
def patched_market(monkeypatch, market_data):
    """Market data without network access."""
    monkeypatch.setattr(portfolio_engine, "get_market_data_safe", lambda start, end: market_data)
    return market_data


@pytest.fixture
def store(tmp_path):
    return LocalJSONStore(str(tmp_path / "metrics.json"))


@pytest.fixture
def client(store):
    app = Flask(__name__)
    app.config["TESTING"] = True
    app.config["METRICS_STORE_FACTORY"] = lambda: store
    app.register_blueprint(api)
    return app.test_client()
