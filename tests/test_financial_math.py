import math

import pytest

from financial_math import (
    calculate_daily_returns,
    calculate_std_dev,
    calculate_sharpe_ratio,
    calculate_max_drawdown,
    get_last_n_years_values,
    calculate_total_return,
    calculate_return_over_years,
    annualize_return,
    sample_covariance,
    sample_variance,
    to_month_end_values,
    monthly_risk_free_rates,
    build_monthly_data,
    calculate_beta,
    calculate_alpha,
    calculate_capture_ratio,
    calculate_benchmark_metrics,
    fv_lump,
    fv_contrib,
    fv_with_contributions,
)


def series(*pairs):
    return [{"date": d, "value": v} for d, v in pairs]


def test_daily_returns_skip_non_positive_previous():
    values = series(("2024-01-02", 100), ("2024-01-03", 110), ("2024-01-04", 0), ("2024-01-05", 50))
    assert calculate_daily_returns(values) == pytest.approx([0.10, -1.0])


def test_empty_returns_give_zero_risk_stats():
    assert calculate_std_dev([]) == 0
    assert calculate_sharpe_ratio([]) == 0


def test_std_dev_is_annualized_population():
    # population std of [0.01, -0.01] is 0.01
    assert calculate_std_dev([0.01, -0.01]) == pytest.approx(0.01 * math.sqrt(252))


def test_sharpe_ratio():
    returns = [0.01, -0.005, 0.002, 0.004]
    expected = (sum(returns) / 4 * 252 - 0.04) / calculate_std_dev(returns)
    assert calculate_sharpe_ratio(returns) == pytest.approx(expected)
    assert calculate_sharpe_ratio([0.001, 0.001]) == 0.0


def test_max_drawdown_strictly_increasing_is_zero():
    values = series(("2024-01-02", 100), ("2024-01-03", 101), ("2024-01-04", 105))
    assert calculate_max_drawdown(values) == 0


def test_max_drawdown_is_negative_fraction():
    values = series(("2024-01-02", 100), ("2024-01-03", 120), ("2024-01-04", 90), ("2024-01-05", 130))
    assert calculate_max_drawdown(values) == pytest.approx(-0.25)
    assert calculate_max_drawdown([]) is None


def test_total_return():
    assert calculate_total_return(series(("2024-01-02", 100), ("2024-01-03", 110))) == pytest.approx(0.10)
    assert calculate_total_return(series(("2024-01-02", 100))) is None
    assert calculate_total_return(series(("2024-01-02", 0), ("2024-01-03", 10))) is None


def test_last_n_years_window():
    values = series(
        ("2020-06-30", 90), ("2021-06-29", 95), ("2021-06-30", 100), ("2024-06-28", 150), ("2024-06-30", 160)
    )
    window = get_last_n_years_values(values, 3)
    assert [dv["date"] for dv in window] == ["2021-06-30", "2024-06-28", "2024-06-30"]
    assert calculate_return_over_years(values, 3) == pytest.approx(0.60)


def test_annualize_return():
    assert annualize_return(0.21, 2) == pytest.approx(0.10)
    assert annualize_return(None, 2) is None
    assert annualize_return(-1.5, 2) == -1.0

# ------------------------------------------------------------
# Regression
# ------------------------------------------------------------

def test_sample_statistics_use_n_minus_one():
    assert sample_variance([1.0, 2.0, 3.0]) == pytest.approx(1.0)
    assert sample_covariance([1.0, 2.0, 3.0], [2.0, 4.0, 6.0]) == pytest.approx(2.0)
    assert sample_covariance([1.0], [1.0]) == 0.0


def test_month_end_values_keep_last_observation():
    values = series(("2024-01-02", 100), ("2024-01-31", 105), ("2024-02-01", 106), ("2024-02-29", 110))
    assert to_month_end_values(values) == {"2024-01": 105, "2024-02": 110}


def test_monthly_risk_free_rates():
    rates = {"2024-01-02": 0.05, "2024-01-03": 0.07, "2024-02-01": float("nan")}
    assert monthly_risk_free_rates(rates) == {"2024-01": pytest.approx(0.005)}


def test_build_monthly_data_default_rate():
    port = series(("2024-01-31", 100), ("2024-02-29", 110), ("2024-03-28", 99))
    bench = series(("2024-01-31", 50), ("2024-02-29", 51), ("2024-04-30", 60))

    monthly = build_monthly_data(port, bench)

    # March has no benchmark observation
    assert len(monthly) == 1
    entry = monthly[0]
    assert entry["month"] == "2024-02"
    assert entry["portfolioReturn"] == pytest.approx(0.10)
    assert entry["benchmarkReturn"] == pytest.approx(0.02)
    assert entry["riskFreeRate"] == pytest.approx(0.04 / 12)
    assert entry["portfolioExcess"] == pytest.approx(0.10 - 0.04 / 12)


def test_beta_and_alpha():
    bench = [0.01, -0.02, 0.03, 0.005]
    port = [2 * b for b in bench]
    beta = calculate_beta(port, bench)
    assert beta == pytest.approx(2.0)
    assert calculate_alpha(port, bench, beta) == pytest.approx(0.0)


def test_beta_defaults_to_one():
    assert calculate_beta([0.01, 0.02], [0.01, 0.02]) == 1.0
    assert calculate_beta([0.01, 0.02, 0.03], [0.25, 0.25, 0.25]) == 1.0


def test_capture_ratio_compounds_partitions():
    port = [0.02, -0.01, 0.03]
    bench = [0.01, -0.02, 0.0]

    assert calculate_capture_ratio(port, bench, up=True) == pytest.approx(0.02 / 0.01)
    assert calculate_capture_ratio(port, bench, up=False) == pytest.approx(0.5)


def test_capture_ratio_empty_partition_default():
    assert calculate_capture_ratio([0.01, 0.02], [0.01, 0.03], up=False) == 1.0
    assert calculate_capture_ratio([], [], up=True) == 1.0
    assert calculate_capture_ratio([0.01, 0.02], [0.01, 0.03], up=False, default=None) is None
    assert calculate_capture_ratio([0.01], [0.0], up=True, default=None) is None


def test_identical_series_regression(benchmark_series, tbill_rates):
    metrics = calculate_benchmark_metrics(benchmark_series, benchmark_series, tbill_rates)

    assert metrics["beta"] == pytest.approx(1.0)
    assert metrics["alpha"] == pytest.approx(0.0, abs=1e-12)
    assert metrics["upCapture"] == pytest.approx(1.0)
    assert metrics["downCapture"] == pytest.approx(1.0)
    assert metrics["months"] >= 36


def test_regression_window_ends_at_portfolio_last_date(benchmark_series, tbill_rates):
    truncated = [dv for dv in benchmark_series if dv["date"] <= "2024-06-14"]
    metrics = calculate_benchmark_metrics(truncated, benchmark_series, tbill_rates)

    assert metrics["beta"] == pytest.approx(1.0)
    assert metrics["alpha"] == pytest.approx(0.0, abs=1e-12)
    assert metrics["upCapture"] == pytest.approx(1.0)
    assert metrics["downCapture"] == pytest.approx(1.0)


def test_regression_needs_twelve_shared_months(benchmark_series):
    short = [dv for dv in benchmark_series if dv["date"] < "2021-12-01"]
    metrics = calculate_benchmark_metrics(short, short)

    assert metrics["months"] == 11
    assert metrics["beta"] is None
    assert metrics["alpha"] is None
    assert metrics["upCapture"] is None


def test_regression_without_benchmark():
    port = series(("2024-01-31", 100), ("2024-02-29", 110))
    assert calculate_benchmark_metrics(port, [])["beta"] is None

# ------------------------------------------------------------
# Future value
# ------------------------------------------------------------

def test_future_value_helpers():
    assert fv_lump(1000, 0.10, 2) == pytest.approx(1210.0)
    assert fv_contrib(100, 0.0, 1) == pytest.approx(1200.0)
    assert fv_with_contributions(0, 0.0, 100, 1) == pytest.approx(1200.0)
    # contribution lands before the month's growth
    assert fv_with_contributions(0, 0.12, 100, 1 / 12) == pytest.approx(101.0)
