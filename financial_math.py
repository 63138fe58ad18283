import math

import numpy as np
import pandas as pd

from config import (
    RISK_FREE_RATE,
    TRADING_DAYS_PER_YEAR,
    METRICS_LOOKBACK_YEARS,
    MIN_MONTHS_FOR_REGRESSION,
)

# ============================================================
# CONFIG / CONSTANTS
# ============================================================
MONTHS_PER_YEAR = 12
MIN_PAIRS_FOR_BETA = 3

# Fixed by definition: the benchmark compared against itself
BENCHMARK_SELF_METRICS = {
    "alpha": 0.0,
    "beta": 1.0,
    "upCapture": 1.0,
    "downCapture": 1.0,
}

# ------------------------------------------------------------
# Daily value helpers
# ------------------------------------------------------------

def calculate_daily_returns(values: list) -> list:
    """
    Simple day-over-day returns from an ascending DailyValue list.
    Steps with a non-positive previous value are skipped (division guard).
    """
    returns = []
    for i in range(1, len(values)):
        prev_value = values[i - 1]["value"]
        curr_value = values[i]["value"]
        if prev_value > 0:
            returns.append((curr_value - prev_value) / prev_value)
    return returns


def calculate_std_dev(returns: list) -> float:
    """Annualized population standard deviation of daily returns."""
    if len(returns) == 0:
        return 0.0
    arr = np.asarray(returns, dtype=float)
    variance = np.mean((arr - arr.mean()) ** 2)
    return float(np.sqrt(variance) * np.sqrt(TRADING_DAYS_PER_YEAR))


def calculate_sharpe_ratio(returns: list, risk_free_rate: float = RISK_FREE_RATE) -> float:
    """
    (mean daily return * 252 - rf) / annualized std dev.
    Returns 0 when there are no returns or no volatility.
    """
    if len(returns) == 0:
        return 0.0
    annualized_return = float(np.mean(returns)) * TRADING_DAYS_PER_YEAR
    annualized_std = calculate_std_dev(returns)
    if annualized_std == 0:
        return 0.0
    return (annualized_return - risk_free_rate) / annualized_std


def calculate_max_drawdown(values: list):
    """
    Deepest peak-to-trough decline, reported as a negative fraction.
    Returns None for an empty series.
    """
    if not values:
        return None

    peak = values[0]["value"]
    max_drawdown = 0.0

    for dv in values:
        value = dv["value"]
        if value > peak:
            peak = value
        if peak <= 0:
            continue
        drawdown = (peak - value) / peak
        if drawdown > max_drawdown:
            max_drawdown = drawdown

    return -max_drawdown if max_drawdown > 0 else 0.0


def _shift_years(date: pd.Timestamp, years: int) -> pd.Timestamp:
    # Feb 29 -> Feb 28 in non-leap target years
    return date - pd.DateOffset(years=years)


def get_last_n_years_values(values: list, years: int) -> list:
    """Trailing window: dates on or after (last date - N years)."""
    if not values:
        return []
    last_date = pd.Timestamp(values[-1]["date"])
    cutoff = _shift_years(last_date, years).strftime("%Y-%m-%d")
    return [dv for dv in values if dv["date"] >= cutoff]


def calculate_total_return(values: list):
    """(end - start) / start over the whole list, None if it can't be computed."""
    if len(values) < 2:
        return None
    start_value = values[0]["value"]
    end_value = values[-1]["value"]
    if start_value <= 0:
        return None
    return (end_value - start_value) / start_value


def calculate_return_over_years(values: list, years: int = METRICS_LOOKBACK_YEARS):
    window = get_last_n_years_values(values, years)
    return calculate_total_return(window)


def annualize_return(total_return, years: float):
    """Geometric annualization of a cumulative return."""
    if total_return is None or years <= 0:
        return None
    if total_return <= -1:
        return -1.0
    return (1.0 + total_return) ** (1.0 / years) - 1.0

# ------------------------------------------------------------
# Sample statistics (n - 1 denominators)
# ------------------------------------------------------------

def sample_covariance(a: list, b: list) -> float:
    if len(a) != len(b) or len(a) < 2:
        return 0.0
    x = np.asarray(a, dtype=float)
    y = np.asarray(b, dtype=float)
    return float(np.sum((x - x.mean()) * (y - y.mean())) / (len(x) - 1))


def sample_variance(a: list) -> float:
    return sample_covariance(a, a)

# ------------------------------------------------------------
# Benchmark regression (monthly, Morningstar-style)
# ------------------------------------------------------------

def to_month_end_values(values: list) -> dict:
    """
    One value per calendar month: the last observation in the month wins.
    Returns an ordered {"YYYY-MM": value} mapping.
    """
    month_end = {}
    for dv in values:
        month_end[dv["date"][:7]] = dv["value"]
    return dict(sorted(month_end.items()))


def monthly_risk_free_rates(tbill_rates: dict) -> dict:
    """Average observed annual T-Bill rate per month, divided by 12."""
    by_month = {}
    for date, rate in tbill_rates.items():
        if rate is None or (isinstance(rate, float) and math.isnan(rate)):
            continue
        by_month.setdefault(date[:7], []).append(rate)
    return {
        month: float(np.mean(rates)) / MONTHS_PER_YEAR
        for month, rates in by_month.items()
    }


def build_monthly_data(
    portfolio_values: list,
    benchmark_values: list,
    tbill_rates: dict = None,
    default_rate: float = RISK_FREE_RATE,
) -> list:
    """
    Pair portfolio and benchmark month-end values on their shared months and
    derive monthly returns, the monthly risk-free rate and excess returns.

    Each entry describes the move INTO `month` from the previous shared month:
        {month, portfolioReturn, benchmarkReturn, riskFreeRate,
         portfolioExcess, benchmarkExcess}
    """
    port_months = to_month_end_values(portfolio_values)
    bench_months = to_month_end_values(benchmark_values)
    shared = sorted(set(port_months) & set(bench_months))

    rf_by_month = monthly_risk_free_rates(tbill_rates or {})
    default_monthly = default_rate / MONTHS_PER_YEAR

    monthly = []
    for prev_month, month in zip(shared, shared[1:]):
        p_prev, p_curr = port_months[prev_month], port_months[month]
        b_prev, b_curr = bench_months[prev_month], bench_months[month]
        if p_prev <= 0 or b_prev <= 0:
            continue

        port_ret = p_curr / p_prev - 1
        bench_ret = b_curr / b_prev - 1
        rf = rf_by_month.get(month, default_monthly)

        monthly.append({
            "month": month,
            "portfolioReturn": port_ret,
            "benchmarkReturn": bench_ret,
            "riskFreeRate": rf,
            "portfolioExcess": port_ret - rf,
            "benchmarkExcess": bench_ret - rf,
        })

    return monthly


def count_shared_months(portfolio_values: list, benchmark_values: list) -> int:
    port_months = to_month_end_values(portfolio_values)
    bench_months = to_month_end_values(benchmark_values)
    return len(set(port_months) & set(bench_months))


def calculate_beta(portfolio_excess: list, benchmark_excess: list) -> float:
    """
    Cov(portfolio excess, benchmark excess) / Var(benchmark excess).
    Defaults to 1 with fewer than 3 pairs or a flat benchmark.
    """
    if len(portfolio_excess) < MIN_PAIRS_FOR_BETA or len(portfolio_excess) != len(benchmark_excess):
        return 1.0
    bench_var = sample_variance(benchmark_excess)
    if bench_var == 0:
        return 1.0
    return sample_covariance(portfolio_excess, benchmark_excess) / bench_var


def calculate_alpha(
    portfolio_excess: list,
    benchmark_excess: list,
    beta: float,
    periods_per_year: int = MONTHS_PER_YEAR,
) -> float:
    """Jensen's alpha, annualized: (mean(Rp-Rf) - beta * mean(Rb-Rf)) * periods."""
    if not portfolio_excess or not benchmark_excess:
        return 0.0
    avg_port = float(np.mean(portfolio_excess))
    avg_bench = float(np.mean(benchmark_excess))
    return (avg_port - beta * avg_bench) * periods_per_year


def calculate_capture_ratio(portfolio_returns: list, benchmark_returns: list, up: bool = True, default=1.0):
    """
    Up/down capture from raw periodic returns.

    Periods are split on the sign of the benchmark return (strictly > 0 is up,
    strictly < 0 is down, zero counts as neither). Both legs are COMPOUNDED
    within the partition, then divided. An empty partition or a zero
    compounded benchmark return gives `default` (1 for the trailing
    snapshot, None for period stats).
    """
    port_growth = 1.0
    bench_growth = 1.0
    matched = 0

    for p_ret, b_ret in zip(portfolio_returns, benchmark_returns):
        if (up and b_ret > 0) or (not up and b_ret < 0):
            port_growth *= (1 + p_ret)
            bench_growth *= (1 + b_ret)
            matched += 1

    if matched == 0:
        return default

    bench_compound = bench_growth - 1
    if bench_compound == 0:
        return default
    return (port_growth - 1) / bench_compound


def calculate_benchmark_metrics(
    portfolio_values: list,
    benchmark_values: list,
    tbill_rates: dict = None,
    years: int = METRICS_LOOKBACK_YEARS,
) -> dict:
    """
    Beta, alpha and capture ratios for a portfolio vs the benchmark over the
    trailing `years`.

    The window is anchored on the portfolio's last date and applied to both
    series. With fewer than MIN_MONTHS_FOR_REGRESSION shared months every
    value is None.
    """
    empty = {"alpha": None, "beta": None, "upCapture": None, "downCapture": None, "months": 0}
    if not portfolio_values or not benchmark_values:
        return empty

    port_window = get_last_n_years_values(portfolio_values, years)
    cutoff = port_window[0]["date"] if port_window else portfolio_values[-1]["date"]
    last_date = portfolio_values[-1]["date"]
    bench_window = [dv for dv in benchmark_values if cutoff <= dv["date"] <= last_date]

    shared_months = count_shared_months(port_window, bench_window)
    if shared_months < MIN_MONTHS_FOR_REGRESSION:
        return {**empty, "months": shared_months}

    monthly = build_monthly_data(port_window, bench_window, tbill_rates)

    port_excess = [m["portfolioExcess"] for m in monthly]
    bench_excess = [m["benchmarkExcess"] for m in monthly]
    port_raw = [m["portfolioReturn"] for m in monthly]
    bench_raw = [m["benchmarkReturn"] for m in monthly]

    beta = calculate_beta(port_excess, bench_excess)
    alpha = calculate_alpha(port_excess, bench_excess, beta)

    return {
        "alpha": alpha,
        "beta": beta,
        "upCapture": calculate_capture_ratio(port_raw, bench_raw, up=True),
        "downCapture": calculate_capture_ratio(port_raw, bench_raw, up=False),
        "months": shared_months,
    }

# ------------------------------------------------------------
# Future Value Helpers
# ------------------------------------------------------------

def fv_lump(pv0, r, yr):
    return pv0 * ((1 + r) ** yr)

def fv_contrib(c, r, yr):
    monthly_r = r / 12.0
    n = yr * 12
    if monthly_r == 0:
        return c * n
    return c * (((1 + monthly_r) ** n - 1) / monthly_r)

def fv_with_contributions(start_value, annual_return, monthly_contribution, years):
    """
    Month-by-month growth where each month's contribution is added BEFORE
    that month's return is applied.
    """
    monthly_rate = annual_return / 12.0
    months = int(round(years * 12))

    value = start_value
    for _ in range(months):
        value += monthly_contribution
        value *= (1 + monthly_rate)
    return value
