import logging
from datetime import datetime, timezone

import numpy as np
import pandas as pd

from config import BENCHMARK_NAME, METRICS_LOOKBACK_YEARS
from data_loader import (
    parse_portfolio_csv,
    get_market_data_safe,
    forward_fill_rates,
    DEFAULT_TBILL_RATE,
)
from exceptions import CSVParseError, InsufficientDataError, StoreError
from financial_math import (
    calculate_daily_returns,
    calculate_std_dev,
    calculate_sharpe_ratio,
    calculate_max_drawdown,
    calculate_return_over_years,
    annualize_return,
    calculate_benchmark_metrics,
    calculate_capture_ratio,
    get_last_n_years_values,
    sample_covariance,
    sample_variance,
    BENCHMARK_SELF_METRICS,
)

logger = logging.getLogger(__name__)

# ============================================================
# CONFIG
# ============================================================
PORTFOLIO_NAME_PREFIX = "Clockwise "

# Display order. Matched as substrings of the upper-cased name.
PORTFOLIO_ORDER = ["MAX GROWTH", "GROWTH", "MODERATE", "MAX INCOME"]
BENCHMARK_NAMES = ["S&P 500", "S&P 500 TR", "SPX", "$SPX"]

CHART_BENCHMARK_NAME = "S&P 500 TR"
CUMULATIVE_PERIOD = "3Y Cumulative"
WEEKLY_PERIODS = {"YTD", CUMULATIVE_PERIOD}

PERIODS_PER_YEAR = {"weekly": 52, "monthly": 12}

MIN_PERIODS_RELIABLE = 12
MIN_PERIODS_RECOMMENDED = 36

# (key, PeriodMetrics field, display name)
COMPARISON_METRICS = [
    ("return", "portfolioReturn", "Returns"),
    ("stdDev", "portfolioStdDev", "Risk (Std Dev)"),
    ("alpha", "portfolioAlpha", "Alpha"),
    ("beta", "portfolioBeta", "Beta"),
    ("sharpe", "portfolioSharpeRatio", "Sharpe Ratio"),
    ("maxDrawdown", "portfolioMaxDrawdown", "Max Drawdown"),
    ("upCapture", "portfolioUpCapture", "Up Capture"),
    ("downCapture", "portfolioDownCapture", "Down Capture"),
]

METHODOLOGY = {
    "benchmark": "S&P 500 Total Return Index (^SP500TR), dividends included",
    "riskFreeRate": "3-Month Treasury Bill (^IRX), historical rates",
    "ytdFrequency": "Weekly data for YTD and 3Y cumulative, annualized with sqrt(52)",
    "fullYearFrequency": "Monthly data for full years, annualized with sqrt(12)",
    "maxDrawdown": "Daily data, peak-to-trough",
    "betaFormula": "Cov(Portfolio Excess, Benchmark Excess) / Var(Benchmark Excess)",
    "alphaFormula": "Jensen's Alpha: (Avg Excess - Beta x Avg Benchmark Excess) x annualize_factor",
    "sharpeFormula": "(Avg Period Excess x annualize_factor) / Annualized Std Dev",
    "captureFormula": "Compound return in up/down months divided by benchmark compound",
    "periods": "YTD and the last 2 full calendar years",
    "dataSource": "Yahoo Finance (^SP500TR, ^IRX)",
}


def _round(value, decimals):
    if value is None:
        return None
    value = float(value)
    if np.isnan(value) or np.isinf(value):
        return None
    return round(value, decimals)


def _utc_now_iso():
    return datetime.now(timezone.utc).isoformat()

# ------------------------------------------------------------
# Display order
# ------------------------------------------------------------

def _order_rank(name: str):
    key = name.upper().replace(PORTFOLIO_NAME_PREFIX.upper(), "").strip()

    if key in BENCHMARK_NAMES or key.startswith("S&P 500"):
        return (2, 0, key)

    for idx, token in enumerate(PORTFOLIO_ORDER):
        # GROWTH must not claim "MAX GROWTH"
        if token == "GROWTH" and "MAX GROWTH" in key:
            continue
        if token in key:
            return (0, idx, key)

    return (1, 0, key)


def sort_portfolio_names(names) -> list:
    """
    Max Growth -> Growth -> Moderate -> Max Income -> others (A-Z) -> benchmark.
    """
    return sorted(names, key=_order_rank)


def strip_portfolio_prefix(name: str) -> str:
    if name.startswith(PORTFOLIO_NAME_PREFIX):
        return name[len(PORTFOLIO_NAME_PREFIX):]
    return name

# ============================================================
# UPLOAD PIPELINE (trailing 3Y snapshot per portfolio)
# ============================================================

def _years_covered(values: list) -> float:
    if len(values) < 2:
        return 0.0
    span = pd.Timestamp(values[-1]["date"]) - pd.Timestamp(values[0]["date"])
    return span.days / 365.25


def calculate_portfolio_metrics(name: str, values: list, benchmark: list = None, tbill_rates: dict = None) -> dict:
    """
    Trailing-3Y metrics for one portfolio.

    Returns:
        dict: PortfolioMetrics
            {name, return3Y, annualizedReturn, stdDev, alpha, beta, sharpeRatio, maxDrawdown,
             upCapture, downCapture, dailyValues}
    """
    window = get_last_n_years_values(values, METRICS_LOOKBACK_YEARS)
    returns = calculate_daily_returns(window)
    total_return = calculate_return_over_years(values, METRICS_LOOKBACK_YEARS)

    if benchmark:
        regression = calculate_benchmark_metrics(values, benchmark, tbill_rates)
    else:
        regression = {"alpha": None, "beta": None, "upCapture": None, "downCapture": None}

    return {
        "name": name,
        "return3Y": total_return,
        "annualizedReturn": annualize_return(total_return, _years_covered(window)),
        "stdDev": calculate_std_dev(returns) if returns else None,
        "alpha": regression["alpha"],
        "beta": regression["beta"],
        "sharpeRatio": calculate_sharpe_ratio(returns) if returns else None,
        "maxDrawdown": calculate_max_drawdown(window),
        "upCapture": regression["upCapture"],
        "downCapture": regression["downCapture"],
        "dailyValues": values,
    }


def calculate_benchmark_row(values: list) -> dict:
    """The benchmark's own metrics. Regression stats are fixed (alpha 0, beta 1, capture 1)."""
    metrics = calculate_portfolio_metrics(BENCHMARK_NAME, values)
    metrics.update(BENCHMARK_SELF_METRICS)
    return metrics


def metrics_to_row(metrics: dict, updated_by: str, is_benchmark: bool = False) -> dict:
    """PortfolioMetrics -> clockwise_portfolios row."""
    return {
        "name": strip_portfolio_prefix(metrics["name"]),
        "return_3y": metrics["return3Y"],
        "std_dev": metrics["stdDev"],
        "alpha": metrics["alpha"],
        "beta": metrics["beta"],
        "sharpe_ratio": metrics["sharpeRatio"],
        "max_drawdown": metrics["maxDrawdown"],
        "up_capture": metrics["upCapture"],
        "down_capture": metrics["downCapture"],
        "is_benchmark": is_benchmark,
        "updated_by": updated_by,
    }


def _upload_window(portfolios: dict):
    starts = [vals[0]["date"] for vals in portfolios.values() if vals]
    ends = [vals[-1]["date"] for vals in portfolios.values() if vals]
    return min(starts), max(ends)


def _load_portfolios(source):
    """CSV text or an already parsed upload -> (parsed, non-empty portfolios)."""
    parsed = source if isinstance(source, dict) else parse_portfolio_csv(source)
    portfolios = {name: vals for name, vals in parsed["portfolios"].items() if vals}
    if not portfolios:
        raise CSVParseError("No portfolio data found in CSV")
    return parsed, portfolios


def process_upload(content: str, updated_by: str, store, market_data: dict = None) -> dict:
    """
    CSV text -> metrics for every portfolio -> upserted rows.

    Market data is fetched once for the whole upload window. If it is
    unavailable the upload still succeeds with regression stats left empty.

    Args:
        content: CSV text, or the dict returned by parse_portfolio_csv /
            load_portfolio_csv.

    Returns:
        dict: {portfolioCount, asOfDate, portfolioNames, benchmarkAvailable,
               warnings, metrics}
    """
    parsed, portfolios = _load_portfolios(content)

    warnings = []
    if market_data is None:
        start_date, end_date = _upload_window(portfolios)
        market_data = get_market_data_safe(start_date, end_date)

    benchmark = market_data.get("benchmark") or []
    tbill_rates = market_data.get("tbill_rates") or {}
    if market_data.get("warning"):
        warnings.append(market_data["warning"])
    if not benchmark:
        logger.warning("No benchmark data; alpha, beta and capture ratios will be empty")

    all_metrics = []
    for name in sort_portfolio_names(portfolios):
        metrics = calculate_portfolio_metrics(name, portfolios[name], benchmark, tbill_rates)
        all_metrics.append(metrics)
        store.upsert_portfolio(metrics_to_row(metrics, updated_by))

    if benchmark:
        bench_metrics = calculate_benchmark_row(benchmark)
        store.upsert_portfolio(metrics_to_row(bench_metrics, updated_by, is_benchmark=True))

    # Raw values are kept for later recalculation. Best effort only.
    try:
        store.save_daily_values(parsed["asOfDate"], portfolios, updated_by)
    except StoreError as e:
        logger.warning("Could not store daily values for %s: %s", parsed["asOfDate"], e)

    logger.info("Processed %d portfolios as of %s", len(all_metrics), parsed["asOfDate"])

    return {
        "portfolioCount": len(all_metrics),
        "asOfDate": parsed["asOfDate"],
        "portfolioNames": [m["name"] for m in all_metrics],
        "benchmarkAvailable": bool(benchmark),
        "warnings": warnings,
        "metrics": [
            {k: v for k, v in m.items() if k != "dailyValues"} for m in all_metrics
        ],
    }

# ============================================================
# PERIOD ANALYZER (YTD / full years / 3Y cumulative)
# ============================================================

def merge_with_market(values: list, benchmark: list, tbill_rates: dict = None) -> pd.DataFrame:
    """
    Align a portfolio series with the benchmark on shared trading days.

    Days without a benchmark close are dropped. The benchmark is rescaled so
    it starts at the portfolio's first value; T-Bill rates are carried
    forward (5% before the first observation).

    Returns:
        DataFrame: date (str), portfolio_value, spx_value, tb_rate
    """
    columns = ["date", "portfolio_value", "spx_value", "tb_rate"]
    if not values or not benchmark:
        return pd.DataFrame(columns=columns)

    bench_map = {dv["date"]: dv["value"] for dv in benchmark}
    rows = [(dv["date"], dv["value"], bench_map[dv["date"]]) for dv in values if dv["date"] in bench_map]
    if not rows:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame(rows, columns=["date", "portfolio_value", "spx_close"])

    port_start = df["portfolio_value"].iloc[0]
    spx_start = df["spx_close"].iloc[0]
    df["spx_value"] = df["spx_close"] / spx_start * port_start

    df["tb_rate"] = forward_fill_rates(df["date"].tolist(), tbill_rates or {})

    return df[columns].reset_index(drop=True)


def _iso_week_key(dates: pd.Series) -> pd.Series:
    iso = pd.to_datetime(dates).dt.isocalendar()
    return iso["year"].astype(str) + "-W" + iso["week"].astype(int).map("{:02d}".format)


def resample_periodic(merged: pd.DataFrame, frequency: str) -> pd.DataFrame:
    """
    Last observation per month ("monthly") or ISO week ("weekly").

    Returns one row per bucket with the bucket's returns versus the previous
    bucket, the mean T-Bill rate in the bucket and excess returns.
    """
    df = merged.copy()
    if frequency == "weekly":
        df["key"] = _iso_week_key(df["date"])
    else:
        df["key"] = df["date"].str[:7]

    grouped = df.groupby("key", sort=True)
    out = grouped.agg(
        portfolio_value=("portfolio_value", "last"),
        spx_value=("spx_value", "last"),
        tb_rate=("tb_rate", "mean"),
    ).reset_index()

    factor = PERIODS_PER_YEAR[frequency]
    out["port_return"] = (out["portfolio_value"] / out["portfolio_value"].shift(1) - 1).fillna(0.0)
    out["spx_return"] = (out["spx_value"] / out["spx_value"].shift(1) - 1).fillna(0.0)
    out["rf"] = out["tb_rate"] / factor
    out["port_excess"] = out["port_return"] - out["rf"]
    out["spx_excess"] = out["spx_return"] - out["rf"]
    return out


def _bucket_slice(periodic: pd.DataFrame, frequency: str, start_date: str, end_date: str) -> pd.DataFrame:
    if frequency == "weekly":
        keys = _iso_week_key(pd.Series([start_date, end_date]))
        start_key, end_key = keys.iloc[0], keys.iloc[1]
    else:
        start_key, end_key = start_date[:7], end_date[:7]
    mask = (periodic["key"] >= start_key) & (periodic["key"] <= end_key)
    return periodic[mask]


def _population_std(values) -> float:
    return float(np.std(np.asarray(values, dtype=float)))


def _daily_drawdown(values) -> float:
    dd = calculate_max_drawdown([{"date": "", "value": v} for v in values])
    return dd if dd is not None else 0.0


def calculate_period_metrics(merged: pd.DataFrame, name: str, start_date: str, end_date: str) -> dict:
    """
    Portfolio vs benchmark statistics for one period.

    Frequency by period type:
        YTD, 3Y Cumulative -> weekly buckets, annualized x52
        full calendar years -> monthly buckets, annualized x12
    Max drawdown uses the daily series; capture ratios use monthly buckets.
    """
    daily = merged[(merged["date"] >= start_date) & (merged["date"] <= end_date)]
    if len(daily) < 2:
        raise InsufficientDataError(f"Insufficient data for period {name}")

    frequency = "weekly" if name in WEEKLY_PERIODS else "monthly"
    factor = PERIODS_PER_YEAR[frequency]

    port_return = daily["portfolio_value"].iloc[-1] / daily["portfolio_value"].iloc[0] - 1
    spx_return = daily["spx_value"].iloc[-1] / daily["spx_value"].iloc[0] - 1

    buckets = _bucket_slice(resample_periodic(merged, frequency), frequency, start_date, end_date)
    rf_annual = float(buckets["tb_rate"].mean()) if len(buckets) else DEFAULT_TBILL_RATE

    # First bucket is the anchor (return measured from before the period)
    periodic = buckets.iloc[1:]
    port_returns = periodic["port_return"].tolist()
    spx_returns = periodic["spx_return"].tolist()
    port_excess = periodic["port_excess"].tolist()
    spx_excess = periodic["spx_excess"].tolist()

    port_std = _population_std(port_returns) * np.sqrt(factor) if len(port_returns) >= 2 else None
    spx_std = _population_std(spx_returns) * np.sqrt(factor) if len(spx_returns) >= 2 else None

    port_beta = None
    port_alpha = None
    if len(port_excess) >= 3:
        bench_var = sample_variance(spx_excess)
        if bench_var != 0:
            port_beta = sample_covariance(port_excess, spx_excess) / bench_var
            port_alpha = (np.mean(port_excess) - port_beta * np.mean(spx_excess)) * factor

    port_sharpe = None
    if port_std and len(port_excess) >= 2:
        port_sharpe = np.mean(port_excess) * factor / port_std
    spx_sharpe = None
    if spx_std and len(spx_excess) >= 2:
        spx_sharpe = np.mean(spx_excess) * factor / spx_std

    monthly = _bucket_slice(resample_periodic(merged, "monthly"), "monthly", start_date, end_date).iloc[1:]
    monthly_port = monthly["port_return"].tolist()
    monthly_spx = monthly["spx_return"].tolist()

    return {
        "periodName": name,
        "startDate": start_date,
        "endDate": end_date,
        "portfolioReturn": _round(port_return, 4),
        "benchmarkReturn": _round(spx_return, 4),
        "excessReturn": _round(port_return - spx_return, 4),
        "portfolioStdDev": _round(port_std, 4),
        "portfolioAlpha": _round(port_alpha, 4),
        "portfolioBeta": _round(port_beta, 2),
        "portfolioSharpeRatio": _round(port_sharpe, 2),
        "portfolioMaxDrawdown": _round(_daily_drawdown(daily["portfolio_value"]), 4),
        "portfolioUpCapture": _round(calculate_capture_ratio(monthly_port, monthly_spx, up=True, default=None), 2),
        "portfolioDownCapture": _round(calculate_capture_ratio(monthly_port, monthly_spx, up=False, default=None), 2),
        "benchmarkStdDev": _round(spx_std, 4),
        "benchmarkAlpha": BENCHMARK_SELF_METRICS["alpha"],
        "benchmarkBeta": BENCHMARK_SELF_METRICS["beta"],
        "benchmarkSharpeRatio": _round(spx_sharpe, 2),
        "benchmarkMaxDrawdown": _round(_daily_drawdown(daily["spx_value"]), 4),
        "benchmarkUpCapture": BENCHMARK_SELF_METRICS["upCapture"],
        "benchmarkDownCapture": BENCHMARK_SELF_METRICS["downCapture"],
        "riskFreeRate": _round(rf_annual, 4),
        "numMonths": len(port_returns),
    }


def auto_generate_periods(merged: pd.DataFrame, as_of: str) -> dict:
    """
    {period name: (start, end)} for YTD and the two previous calendar years.

    A period starts on the last trading day BEFORE it begins, so its first
    return covers the first day of the period. Periods the data does not
    fully cover are left out.
    """
    periods = {}
    dates = merged["date"].tolist()
    data_start = dates[0]
    as_of_year = int(as_of[:4])

    ytd_start = f"{as_of_year}-01-01"
    if data_start <= ytd_start:
        prior = [d for d in dates if d < ytd_start]
        if prior:
            periods["YTD"] = (prior[-1], as_of)

    for year in (as_of_year - 1, as_of_year - 2):
        year_start = f"{year}-01-01"
        year_end = f"{year}-12-31"
        if data_start > year_start:
            continue
        prior = [d for d in dates if d < year_start]
        in_year = [d for d in dates if d <= year_end]
        if prior and in_year:
            periods[str(year)] = (prior[-1], in_year[-1])

    return periods


def generate_chart_data(merged: pd.DataFrame, name: str, years_back: int = METRICS_LOOKBACK_YEARS):
    """Cumulative returns from 0 over the trailing window, for the comparison chart."""
    if merged.empty:
        return None

    end = pd.Timestamp(merged["date"].iloc[-1])
    window_start = (end - pd.DateOffset(years=years_back)).strftime("%Y-%m-%d")
    chart = merged[merged["date"] >= max(window_start, merged["date"].iloc[0])]
    if chart.empty:
        return None

    port_cum = (chart["portfolio_value"] / chart["portfolio_value"].iloc[0] - 1).round(4).tolist()
    spx_cum = (chart["spx_value"] / chart["spx_value"].iloc[0] - 1).round(4).tolist()

    return {
        "dates": chart["date"].tolist(),
        "portfolioReturns": port_cum,
        "benchmarkReturns": spx_cum,
        "portfolioName": name,
        "benchmarkName": CHART_BENCHMARK_NAME,
        "startDate": chart["date"].iloc[0],
        "endDate": chart["date"].iloc[-1],
        "portfolioFinalReturn": port_cum[-1],
        "benchmarkFinalReturn": spx_cum[-1],
        "chartTitle": f"{years_back}-Year Cumulative Returns vs {CHART_BENCHMARK_NAME}",
    }


def _sample_size_warning(period: dict):
    n = period["numMonths"]
    if n < MIN_PERIODS_RELIABLE:
        return f"{period['periodName']}: Only {n} periods of data. Results may be unreliable."
    if n < MIN_PERIODS_RECOMMENDED:
        return (
            f"{period['periodName']}: {n} periods is below the recommended "
            f"{MIN_PERIODS_RECOMMENDED} for statistical reliability."
        )
    return None


def analyze_portfolio(values: list, benchmark: list, tbill_rates: dict, name: str, as_of: str = None) -> dict:
    merged = merge_with_market(values, benchmark, tbill_rates)
    if merged.empty:
        raise InsufficientDataError("No overlapping data between portfolio and market")

    effective_as_of = as_of or merged["date"].iloc[-1]
    warnings = []
    periods = []

    for period_name, (start, end) in auto_generate_periods(merged, effective_as_of).items():
        try:
            period = calculate_period_metrics(merged, period_name, start, end)
        except InsufficientDataError as e:
            warnings.append(f"{period_name}: Could not calculate - {e}")
            continue
        periods.append(period)
        warning = _sample_size_warning(period)
        if warning:
            warnings.append(warning)

    cumulative = None
    three_years_back = (pd.Timestamp(effective_as_of) - pd.DateOffset(years=3)).strftime("%Y-%m-%d")
    if merged["date"].iloc[0] <= three_years_back:
        start_rows = merged[merged["date"] >= three_years_back]
        if not start_rows.empty:
            try:
                cumulative = calculate_period_metrics(
                    merged, CUMULATIVE_PERIOD, start_rows["date"].iloc[0], effective_as_of
                )
            except InsufficientDataError as e:
                warnings.append(f"{CUMULATIVE_PERIOD}: Could not calculate - {e}")

    return {
        "portfolioName": name,
        "asOfDate": effective_as_of,
        "generatedAt": _utc_now_iso(),
        "dataStartDate": merged["date"].iloc[0],
        "dataEndDate": merged["date"].iloc[-1],
        "periods": periods,
        "cumulative3Y": cumulative,
        "chartData": generate_chart_data(merged, name),
        "methodology": METHODOLOGY,
        "warnings": warnings,
    }


def build_comparison(results: dict) -> dict:
    """
    Side-by-side structure for the comparison table and chart.

    metrics[key]["byPeriod"][period][portfolio] -> value
    metrics[key]["benchmark"][period] -> benchmark value
    """
    names = sort_portfolio_names(results)
    first = results[names[0]]
    period_names = [p["periodName"] for p in first["periods"]]

    metrics = {}
    for key, attr, display in COMPARISON_METRICS:
        bench_attr = attr.replace("portfolio", "benchmark", 1)
        entry = {"displayName": display, "byPeriod": {}, "benchmark": {}}
        for period_name in period_names:
            entry["byPeriod"][period_name] = {}
            for name in names:
                match = next((p for p in results[name]["periods"] if p["periodName"] == period_name), None)
                if match:
                    entry["byPeriod"][period_name][name] = match[attr]
            bench_period = next(p for p in first["periods"] if p["periodName"] == period_name)
            entry["benchmark"][period_name] = bench_period[bench_attr]
        metrics[key] = entry

    comparison = {"portfolioNames": names, "periodNames": period_names, "metrics": metrics}

    if first["cumulative3Y"]:
        bench = first["cumulative3Y"]
        comparison["cumulative3Y"] = {
            "portfolios": {},
            "benchmark": {
                "return": bench["benchmarkReturn"],
                "stdDev": bench["benchmarkStdDev"],
                "sharpe": bench["benchmarkSharpeRatio"],
                "maxDrawdown": bench["benchmarkMaxDrawdown"],
            },
        }
        for name in names:
            cum = results[name]["cumulative3Y"]
            if cum:
                comparison["cumulative3Y"]["portfolios"][name] = {
                    "return": cum["portfolioReturn"],
                    "stdDev": cum["portfolioStdDev"],
                    "alpha": cum["portfolioAlpha"],
                    "beta": cum["portfolioBeta"],
                    "sharpe": cum["portfolioSharpeRatio"],
                    "maxDrawdown": cum["portfolioMaxDrawdown"],
                }

    if first["chartData"]:
        chart = first["chartData"]
        comparison["chart"] = {
            "dates": chart["dates"],
            "benchmarkName": chart["benchmarkName"],
            "benchmarkReturns": chart["benchmarkReturns"],
            "benchmarkFinalReturn": chart["benchmarkFinalReturn"],
            "portfolios": {
                name: {
                    "returns": results[name]["chartData"]["portfolioReturns"],
                    "finalReturn": results[name]["chartData"]["portfolioFinalReturn"],
                }
                for name in names
                if results[name]["chartData"]
            },
            "chartTitle": chart["chartTitle"],
        }

    return comparison


def period_to_row(result: dict, period: dict) -> dict:
    """PeriodMetrics -> clockwise_portfolio_periods row."""
    return {
        "portfolio_name": result["portfolioName"],
        "period_name": period["periodName"],
        "start_date": period["startDate"],
        "end_date": period["endDate"],
        "portfolio_return": period["portfolioReturn"],
        "benchmark_return": period["benchmarkReturn"],
        "excess_return": period["excessReturn"],
        "portfolio_std_dev": period["portfolioStdDev"],
        "portfolio_alpha": period["portfolioAlpha"],
        "portfolio_beta": period["portfolioBeta"],
        "portfolio_sharpe_ratio": period["portfolioSharpeRatio"],
        "portfolio_max_drawdown": period["portfolioMaxDrawdown"],
        "portfolio_up_capture": period["portfolioUpCapture"],
        "portfolio_down_capture": period["portfolioDownCapture"],
        "benchmark_std_dev": period["benchmarkStdDev"],
        "benchmark_sharpe_ratio": period["benchmarkSharpeRatio"],
        "benchmark_max_drawdown": period["benchmarkMaxDrawdown"],
        "risk_free_rate": period["riskFreeRate"],
        "num_months": period["numMonths"],
        "as_of_date": result["asOfDate"],
        "data_start_date": result["dataStartDate"],
        "data_end_date": result["dataEndDate"],
        "generated_at": result["generatedAt"],
    }


def analyze_portfolio_periods(portfolios: dict, market: dict, as_of: str = None, store=None) -> dict:
    """
    Period analysis for every uploaded portfolio against the benchmark.

    Per-portfolio failures become warnings; it only raises when nothing
    could be analyzed at all.
    """
    benchmark = market.get("benchmark") or []
    tbill_rates = market.get("tbill_rates") or {}

    if not benchmark:
        raise InsufficientDataError(market.get("warning") or "Benchmark data is unavailable")

    results = {}
    warnings = []
    for name in sort_portfolio_names(portfolios):
        values = portfolios[name]
        if not values:
            continue
        try:
            result = analyze_portfolio(values, benchmark, tbill_rates, name, as_of)
        except InsufficientDataError as e:
            warnings.append(f"[{name}] Analysis failed: {e}")
            continue
        results[name] = result
        warnings.extend(f"[{name}] {w}" for w in result["warnings"])

    if not results:
        raise InsufficientDataError("No portfolios could be analyzed")

    first = results[next(iter(results))]
    output = {
        "asOfDate": as_of or first["asOfDate"],
        "generatedAt": _utc_now_iso(),
        "dataStartDate": first["dataStartDate"],
        "dataEndDate": first["dataEndDate"],
        "portfolios": results,
        "comparison": build_comparison(results),
        "methodology": METHODOLOGY,
        "warnings": warnings,
    }

    if store is not None:
        rows = []
        for result in results.values():
            for period in result["periods"]:
                rows.append(period_to_row(result, period))
            if result["cumulative3Y"]:
                rows.append(period_to_row(result, result["cumulative3Y"]))
        try:
            store.upsert_periods(rows)
        except StoreError as e:
            logger.warning("Could not store period rows: %s", e)
            output["warnings"].append(f"Period results were not saved: {e}")

    return output


def run_period_analysis(content: str, store=None) -> dict:
    """CSV text (or a parsed upload) -> market data for its window -> analyze_portfolio_periods."""
    parsed, portfolios = _load_portfolios(content)

    start_date, end_date = _upload_window(portfolios)
    market = get_market_data_safe(start_date, end_date)
    return analyze_portfolio_periods(portfolios, market, parsed["asOfDate"], store)


def comparison_from_period_rows(rows: list) -> dict:
    """
    Rebuild the comparison structure from stored period rows so the periods
    page can render without a re-upload. Chart data is not stored.
    """
    if not rows:
        return None

    by_portfolio = {}
    for row in rows:
        by_portfolio.setdefault(row["portfolio_name"], []).append(row)

    names = sort_portfolio_names(by_portfolio)
    period_names = []
    for row in rows:
        if row["period_name"] != CUMULATIVE_PERIOD and row["period_name"] not in period_names:
            period_names.append(row["period_name"])

    column_for = {
        "portfolioReturn": ("portfolio_return", "benchmark_return"),
        "portfolioStdDev": ("portfolio_std_dev", "benchmark_std_dev"),
        "portfolioAlpha": ("portfolio_alpha", None),
        "portfolioBeta": ("portfolio_beta", None),
        "portfolioSharpeRatio": ("portfolio_sharpe_ratio", "benchmark_sharpe_ratio"),
        "portfolioMaxDrawdown": ("portfolio_max_drawdown", "benchmark_max_drawdown"),
        "portfolioUpCapture": ("portfolio_up_capture", None),
        "portfolioDownCapture": ("portfolio_down_capture", None),
    }
    fixed_benchmark = {
        "portfolioAlpha": BENCHMARK_SELF_METRICS["alpha"],
        "portfolioBeta": BENCHMARK_SELF_METRICS["beta"],
        "portfolioUpCapture": BENCHMARK_SELF_METRICS["upCapture"],
        "portfolioDownCapture": BENCHMARK_SELF_METRICS["downCapture"],
    }

    metrics = {}
    for key, attr, display in COMPARISON_METRICS:
        port_col, bench_col = column_for[attr]
        entry = {"displayName": display, "byPeriod": {}, "benchmark": {}}
        for period_name in period_names:
            entry["byPeriod"][period_name] = {}
            sample = None
            for name in names:
                row = next((r for r in by_portfolio[name] if r["period_name"] == period_name), None)
                if row:
                    entry["byPeriod"][period_name][name] = row.get(port_col)
                    sample = sample or row
            if bench_col is None:
                entry["benchmark"][period_name] = fixed_benchmark[attr]
            elif sample:
                entry["benchmark"][period_name] = sample.get(bench_col)
        metrics[key] = entry

    return {
        "asOfDate": rows[0].get("as_of_date"),
        "portfolioNames": names,
        "periodNames": period_names,
        "metrics": metrics,
    }
