import pandas as pd
import pytest

import portfolio_engine
from data_loader import parse_portfolio_csv
from exceptions import CSVParseError, InsufficientDataError
from portfolio_engine import (
    sort_portfolio_names,
    strip_portfolio_prefix,
    calculate_portfolio_metrics,
    calculate_benchmark_row,
    process_upload,
    merge_with_market,
    resample_periodic,
    calculate_period_metrics,
    auto_generate_periods,
    analyze_portfolio_periods,
    run_period_analysis,
    comparison_from_period_rows,
    CUMULATIVE_PERIOD,
)


def test_sort_portfolio_names():
    names = [
        "S&P 500", "Zeta Fund", "Clockwise Growth", "Clockwise Max Income",
        "Alpha Fund", "Clockwise Max Growth", "Clockwise Moderate",
    ]
    assert sort_portfolio_names(names) == [
        "Clockwise Max Growth", "Clockwise Growth", "Clockwise Moderate",
        "Clockwise Max Income", "Alpha Fund", "Zeta Fund", "S&P 500",
    ]


def test_strip_portfolio_prefix():
    assert strip_portfolio_prefix("Clockwise Max Growth") == "Max Growth"
    assert strip_portfolio_prefix("Other") == "Other"

# ------------------------------------------------------------
# Upload pipeline
# ------------------------------------------------------------

def test_portfolio_metrics_without_benchmark(portfolio_series):
    metrics = calculate_portfolio_metrics("Clockwise Growth", portfolio_series)

    assert metrics["return3Y"] is not None
    assert metrics["stdDev"] > 0
    assert metrics["maxDrawdown"] <= 0
    assert metrics["alpha"] is None
    assert metrics["beta"] is None
    assert metrics["upCapture"] is None


def test_portfolio_metrics_annualized_return():
    values = [{"date": "2021-06-30", "value": 100.0}, {"date": "2024-06-30", "value": 133.1}]
    metrics = calculate_portfolio_metrics("Growth", values)

    assert metrics["return3Y"] == pytest.approx(0.331)
    assert metrics["annualizedReturn"] == pytest.approx(0.10, rel=1e-3)

    single = calculate_portfolio_metrics("Growth", values[:1])
    assert single["return3Y"] is None
    assert single["annualizedReturn"] is None


def test_process_upload_accepts_parsed_file(portfolio_csv, store, market_data):
    parsed = parse_portfolio_csv(portfolio_csv)
    summary = process_upload(parsed, "alice", store, market_data)

    assert summary["portfolioCount"] == 2
    assert summary["asOfDate"] == parsed["asOfDate"]


def test_benchmark_row_fixed_regression_stats(benchmark_series):
    row = calculate_benchmark_row(benchmark_series)
    assert row["name"] == "S&P 500"
    assert (row["alpha"], row["beta"], row["upCapture"], row["downCapture"]) == (0.0, 1.0, 1.0, 1.0)


def test_process_upload_saves_rows(portfolio_csv, store, market_data):
    summary = process_upload(portfolio_csv, "alice", store, market_data)

    assert summary["portfolioCount"] == 2
    assert summary["asOfDate"] == "2024-06-28"
    assert summary["portfolioNames"] == ["Clockwise Max Growth", "Clockwise Moderate"]
    assert summary["benchmarkAvailable"] is True
    assert all("dailyValues" not in m for m in summary["metrics"])

    rows = {row["name"]: row for row in store.list_portfolios()}
    assert set(rows) == {"Max Growth", "Moderate", "S&P 500"}
    assert rows["S&P 500"]["is_benchmark"] is True
    assert rows["Moderate"]["updated_by"] == "alice"

    # Moderate is a scaled copy of the benchmark
    assert rows["Moderate"]["beta"] == pytest.approx(1.0, abs=1e-3)
    assert rows["Moderate"]["alpha"] == pytest.approx(0.0, abs=1e-3)
    assert rows["Moderate"]["up_capture"] == pytest.approx(1.0, abs=1e-3)

    snapshot = store.latest_daily_values()
    assert snapshot["as_of_date"] == "2024-06-28"
    assert snapshot["uploaded_by"] == "alice"


def test_process_upload_without_market_data(portfolio_csv, store):
    market = {"benchmark": [], "tbill_rates": {}, "warning": "Could not fetch market data: offline"}
    summary = process_upload(portfolio_csv, "admin", store, market)

    assert summary["benchmarkAvailable"] is False
    assert summary["warnings"] == ["Could not fetch market data: offline"]

    rows = {row["name"]: row for row in store.list_portfolios()}
    assert "S&P 500" not in rows
    assert rows["Max Growth"]["alpha"] is None
    assert rows["Max Growth"]["std_dev"] > 0


def test_process_upload_fetches_market_once(portfolio_csv, store, patched_market, monkeypatch):
    calls = []
    monkeypatch.setattr(
        portfolio_engine, "get_market_data_safe",
        lambda start, end: calls.append((start, end)) or patched_market,
    )
    process_upload(portfolio_csv, "admin", store)

    assert calls == [("2021-01-04", "2024-06-28")]


def test_process_upload_rejects_empty_portfolios(store):
    with pytest.raises(CSVParseError):
        process_upload("Date,A\n1/2/24,-\n1/3/24,", "admin", store, {"benchmark": []})

# ------------------------------------------------------------
# Period analyzer
# ------------------------------------------------------------

def test_merge_with_market_rescales_benchmark(portfolio_series, benchmark_series):
    values = [dv for dv in portfolio_series if dv["date"] != "2021-01-05"]
    bench = [dv for dv in benchmark_series if dv["date"] != "2021-01-06"]

    merged = merge_with_market(values, bench, {"2021-01-07": 0.04})

    assert "2021-01-05" not in merged["date"].values
    assert "2021-01-06" not in merged["date"].values
    assert merged["spx_value"].iloc[0] == pytest.approx(merged["portfolio_value"].iloc[0])
    assert merged["tb_rate"].iloc[0] == 0.05
    assert merged.loc[merged["date"] == "2021-01-07", "tb_rate"].iloc[0] == 0.04


def test_merge_with_market_empty():
    assert merge_with_market([], [{"date": "2024-01-02", "value": 1.0}]).empty


def test_resample_monthly_uses_last_value():
    merged = pd.DataFrame({
        "date": ["2024-01-30", "2024-01-31", "2024-02-28", "2024-02-29"],
        "portfolio_value": [99.0, 100.0, 108.0, 110.0],
        "spx_value": [99.0, 100.0, 104.0, 105.0],
        "tb_rate": [0.048, 0.048, 0.06, 0.06],
    })
    monthly = resample_periodic(merged, "monthly")

    assert monthly["key"].tolist() == ["2024-01", "2024-02"]
    assert monthly["port_return"].iloc[1] == pytest.approx(0.10)
    assert monthly["spx_return"].iloc[1] == pytest.approx(0.05)
    assert monthly["rf"].iloc[1] == pytest.approx(0.005)


def test_auto_generate_periods(portfolio_series, benchmark_series):
    merged = merge_with_market(portfolio_series, benchmark_series)
    periods = auto_generate_periods(merged, "2024-06-28")

    assert list(periods) == ["YTD", "2023", "2022"]
    assert periods["YTD"] == ("2023-12-29", "2024-06-28")
    assert periods["2023"] == ("2022-12-30", "2023-12-29")


def test_period_metrics_identical_series(benchmark_series, tbill_rates):
    merged = merge_with_market(benchmark_series, benchmark_series, tbill_rates)
    period = calculate_period_metrics(merged, "2023", "2022-12-30", "2023-12-29")

    assert period["portfolioReturn"] == pytest.approx(period["benchmarkReturn"])
    assert period["excessReturn"] == pytest.approx(0.0)
    assert period["portfolioBeta"] == 1.0
    assert period["portfolioAlpha"] == pytest.approx(0.0)
    assert period["portfolioUpCapture"] == 1.0
    assert period["portfolioDownCapture"] == 1.0
    assert period["riskFreeRate"] == pytest.approx(0.045)
    assert period["numMonths"] == 12


def test_period_capture_empty_partition_is_none():
    dates = pd.bdate_range("2022-12-01", "2023-12-29")
    rising = [{"date": d.strftime("%Y-%m-%d"), "value": 100 * 1.001 ** i} for i, d in enumerate(dates)]
    merged = merge_with_market(rising, rising)

    period = calculate_period_metrics(merged, "2023", "2022-12-30", "2023-12-29")

    assert period["portfolioUpCapture"] == 1.0
    assert period["portfolioDownCapture"] is None
    assert period["benchmarkDownCapture"] == 1.0


def test_period_metrics_needs_two_rows(benchmark_series):
    merged = merge_with_market(benchmark_series, benchmark_series)
    with pytest.raises(InsufficientDataError):
        calculate_period_metrics(merged, "2030", "2030-01-01", "2030-12-31")


def test_analyze_portfolio_periods(portfolio_series, benchmark_series, market_data, store):
    portfolios = {
        "Clockwise Moderate": benchmark_series,
        "Clockwise Max Growth": portfolio_series,
    }
    result = analyze_portfolio_periods(portfolios, market_data, "2024-06-28", store)

    comparison = result["comparison"]
    assert comparison["portfolioNames"] == ["Clockwise Max Growth", "Clockwise Moderate"]
    assert comparison["periodNames"] == ["YTD", "2023", "2022"]
    assert comparison["metrics"]["beta"]["byPeriod"]["2023"]["Clockwise Moderate"] == 1.0
    assert comparison["metrics"]["beta"]["benchmark"]["2023"] == 1.0
    assert set(comparison["cumulative3Y"]["portfolios"]) == set(portfolios)
    assert comparison["chart"]["benchmarkName"] == "S&P 500 TR"
    assert comparison["chart"]["portfolios"]["Clockwise Moderate"]["returns"][0] == 0.0

    rows = store.list_periods()
    # 3 periods + 3Y cumulative per portfolio
    assert len(rows) == 8
    assert {r["period_name"] for r in rows} == {"YTD", "2023", "2022", CUMULATIVE_PERIOD}


def test_analyze_portfolio_periods_reruns_replace_rows(portfolio_series, market_data, store):
    portfolios = {"Clockwise Growth": portfolio_series}
    analyze_portfolio_periods(portfolios, market_data, "2024-06-28", store)
    analyze_portfolio_periods(portfolios, market_data, "2024-06-28", store)

    assert len(store.list_periods()) == 4


def test_analyze_portfolio_periods_requires_benchmark(portfolio_series):
    with pytest.raises(InsufficientDataError):
        analyze_portfolio_periods({"A": portfolio_series}, {"benchmark": [], "warning": "offline"})


def test_analyze_portfolio_periods_warns_on_short_sample(portfolio_series, market_data):
    result = analyze_portfolio_periods({"Clockwise Growth": portfolio_series}, market_data, "2024-06-28")
    # YTD has ~26 weekly buckets, below the recommended 36
    assert any("YTD" in w and "recommended" in w for w in result["warnings"])


def test_run_period_analysis_and_stored_comparison(portfolio_csv, patched_market, store):
    result = run_period_analysis(portfolio_csv, store)
    assert result["asOfDate"] == "2024-06-28"

    rebuilt = comparison_from_period_rows(store.list_periods())
    assert rebuilt["portfolioNames"] == ["Clockwise Max Growth", "Clockwise Moderate"]
    assert rebuilt["periodNames"] == ["YTD", "2023", "2022"]
    assert rebuilt["metrics"]["return"]["byPeriod"]["2023"]["Clockwise Max Growth"] == \
        result["comparison"]["metrics"]["return"]["byPeriod"]["2023"]["Clockwise Max Growth"]
    assert rebuilt["metrics"]["upCapture"]["benchmark"]["YTD"] == 1.0


def test_comparison_from_no_rows():
    assert comparison_from_period_rows([]) is None
