import config
import dash_wrappers as dw
import refresh_metrics
import portfolio_engine
from components.data_source_badge import create_data_source_badge
from components.goal_probability import analyze_goal
from report_formatting import fmt_pct_clean, fmt_pct_signed, fmt_dollar_clean, fmt_ratio_pct


def test_formatters():
    assert fmt_pct_clean(0.1234) == "12.34%"
    assert fmt_pct_clean(None) == "N/A"
    assert fmt_pct_signed(0.05, 1) == "+5.0%"
    assert fmt_dollar_clean(1234.5) == "$1,234"
    assert fmt_dollar_clean(-50) == "-$50"
    assert fmt_ratio_pct(1.05) == "105%"


def test_ingest_upload_populates_cache(portfolio_csv, store, patched_market):
    data = dw.ingest_upload(portfolio_csv, "alice", store)

    assert data["upload"]["portfolioCount"] == 2
    assert [row["name"] for row in data["portfolios"]] == ["Max Growth", "Moderate", "S&P 500"]
    assert data["comparison"]["chart"]
    assert dw.get_data() is data


def test_ingest_upload_without_benchmark_keeps_metrics(portfolio_csv, store, monkeypatch):
    monkeypatch.setattr(
        portfolio_engine, "get_market_data_safe",
        lambda start, end: {"benchmark": [], "tbill_rates": {}, "warning": "Could not fetch market data: offline"},
    )
    data = dw.ingest_upload(portfolio_csv, "admin", store)

    assert data["periods"] is None
    assert any("Period analysis skipped" in w for w in data["upload"]["warnings"])
    assert len(data["portfolios"]) == 2


def test_load_stored_data_rebuilds_comparison(portfolio_csv, store, patched_market):
    dw.ingest_upload(portfolio_csv, "admin", store)

    data = dw.load_stored_data(store)
    assert data["upload"] is None
    assert data["comparison"]["periodNames"] == ["YTD", "2023", "2022"]
    assert "chart" not in data["comparison"]


def test_metrics_table(portfolio_csv, store, patched_market):
    data = dw.ingest_upload(portfolio_csv, "admin", store)
    df = dw.get_metrics_table(data["portfolios"])

    assert list(df.columns) == dw.METRICS_TABLE_COLUMNS
    bench = df[df["Portfolio"] == "S&P 500"].iloc[0]
    assert bench["Beta"] == "1.00"
    assert bench["Up Capture"] == "100%"
    assert dw.get_metrics_table([]).empty

    growth = dw.get_metrics_table([{"name": "Growth", "return_3y": 0.331}]).iloc[0]
    assert growth["Annualized"] == "10.00%"
    assert growth["Alpha"] == "N/A"


def test_period_tables_and_chart(portfolio_csv, store, patched_market):
    comparison = dw.ingest_upload(portfolio_csv, "admin", store)["comparison"]

    table = dw.get_period_comparison_table(comparison, "2023")
    assert list(table.columns) == ["Metric", "Clockwise Max Growth", "Clockwise Moderate", "S&P 500"]
    assert table["Metric"].tolist()[0] == "Returns"
    assert dw.get_period_comparison_table(comparison, "1999").empty

    cumulative = dw.get_cumulative_summary_table(comparison)
    assert cumulative["Portfolio"].tolist() == ["Clockwise Max Growth", "Clockwise Moderate", "S&P 500"]

    assert [o["value"] for o in dw.period_options(comparison)] == ["YTD", "2023", "2022"]

    fig = dw.get_cumulative_return_chart(comparison, "dark")
    assert len(fig.data) == 3
    assert fig.data[-1].name == "S&P 500 TR"


def test_goal_projection_chart_simulation_band():
    analysis = analyze_goal({"intakeData": {
        "portfolio": {"totalValue": 100000, "stocks": 100},
        "goalAmount": 200000,
        "timeHorizon": 5,
    }})["goalAnalysis"]

    fig = dw.get_goal_projection_chart(analysis)
    assert [t.name for t in fig.data] == ["95th Percentile", "5th Percentile", "Median"]
    assert fig.data[1].fill == "tonexty"

    bars = dw.get_probability_bar_chart(analysis)
    assert list(bars.data[0].x) == ["Downside", "Median", "Upside"]


def test_goal_projection_chart_fallback_lines():
    analysis = analyze_goal({"intakeData": {
        "portfolio": {"totalValue": 100000},
        "timeHorizon": 3,
        "monthlyContribution": 200,
    }})["goalAnalysis"]

    fig = dw.get_goal_projection_chart(analysis)
    assert len(fig.data) == 3
    assert list(fig.data[1].x) == [0, 1, 2, 3]
    assert dw.get_goal_projection_chart(None).data == ()


def test_hex_to_rgba():
    assert dw._hex_to_rgba("#4C6A92", 0.5) == "rgba(76, 106, 146, 0.5)"


def test_data_source_badge_labels():
    assert create_data_source_badge(None).children is None
    offline = create_data_source_badge({"storeError": "down", "warnings": []})
    assert offline.children[0].children == "Store Offline"
    live = create_data_source_badge({"benchmarkAvailable": True, "fromStore": False, "warnings": ["x"]})
    assert live.children[0].children == "Yahoo Finance"
    assert live.children[0].color == "info"


def test_ingest_file_reads_csv_from_disk(tmp_path, portfolio_csv, store, patched_market):
    path = tmp_path / "values.csv"
    path.write_text("\ufeff" + portfolio_csv, encoding="utf-8")

    data = dw.ingest_file(str(path), "scheduler", store)

    assert data["upload"]["portfolioCount"] == 2
    assert {row["updated_by"] for row in store.list_portfolios()} == {"scheduler"}
    assert data["comparison"]["periodNames"] == ["YTD", "2023", "2022"]


def test_refresh_metrics_main(tmp_path, portfolio_csv, patched_market, monkeypatch):
    monkeypatch.setattr(config, "SUPABASE_URL", None)
    monkeypatch.setattr(config, "METRICS_STORE_FILE", str(tmp_path / "metrics.json"))
    path = tmp_path / "values.csv"
    path.write_text(portfolio_csv, encoding="utf-8")

    assert refresh_metrics.main([str(path), "cron"]) == 0
    assert [row["name"] for row in dw.get_data()["portfolios"]] == ["Max Growth", "Moderate", "S&P 500"]

    assert refresh_metrics.main([]) == 2
    assert refresh_metrics.main([str(tmp_path / "missing.csv")]) == 1
