import logging

import pandas as pd
import plotly.graph_objects as go

from portfolio_engine import (
    process_upload,
    run_period_analysis,
    sort_portfolio_names,
    comparison_from_period_rows,
    CUMULATIVE_PERIOD,
)
from metrics_store import get_store
from data_loader import load_portfolio_csv
from exceptions import InsufficientDataError, StoreError
from financial_math import fv_lump, fv_contrib, annualize_return, BENCHMARK_SELF_METRICS
from report_formatting import (
    fmt_pct_clean,
    fmt_pct_signed,
    fmt_number_clean,
    fmt_ratio_pct,
)
from config import GLOBAL_PALETTE, BENCHMARK_NAME, METRICS_LOOKBACK_YEARS

logger = logging.getLogger(__name__)

# ============================================================
# GLOBAL DATA CACHE (Server-Side)
# ============================================================
_DATA_CACHE = None


def get_data():
    """Retrieve cached data, initializing from the metrics store if necessary."""
    global _DATA_CACHE
    if _DATA_CACHE is None:
        _DATA_CACHE = load_stored_data()
    return _DATA_CACHE


def refresh_data():
    """Force a reload of the cache from the metrics store."""
    global _DATA_CACHE
    _DATA_CACHE = load_stored_data()
    return _DATA_CACHE


def load_stored_data(store=None):
    """
    Last saved portfolio rows and period rows.

    Returns:
        dict: {portfolios, comparison, upload, periods, error}
    """
    store = store or get_store()
    data = {"portfolios": [], "comparison": None, "upload": None, "periods": None, "error": None}
    try:
        rows = store.list_portfolios()
        by_name = {row["name"]: row for row in rows}
        data["portfolios"] = [by_name[name] for name in sort_portfolio_names(by_name)]
        data["comparison"] = comparison_from_period_rows(store.list_periods())
    except StoreError as e:
        logger.error("Could not load stored metrics: %s", e)
        data["error"] = str(e)
    return data


def ingest_upload(content, updated_by, store=None):
    """
    Admin upload from the dashboard: trailing metrics first, then the
    period analysis on the same file. A period failure is kept as a
    warning so the metrics still show.
    """
    global _DATA_CACHE
    store = store or get_store()

    summary = process_upload(content, updated_by, store)

    periods = None
    try:
        periods = run_period_analysis(content, store)
    except InsufficientDataError as e:
        logger.warning("Period analysis skipped: %s", e)
        summary["warnings"].append(f"Period analysis skipped: {e}")

    data = load_stored_data(store)
    data["upload"] = summary
    data["periods"] = periods
    if periods:
        data["comparison"] = periods["comparison"]
    _DATA_CACHE = data
    return data


def ingest_file(path, updated_by, store=None):
    """Same as ingest_upload for a CSV on disk (scheduled refresh)."""
    return ingest_upload(load_portfolio_csv(path), updated_by, store)

# ============================================================
# TABLES
# ============================================================

METRICS_TABLE_COLUMNS = [
    "Portfolio", "3Y Return", "Annualized", "Std Dev", "Alpha", "Beta",
    "Sharpe", "Max Drawdown", "Up Capture", "Down Capture",
]


def get_metrics_table(rows):
    """
    Stored clockwise_portfolios rows -> display DataFrame for the AG Grid.
    Missing stats show as N/A.
    """
    if not rows:
        return pd.DataFrame(columns=METRICS_TABLE_COLUMNS)

    table = []
    for row in rows:
        table.append({
            "Portfolio": row["name"],
            "3Y Return": fmt_pct_clean(row.get("return_3y")),
            "Annualized": fmt_pct_clean(annualize_return(row.get("return_3y"), METRICS_LOOKBACK_YEARS)),
            "Std Dev": fmt_pct_clean(row.get("std_dev")),
            "Alpha": fmt_pct_signed(row.get("alpha")),
            "Beta": fmt_number_clean(row.get("beta")),
            "Sharpe": fmt_number_clean(row.get("sharpe_ratio")),
            "Max Drawdown": fmt_pct_clean(row.get("max_drawdown")),
            "Up Capture": fmt_ratio_pct(row.get("up_capture")),
            "Down Capture": fmt_ratio_pct(row.get("down_capture")),
        })
    return pd.DataFrame(table, columns=METRICS_TABLE_COLUMNS)


def _format_metric(key, value):
    if key in ("beta", "sharpe"):
        return fmt_number_clean(value)
    if key in ("upCapture", "downCapture"):
        return fmt_ratio_pct(value)
    if key == "alpha":
        return fmt_pct_signed(value)
    return fmt_pct_clean(value)


def get_period_comparison_table(comparison, period_name):
    """
    One row per metric, one column per portfolio plus the benchmark,
    for a single period of the comparison structure.
    """
    if not comparison or period_name not in comparison.get("periodNames", []):
        return pd.DataFrame()

    names = comparison["portfolioNames"]
    rows = []
    for key, entry in comparison["metrics"].items():
        values = entry["byPeriod"].get(period_name, {})
        row = {"Metric": entry["displayName"]}
        for name in names:
            row[name] = _format_metric(key, values.get(name))
        row[BENCHMARK_NAME] = _format_metric(key, entry["benchmark"].get(period_name))
        rows.append(row)
    return pd.DataFrame(rows, columns=["Metric"] + names + [BENCHMARK_NAME])


def get_cumulative_summary_table(comparison):
    """3Y cumulative block as a DataFrame, or empty if the data is too short."""
    cumulative = (comparison or {}).get("cumulative3Y")
    if not cumulative:
        return pd.DataFrame()

    rows = []
    for name in sort_portfolio_names(cumulative["portfolios"]):
        stats = cumulative["portfolios"][name]
        rows.append({
            "Portfolio": name,
            "Return": fmt_pct_clean(stats["return"]),
            "Std Dev": fmt_pct_clean(stats["stdDev"]),
            "Alpha": fmt_pct_signed(stats["alpha"]),
            "Beta": fmt_number_clean(stats["beta"]),
            "Sharpe": fmt_number_clean(stats["sharpe"]),
            "Max Drawdown": fmt_pct_clean(stats["maxDrawdown"]),
        })
    bench = cumulative["benchmark"]
    rows.append({
        "Portfolio": BENCHMARK_NAME,
        "Return": fmt_pct_clean(bench["return"]),
        "Std Dev": fmt_pct_clean(bench["stdDev"]),
        "Alpha": fmt_pct_signed(BENCHMARK_SELF_METRICS["alpha"]),
        "Beta": fmt_number_clean(BENCHMARK_SELF_METRICS["beta"]),
        "Sharpe": fmt_number_clean(bench["sharpe"]),
        "Max Drawdown": fmt_pct_clean(bench["maxDrawdown"]),
    })
    return pd.DataFrame(rows)


def period_options(comparison):
    """Dropdown options for the period selector, 3Y cumulative excluded."""
    if not comparison:
        return []
    return [
        {"label": p, "value": p}
        for p in comparison.get("periodNames", [])
        if p != CUMULATIVE_PERIOD
    ]

# ============================================================
# CHARTS
# ============================================================

def _hex_to_rgba(hex_code, alpha=0.2):
    """Helper to convert hex to rgba string."""
    hex_code = hex_code.lstrip('#')
    return f"rgba({int(hex_code[0:2], 16)}, {int(hex_code[2:4], 16)}, {int(hex_code[4:6], 16)}, {alpha})"


def _template(theme):
    return "plotly_white" if theme == "light" else "plotly_dark"


def get_cumulative_return_chart(comparison, theme="light"):
    """Trailing cumulative returns of every portfolio vs the benchmark."""
    chart = (comparison or {}).get("chart")
    if not chart:
        return go.Figure()

    fig = go.Figure()
    for i, (name, series) in enumerate(chart["portfolios"].items()):
        fig.add_trace(go.Scatter(
            x=chart["dates"],
            y=[r * 100 for r in series["returns"]],
            mode='lines',
            name=name,
            line=dict(color=GLOBAL_PALETTE[i % len(GLOBAL_PALETTE)], width=2),
            hovertemplate=f"<b>{name}</b>: %{{y:.2f}}%<extra></extra>"
        ))

    bench_name = chart["benchmarkName"]
    fig.add_trace(go.Scatter(
        x=chart["dates"],
        y=[r * 100 for r in chart["benchmarkReturns"]],
        mode='lines',
        name=bench_name,
        line=dict(color="#888888", width=2, dash='dash'),
        hovertemplate=f"<b>{bench_name}</b>: %{{y:.2f}}%<extra></extra>"
    ))

    fig.update_layout(
        title=chart.get("chartTitle"),
        xaxis_title="Date",
        yaxis_title="Cumulative Return (%)",
        template=_template(theme),
        hovermode="x unified"
    )
    return fig


def get_goal_projection_chart(goal_analysis, theme="light"):
    """
    Goal projection fan chart.

    With a simulation the 5th-95th percentile band is shaded around the
    median path. Without one, deterministic growth lines are drawn at the
    expected return and +/- 2 points, with and without contributions.
    """
    if not goal_analysis:
        return go.Figure()

    goal = goal_analysis["goalAmount"]
    fig = go.Figure()
    simulation = goal_analysis.get("simulation")

    if simulation:
        years = simulation["years"]
        pct = simulation["percentiles"]
        band_color = GLOBAL_PALETTE[0]

        fig.add_trace(go.Scatter(
            x=years, y=pct["95"],
            mode='lines',
            name="95th Percentile",
            line=dict(color=band_color, width=0),
            hovertemplate="<b>95th</b>: %{y:$,.0f}<extra></extra>"
        ))
        fig.add_trace(go.Scatter(
            x=years, y=pct["5"],
            mode='lines',
            name="5th Percentile",
            fill='tonexty',
            fillcolor=_hex_to_rgba(band_color, 0.2),
            line=dict(color=band_color, width=0),
            hovertemplate="<b>5th</b>: %{y:$,.0f}<extra></extra>"
        ))
        fig.add_trace(go.Scatter(
            x=years, y=pct["50"],
            mode='lines',
            name="Median",
            line=dict(color=band_color, width=3),
            hovertemplate="<b>Median</b>: %{y:$,.0f}<extra></extra>"
        ))
    else:
        horizon = goal_analysis["timeHorizon"]
        years = list(range(int(horizon) + 1))
        if years[-1] != horizon:
            years.append(horizon)
        initial_value = goal_analysis["currentAmount"]
        monthly_contrib = goal_analysis.get("monthlyContribution") or 0
        rate = goal_analysis["expectedReturn"]
        rates = [rate - 0.02, rate, rate + 0.02]

        for i, r in enumerate(rates):
            vals = [fv_lump(initial_value, r, yr) + fv_contrib(monthly_contrib, r, yr) for yr in years]
            label = f"{r * 100:.1f}%" + (f" + ${monthly_contrib:,.0f}/mo" if monthly_contrib else "")
            fig.add_trace(go.Scatter(
                x=years, y=vals,
                mode='lines',
                name=label,
                line=dict(color=GLOBAL_PALETTE[i], width=2, dash='solid' if i == 1 else 'dash'),
                hovertemplate=f"<b>{label}</b>: %{{y:$,.0f}}<extra></extra>"
            ))

    fig.add_hline(
        y=goal,
        line_dash="dot",
        line_color=GLOBAL_PALETTE[2],
        annotation_text=f"Goal ${goal:,.0f}",
        annotation_position="top left"
    )

    fig.update_layout(
        xaxis_title="Years",
        yaxis_title="Portfolio Value ($)",
        template=_template(theme),
        hovermode="x unified"
    )
    return fig


def get_probability_bar_chart(goal_analysis, theme="light"):
    """Downside / median / upside probability of success as bars."""
    if not goal_analysis:
        return go.Figure()

    prob = goal_analysis["probabilityOfSuccess"]
    labels = ["Downside", "Median", "Upside"]
    values = [prob["downside"] * 100, prob["median"] * 100, prob["upside"] * 100]

    fig = go.Figure(go.Bar(
        x=labels,
        y=values,
        marker_color=[GLOBAL_PALETTE[2], GLOBAL_PALETTE[0], GLOBAL_PALETTE[4]],
        text=[f"{v:.0f}%" for v in values],
        textposition="outside",
        hovertemplate="<b>%{x}</b>: %{y:.1f}%<extra></extra>"
    ))
    fig.update_layout(
        yaxis=dict(title="Probability of Success (%)", range=[0, 110]),
        template=_template(theme),
        showlegend=False
    )
    return fig

# ============================================================
# DATA SOURCE STATUS
# ============================================================

def get_source_summary(data):
    """Badge input describing where the latest figures came from."""
    if not data:
        return None
    upload = data.get("upload")
    warnings = list((upload or {}).get("warnings", []))
    if data.get("periods"):
        warnings.extend(data["periods"].get("warnings", []))
    return {
        "benchmarkAvailable": bool(upload and upload.get("benchmarkAvailable")),
        "fromStore": upload is None,
        "storeError": data.get("error"),
        "warnings": warnings,
    }
