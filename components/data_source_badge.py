import dash_bootstrap_components as dbc
from dash import html

def create_data_source_badge(source_summary):
    """
    Creates a badge indicating where the displayed metrics came from.
    source_summary: {
        'benchmarkAvailable': bool,
        'fromStore': bool,          # loaded from saved rows, no upload this session
        'storeError': str or None,
        'warnings': list of str
    }
    """
    if not source_summary:
        return html.Div()

    warnings = source_summary.get('warnings', [])

    if source_summary.get('storeError'):
        label = "Store Offline"
        color = "danger"
        header = "Saved metrics could not be loaded from the database."
    elif source_summary.get('fromStore'):
        label = "Saved Metrics"
        color = "secondary"
        header = "Showing the last uploaded metrics from the database."
    elif source_summary.get('benchmarkAvailable'):
        label = "Yahoo Finance"
        color = "success"
        header = "Benchmark (^SP500TR) and T-Bill (^IRX) data sourced from Yahoo Finance."
    else:
        label = "No Benchmark"
        color = "warning"
        header = "Market data unavailable. Alpha, beta and capture ratios were left blank."

    if warnings and color == "success":
        color = "info"

    tooltip_content = html.Div([
        html.P(header, className="mb-2 fw-bold"),
        html.Hr(className="my-2") if warnings else None,
        html.Div([html.P(f"• {w}", className="small mb-0") for w in warnings]),
    ], style={"textAlign": "left", "padding": "5px"})

    badge = dbc.Badge(
        label,
        color=color,
        pill=True,
        id="data-source-badge",
        style={"cursor": "pointer", "fontSize": "0.8rem"}
    )

    return html.Div([
        badge,
        dbc.Tooltip(
            tooltip_content,
            target="data-source-badge",
            placement="bottom",
            className="source-tooltip"
        )
    ], style={"display": "inline-block", "marginLeft": "10px"})
