import base64
import logging
from datetime import datetime

import dash
from dash import dcc, html, callback, Input, Output, State
import dash_bootstrap_components as dbc
import dash_ag_grid as dag

import dash_wrappers as dw
from components.ai_brief import generate_upload_brief
from components.data_source_badge import create_data_source_badge
from data_loader import clear_market_data_cache
from exceptions import CSVParseError, StoreError
import config

logger = logging.getLogger(__name__)

layout = html.Div([
    dbc.Row([
        dbc.Col(dbc.Card([
            html.H5("Portfolio Data Upload", className="card-title p-2"),
            html.Div([
                html.P(
                    "Upload the daily portfolio values CSV (Date column plus one column per portfolio). "
                    "Trailing 3-year metrics and the period analysis are recalculated and saved."
                ),
                dcc.Upload(
                    id='upload-portfolios',
                    children=html.Div(['Drag and Drop or ', html.A('Select File')]),
                    style={
                        'width': '100%', 'height': '60px', 'lineHeight': '60px',
                        'borderWidth': '1px', 'borderStyle': 'dashed',
                        'borderRadius': '5px', 'textAlign': 'center', 'marginBottom': '20px'
                    },
                    accept=".csv",
                    multiple=False
                ),
                dbc.Button("Clear Market Data Cache", id="btn-clear-market-cache", color="secondary", size="sm"),
                dcc.Loading(html.Div(id='upload-status', className="text-muted mt-3")),
            ], className="p-3")
        ]), width=6),
        dbc.Col(dbc.Card([
            dbc.CardBody([
                html.H5("Upload Summary", className="card-title"),
                dcc.Markdown(id="upload-brief"),
                html.Div(id="upload-warnings"),
            ])
        ]), width=6),
    ], className="mb-4"),

    dbc.Row([
        dbc.Col(dbc.Card([
            html.Div([
                html.H5("Trailing 3-Year Metrics", className="card-title p-2", style={"display": "inline-block"}),
                html.Div(id="admin-data-source-container", style={"display": "inline-block"}),
            ]),
            dcc.Loading(html.Div(id='metrics-table-container')),
            html.Small(
                "Std dev and Sharpe use daily returns annualized with sqrt(252) and a 4% risk-free rate. "
                "Alpha, beta and capture ratios use monthly excess returns over 3-month T-Bills vs the S&P 500 Total Return index.",
                className="text-muted fst-italic p-2"
            )
        ]), width=12),
    ]),
])

# --- CALLBACKS ---

@callback(
    [Output('data-signal', 'data'),
     Output('upload-status', 'children')],
    [Input('upload-portfolios', 'contents')],
    [State('upload-portfolios', 'filename')],
    prevent_initial_call=True
)
def upload_portfolio_file(contents, filename):
    if not contents:
        return dash.no_update, ""

    if not filename or not filename.lower().endswith(".csv"):
        return dash.no_update, dbc.Alert("File must be a CSV", color="danger")

    content_type, content_string = contents.split(',')
    try:
        text = base64.b64decode(content_string).decode("utf-8-sig")
    except UnicodeDecodeError:
        return dash.no_update, dbc.Alert("File must be UTF-8 encoded text", color="danger")

    try:
        data = dw.ingest_upload(text, config.ADMIN_USERNAME)
    except CSVParseError as e:
        return dash.no_update, dbc.Alert(str(e), color="danger")
    except StoreError as e:
        logger.error("Failed to save portfolio metrics: %s", e)
        return dash.no_update, dbc.Alert(f"Database error: {e}", color="danger")

    count = data["upload"]["portfolioCount"]
    return datetime.now().isoformat(), dbc.Alert(
        f"Processed {filename}: {count} portfolios", color="success"
    )


@callback(
    Output('upload-status', 'children', allow_duplicate=True),
    [Input('btn-clear-market-cache', 'n_clicks')],
    prevent_initial_call=True
)
def clear_cache(n):
    clear_market_data_cache()
    return dbc.Alert("Market data cache cleared", color="info")


@callback(
    [Output('metrics-table-container', 'children'),
     Output('upload-brief', 'children'),
     Output('upload-warnings', 'children'),
     Output('admin-data-source-container', 'children')],
    [Input('data-signal', 'data'),
     Input('theme-store', 'data')]
)
def update_admin_page(signal, theme):
    data = dw.get_data()

    df = dw.get_metrics_table(data["portfolios"])
    if df.empty:
        table = html.P("No portfolio data found. Upload a CSV to get started.", className="text-muted p-3")
    else:
        table = html.Div(
            dag.AgGrid(
                id="metrics-grid",
                rowData=df.to_dict('records'),
                columnDefs=[{"field": c, "pinned": "left"} if c == "Portfolio" else {"field": c} for c in df.columns],
                defaultColDef={"flex": 1, "minWidth": 110, "sortable": True, "resizable": True},
                className="ag-theme-alpine-dark" if theme == "dark" else "ag-theme-alpine",
                dashGridOptions={"domLayout": "autoHeight"}
            ), style={'overflowX': 'auto'}
        )

    brief = generate_upload_brief(data.get("upload"))

    source_summary = dw.get_source_summary(data)
    warnings = source_summary["warnings"] if source_summary else []
    warning_list = html.Ul([html.Li(w) for w in warnings], className="small text-warning") if warnings else None

    return table, brief, warning_list, create_data_source_badge(source_summary)
