from dash import dcc, html, callback, Input, Output, State
import dash_bootstrap_components as dbc
import dash_ag_grid as dag

import dash_wrappers as dw
from portfolio_engine import METHODOLOGY

layout = html.Div([
    dbc.Row([
        dbc.Col(dbc.Card([
            dbc.CardBody([
                html.H5("Cumulative Returns vs S&P 500 TR", className="card-title"),
                dcc.Loading(dcc.Graph(id='period-cumulative-chart')),
                html.Small(
                    "Cumulative return from the start of the trailing 3-year window. "
                    "Only available right after an upload; saved results carry tables only.",
                    className="text-muted fst-italic"
                )
            ])
        ]), width=12, className="mb-4"),
    ]),

    dbc.Row([
        dbc.Col(dbc.Card([
            dbc.CardBody([
                html.H5("Period Comparison", className="card-title"),
                dbc.Row([
                    dbc.Col([
                        dbc.Label("Period"),
                        dcc.Dropdown(id="period-dropdown", clearable=False, className="mb-3 text-dark"),
                    ], width=4),
                ]),
                dcc.Loading(html.Div(id='period-table-container')),
            ])
        ]), width=12, className="mb-4"),
    ]),

    dbc.Row([
        dbc.Col(dbc.Card([
            dbc.CardBody([
                html.H5("3-Year Cumulative", className="card-title"),
                dcc.Loading(html.Div(id='cumulative-table-container')),
            ])
        ]), width=12, className="mb-4"),
    ]),

    # DISCLOSURE FOOTER
    html.Hr(),
    html.Div([
        html.P("Methodology:", className="fw-bold mb-1"),
        html.Ul([html.Li(f"{key}: {text}") for key, text in METHODOLOGY.items()], className="small text-muted"),
        html.Div(id="period-warnings"),
    ], className="mb-4")
])

# --- CALLBACKS ---

def _grid(grid_id, df, theme):
    return dag.AgGrid(
        id=grid_id,
        rowData=df.to_dict('records'),
        columnDefs=[{"field": c} for c in df.columns],
        defaultColDef={"flex": 1, "minWidth": 110, "resizable": True},
        className="ag-theme-alpine-dark" if theme == "dark" else "ag-theme-alpine",
        dashGridOptions={"domLayout": "autoHeight"}
    )


@callback(
    [Output('period-dropdown', 'options'),
     Output('period-dropdown', 'value')],
    [Input('data-signal', 'data')],
    [State('period-dropdown', 'value')]
)
def update_period_options(signal, current):
    options = dw.period_options(dw.get_data()["comparison"])
    values = [o["value"] for o in options]
    if current in values:
        return options, current
    return options, values[0] if values else None


@callback(
    [Output('period-cumulative-chart', 'figure'),
     Output('period-table-container', 'children'),
     Output('cumulative-table-container', 'children'),
     Output('period-warnings', 'children')],
    [Input('data-signal', 'data'),
     Input('theme-store', 'data'),
     Input('period-dropdown', 'value')]
)
def update_periods_page(signal, theme, period_name):
    data = dw.get_data()
    comparison = data["comparison"]
    empty = html.P("No portfolio data found. Upload a CSV to get started.", className="text-muted")

    chart = dw.get_cumulative_return_chart(comparison, theme)

    period_df = dw.get_period_comparison_table(comparison, period_name)
    period_table = _grid("period-grid", period_df, theme) if not period_df.empty else empty

    cumulative_df = dw.get_cumulative_summary_table(comparison)
    if cumulative_df.empty:
        cumulative_table = html.P("No 3-year cumulative results. The data may cover less than 3 years.", className="text-muted")
    else:
        cumulative_table = _grid("cumulative-grid", cumulative_df, theme)

    warnings = (data.get("periods") or {}).get("warnings", [])
    warning_list = html.Ul([html.Li(w) for w in warnings], className="small text-warning") if warnings else None

    return chart, period_table, cumulative_table, warning_list
