import logging
from datetime import datetime

import dash
from dash import dcc, html, Input, Output, State
import dash_bootstrap_components as dbc

# Import wrappers
import dash_wrappers as dw
from api import api

# Import Pages
from pages import admin, periods, goal

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize App
app = dash.Dash(
    __name__,
    external_stylesheets=[dbc.themes.CYBORG],
    suppress_callback_exceptions=True,
    title="Clockwise Portfolio Metrics"
)
server = app.server
server.register_blueprint(api)

# Initialize Data Cache
try:
    dw.refresh_data()
    logger.info("Initial data load complete.")
except Exception as e:
    logger.error("Initial data load failed: %s", e)

# Sidebar Component
sidebar = html.Div(
    [
        html.H3("CLOCKWISE", className="display-6"),
        html.P("Portfolio Metrics", className="lead"),
        html.Hr(),

        dbc.Nav(
            [
                dbc.NavLink("Admin Upload", href="/", active="exact"),
                dbc.NavLink("Period Analysis", href="/periods", active="exact"),
                dbc.NavLink("Goal Planner", href="/goal", active="exact"),
            ],
            vertical=True,
            pills=True,
        ),

        html.Hr(),

        # Controls
        html.Div([
            dbc.Label("Theme"),
            dbc.Switch(id="theme-switch", label="Dark Mode", value=True, className="mb-2"),
            dbc.Button("Reload Saved Metrics", id="btn-reload-data", color="secondary", className="w-100"),
        ]),
    ],
    id="sidebar",
    className="sidebar",
)

# Content Container
content = html.Div(id="page-content", className="content")

# Main Layout
app.layout = html.Div(
    [
        dcc.Location(id="url"),

        # Stores for Global State
        dcc.Store(id="data-signal", data=datetime.now().isoformat()),
        dcc.Store(id="theme-store", data="dark"),

        # Toggle Button
        html.Button(
            "☰",
            id="btn-sidebar-toggle",
            className="btn btn-secondary",
            style={
                "position": "fixed",
                "top": "10px",
                "left": "10px",
                "zIndex": 1100,
                "borderRadius": "50%",
                "width": "40px",
                "height": "40px",
                "display": "flex",
                "alignItems": "center",
                "justifyContent": "center",
                "fontSize": "1.2rem",
                "paddingBottom": "4px"
            }
        ),

        sidebar,
        content,
    ],
    id="main-container",
    **{"data-theme": "dark"}
)

# Validation Layout (Required for multi-page apps with global callbacks)
app.validation_layout = html.Div([
    app.layout,
    admin.layout,
    periods.layout,
    goal.layout,
])

# ============================================================
# CALLBACKS
# ============================================================

# 1. Router
@app.callback(Output("page-content", "children"), [Input("url", "pathname")])
def render_page_content(pathname):
    if pathname == "/":
        return admin.layout
    elif pathname == "/periods":
        return periods.layout
    elif pathname == "/goal":
        return goal.layout
    return dbc.Container(
        [
            html.H1("404: Not found", className="text-danger"),
            html.Hr(),
            html.P(f"The pathname {pathname} was not recognised..."),
        ],
        className="py-3"
    )

# 2. Global State Updates
@app.callback(
    [Output("theme-store", "data"),
     Output("main-container", "data-theme")],
    [Input("theme-switch", "value")]
)
def update_theme(is_dark):
    theme = "dark" if is_dark else "light"
    return theme, theme


@app.callback(
    Output("data-signal", "data", allow_duplicate=True),
    [Input("btn-reload-data", "n_clicks")],
    prevent_initial_call=True
)
def reload_saved_metrics(n):
    dw.refresh_data()
    return datetime.now().isoformat()

# 3. Sidebar Toggle Logic
@app.callback(
    [Output("sidebar", "className"),
     Output("page-content", "className")],
    [Input("btn-sidebar-toggle", "n_clicks")],
    [State("sidebar", "className"),
     State("page-content", "className")]
)
def toggle_sidebar(n, sidebar_class, content_class):
    if n:
        if "hidden" in sidebar_class:
            return sidebar_class.replace(" hidden", ""), content_class.replace(" expanded", "")
        else:
            return sidebar_class + " hidden", content_class + " expanded"
    return sidebar_class, content_class

if __name__ == "__main__":
    app.run(debug=True)
