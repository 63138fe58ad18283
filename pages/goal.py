from dash import dcc, html, callback, Input, Output, State
import dash_bootstrap_components as dbc

import dash_wrappers as dw
from components.ai_brief import generate_goal_brief
from components.goal_probability import (
    analyze_goal,
    ASSET_CLASSES,
    DEFAULT_ALLOCATION,
    DEFAULT_GOAL_AMOUNT,
    DEFAULT_TIME_HORIZON,
)
from config import TARGET_MONTHLY_CONTRIBUTION
from exceptions import GoalInputError

ASSET_CLASS_LABELS = {
    "stocks": "Stocks",
    "bonds": "Bonds",
    "cash": "Cash",
    "realEstate": "Real Estate",
    "commodities": "Commodities",
    "alternatives": "Alternatives",
}


def _allocation_input(asset_class):
    return dbc.Col([
        dbc.Label(f"{ASSET_CLASS_LABELS[asset_class]} (%)"),
        dbc.Input(
            id={'type': 'goal-allocation', 'index': asset_class},
            type="number", min=0, max=100, step=1,
            value=DEFAULT_ALLOCATION[asset_class],
            persistence=True, persistence_type='local'
        ),
    ], width=2)


layout = html.Div([
    dbc.Row([
        dbc.Col(dbc.Card([
            dbc.CardBody([
                html.H5("Goal Planner", className="card-title"),
                dbc.Row([
                    dbc.Col([
                        dbc.Label("Current Portfolio Value ($)"),
                        dbc.Input(id="goal-current-value", type="number", min=0, step=1000, value=250000,
                                  persistence=True, persistence_type='local'),
                    ], width=3),
                    dbc.Col([
                        dbc.Label("Goal Amount ($)"),
                        dbc.Input(id="goal-amount", type="number", min=0, step=1000, value=DEFAULT_GOAL_AMOUNT,
                                  persistence=True, persistence_type='local'),
                    ], width=3),
                    dbc.Col([
                        dbc.Label("Time Horizon (Years)"),
                        dbc.Input(id="goal-horizon", type="number", min=1, max=50, step=1, value=DEFAULT_TIME_HORIZON,
                                  persistence=True, persistence_type='local'),
                    ], width=3),
                    dbc.Col([
                        dbc.Label("Monthly Contribution ($)"),
                        dbc.Input(id="goal-contribution", type="number", min=0, step=50, value=TARGET_MONTHLY_CONTRIBUTION,
                                  persistence=True, persistence_type='local'),
                    ], width=3),
                ], className="mb-3"),
                dbc.Row([_allocation_input(ac) for ac in ASSET_CLASSES], className="mb-3"),
                dbc.Row([
                    dbc.Col([
                        dbc.Label("Year-1 Expected Return (%, optional)"),
                        dbc.Input(id="goal-year1-return", type="number", step=0.5,
                                  persistence=True, persistence_type='local'),
                    ], width=3),
                    dbc.Col([
                        dbc.Label("Goal Description"),
                        dbc.Input(id="goal-description", type="text", placeholder="Retirement",
                                  persistence=True, persistence_type='local'),
                    ], width=5),
                    dbc.Col(
                        dbc.Button("Run Analysis", id="btn-run-goal", color="primary", className="w-100 mt-4"),
                        width=4
                    ),
                ]),
                html.Div(id="goal-error", className="mt-3"),
            ])
        ]), width=12, className="mb-4"),
    ]),

    dbc.Row([
        dbc.Col(dbc.Card([
            dbc.CardBody([
                html.H5("Projected Portfolio Value", className="card-title"),
                dcc.Loading(dcc.Graph(id='goal-projection-chart')),
                html.Small(
                    "Monte Carlo paths draw monthly returns from a normal distribution. "
                    "The shaded band spans the 5th to 95th percentile outcomes.",
                    className="text-muted fst-italic"
                )
            ])
        ]), width=8, className="mb-4"),
        dbc.Col(dbc.Card([
            dbc.CardBody([
                html.H5("Probability of Success", className="card-title"),
                dcc.Loading(dcc.Graph(id='goal-probability-chart', config={'displayModeBar': False})),
            ])
        ]), width=4, className="mb-4"),
    ]),

    dbc.Row([
        dbc.Col(dbc.Card([
            dbc.CardBody([
                html.H5("Summary", className="card-title"),
                dcc.Markdown(id="goal-brief"),
                html.P(id="goal-recommendation", className="fst-italic"),
            ])
        ]), width=12, className="mb-4"),
    ]),

    html.Hr(),
    html.Ul([
        html.Li("Long-term returns use asset class averages; Year-1 returns use the input above when given."),
        html.Li("Probabilities are capped at 99%. Projections are hypothetical and not a guarantee of future results."),
    ], className="small text-muted mb-4"),
])

# --- CALLBACKS ---

def build_goal_payload(current_value, goal_amount, horizon, contribution, allocation, year1_pct=None, description=None):
    """Form values -> analyze_goal payload. Year-1 return is entered in percent."""
    portfolio = {"totalValue": current_value}
    portfolio.update(allocation)
    payload = {
        "intakeData": {
            "portfolio": portfolio,
            "goalAmount": goal_amount,
            "timeHorizon": horizon,
            "monthlyContribution": contribution,
            "goalDescription": description,
        }
    }
    if year1_pct is not None:
        payload["year1Return"] = year1_pct / 100.0
    return payload


@callback(
    [Output('goal-projection-chart', 'figure'),
     Output('goal-probability-chart', 'figure'),
     Output('goal-brief', 'children'),
     Output('goal-recommendation', 'children'),
     Output('goal-error', 'children')],
    [Input('btn-run-goal', 'n_clicks'),
     Input('theme-store', 'data')],
    [State('goal-current-value', 'value'),
     State('goal-amount', 'value'),
     State('goal-horizon', 'value'),
     State('goal-contribution', 'value'),
     State({'type': 'goal-allocation', 'index': ASSET_CLASSES[0]}, 'value'),
     State({'type': 'goal-allocation', 'index': ASSET_CLASSES[1]}, 'value'),
     State({'type': 'goal-allocation', 'index': ASSET_CLASSES[2]}, 'value'),
     State({'type': 'goal-allocation', 'index': ASSET_CLASSES[3]}, 'value'),
     State({'type': 'goal-allocation', 'index': ASSET_CLASSES[4]}, 'value'),
     State({'type': 'goal-allocation', 'index': ASSET_CLASSES[5]}, 'value'),
     State('goal-year1-return', 'value'),
     State('goal-description', 'value')]
)
def update_goal_page(n, theme, current_value, goal_amount, horizon, contribution, *rest):
    *weights, year1_pct, description = rest
    allocation = dict(zip(ASSET_CLASSES, (w or 0 for w in weights)))

    payload = build_goal_payload(current_value, goal_amount, horizon, contribution, allocation, year1_pct, description)
    try:
        result = analyze_goal(payload)
    except GoalInputError as e:
        empty = dw.get_goal_projection_chart(None)
        return empty, empty, generate_goal_brief(None), "", dbc.Alert(str(e), color="warning")

    analysis = result["goalAnalysis"]
    return (
        dw.get_goal_projection_chart(analysis, theme),
        dw.get_probability_bar_chart(analysis, theme),
        generate_goal_brief(analysis),
        result["recommendation"],
        None,
    )
