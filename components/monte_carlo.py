import logging

import numpy as np

from config import MONTE_CARLO_SIMULATIONS, MONTE_CARLO_SEED

logger = logging.getLogger(__name__)

PROBABILITY_CAP = 0.99
DEFAULT_VOLATILITY = 0.15

# Annual volatility by asset class (allocation key -> vol)
ASSET_CLASS_VOLATILITY = {
    "stocks": 0.18,
    "bonds": 0.06,
    "cash": 0.01,
}
OTHER_VOLATILITY = 0.12  # real estate, commodities, alternatives


def cap_probability(probability):
    """Never report certainty: simulated probabilities top out at 99%."""
    return min(probability, PROBABILITY_CAP)


def run_goal_simulation(
    current_value,
    goal_amount,
    horizon_years,
    monthly_contribution=0,
    year1_return=0.0,
    long_term_return=0.0,
    volatility=DEFAULT_VOLATILITY,
    n_simulations=MONTE_CARLO_SIMULATIONS,
    random_seed=MONTE_CARLO_SEED,
):
    """
    Monte Carlo projection of a portfolio against a goal amount.

    Each month the contribution is added first, then the month's return is
    drawn from N(annual / 12, volatility / sqrt(12)). Months 0-11 use
    `year1_return`; every later month uses `long_term_return`.

    Args:
        current_value (float): Starting portfolio value.
        goal_amount (float): Target value at the horizon.
        horizon_years (float): Years to simulate (rounded to whole months).
        monthly_contribution (float): Cash added every month.
        year1_return (float): Expected annual return for the first year.
        long_term_return (float): Expected annual return after year one.
        volatility (float): Annual volatility of returns.
        n_simulations (int): Number of paths.
        random_seed (int): Seed for reproducible results. None disables seeding.

    Returns:
        dict: {
            downside, median, upside  (5th / 50th / 95th percentile final values),
            probabilityOfSuccess      (share of paths >= goal, capped at 0.99),
            probabilityAtPercentiles  {p5, p50, p95},
            years, percentiles        (5/50/95 paths over time for charting),
            metrics                   {volatility, year1_return, long_term_return, n_simulations},
        }
    """
    n_steps = max(int(round(horizon_years * 12)), 0)

    rng = np.random.default_rng(random_seed)

    monthly_vol = volatility / np.sqrt(12)

    paths = np.zeros((n_simulations, n_steps + 1))
    paths[:, 0] = current_value

    for t in range(1, n_steps + 1):
        annual = year1_return if (t - 1) < 12 else long_term_return
        shocks = rng.normal(annual / 12.0, monthly_vol, n_simulations)
        paths[:, t] = (paths[:, t - 1] + monthly_contribution) * (1 + shocks)

    final_values = np.sort(paths[:, -1])

    p5_idx = int(np.floor(n_simulations * 0.05))
    p50_idx = int(np.floor(n_simulations * 0.50))
    p95_idx = min(int(np.floor(n_simulations * 0.95)), n_simulations - 1)

    success = float(np.mean(final_values >= goal_amount))
    probability = cap_probability(success)

    p5_value = final_values[p5_idx]
    p95_value = final_values[p95_idx]

    # Bear / bull readings of the same distribution
    if p5_value >= goal_amount:
        p5_prob = (n_simulations - p5_idx) / n_simulations
    else:
        p5_prob = 0.05

    if p95_value >= goal_amount:
        if goal_amount > 0:
            p95_prob = 0.90 + (p95_value - goal_amount) / goal_amount * 0.09
        else:
            p95_prob = 1.0
    else:
        p95_prob = (n_simulations - p95_idx) / n_simulations

    return {
        "downside": float(p5_value),
        "median": float(final_values[p50_idx]),
        "upside": float(p95_value),
        "probabilityOfSuccess": probability,
        "probabilityAtPercentiles": {
            "p5": cap_probability(p5_prob),
            "p50": probability,
            "p95": cap_probability(p95_prob),
        },
        "years": np.linspace(0, n_steps / 12.0, n_steps + 1).tolist(),
        "percentiles": {
            "5": np.percentile(paths, 5, axis=0).tolist(),
            "50": np.percentile(paths, 50, axis=0).tolist(),
            "95": np.percentile(paths, 95, axis=0).tolist(),
        },
        "metrics": {
            "volatility": volatility,
            "year1_return": year1_return,
            "long_term_return": long_term_return,
            "n_simulations": n_simulations,
        },
    }


def estimate_volatility(allocation, correlation_matrix=None, risk_return=None):
    """
    Annual portfolio volatility for an allocation given in percent.

    With a correlation matrix and per-class {return, vol} data the full
    covariance estimate is used; otherwise a weighted average of fixed
    asset-class volatilities.
    """
    if correlation_matrix and risk_return:
        return float(calculate_portfolio_sigma(allocation, correlation_matrix, risk_return))

    total = sum(v for v in allocation.values() if v)
    if total <= 0:
        return OTHER_VOLATILITY

    sigma = 0.0
    for asset_class, pct in allocation.items():
        if not pct:
            continue
        w = pct / total
        sigma += w * ASSET_CLASS_VOLATILITY.get(asset_class, OTHER_VOLATILITY)
    return sigma


def calculate_portfolio_sigma(weights, correlation_matrix=None, risk_return=None):
    """
    Calculates portfolio volatility using Correlation Matrix if available,
    otherwise falls back to weighted average.

    risk_return: {asset: {"return": pct, "vol": pct}}
    """
    total_w = sum(weights.values())
    if total_w <= 0:
        return 0.0

    if not risk_return:
        return 0.0

    if correlation_matrix:
        # Variance = w.T * Cov * w
        valid_assets = [a for a in weights if a in risk_return]
        if not valid_assets:
            return 0.0

        w_vec = np.array([weights[a] / total_w for a in valid_assets])
        vol_vec = np.array([risk_return[a]["vol"] / 100.0 for a in valid_assets])

        n = len(valid_assets)
        corr_mat = np.eye(n)
        for i in range(n):
            for j in range(n):
                if i == j:
                    continue
                a_i, a_j = valid_assets[i], valid_assets[j]
                # Supports both {A: {B: rho}} and {B: {A: rho}}
                if a_i in correlation_matrix and a_j in correlation_matrix[a_i]:
                    corr_mat[i, j] = correlation_matrix[a_i][a_j]
                elif a_j in correlation_matrix and a_i in correlation_matrix[a_j]:
                    corr_mat[i, j] = correlation_matrix[a_j][a_i]

        D = np.diag(vol_vec)
        cov_mat = D @ corr_mat @ D
        port_var = w_vec.T @ cov_mat @ w_vec
        return float(np.sqrt(max(port_var, 0.0)))

    sigma = 0.0
    for asset, w in weights.items():
        if asset in risk_return:
            sigma += (w / total_w) * (risk_return[asset]["vol"] / 100.0)
    return sigma
