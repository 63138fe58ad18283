import logging

from config import MONTE_CARLO_SIMULATIONS, MONTE_CARLO_SEED
from exceptions import GoalInputError
from financial_math import fv_lump, fv_contrib, fv_with_contributions
from components.monte_carlo import (
    run_goal_simulation,
    estimate_volatility,
    cap_probability,
)
from components.ai_brief import generate_goal_recommendation

logger = logging.getLogger(__name__)

# ============================================================
# LONG-RUN ASSUMPTIONS
# ============================================================
ASSET_CLASSES = ["stocks", "bonds", "cash", "realEstate", "commodities", "alternatives"]

# Nominal annual returns (used for projections)
LONG_TERM_NOMINAL = {
    "stocks": 0.10,
    "bonds": 0.05,
    "realEstate": 0.08,
    "commodities": 0.04,
    "cash": 0.03,
    "alternatives": 0.08,
}

# Real (inflation-adjusted) annual returns, used as the Year-1 fallback per position
LONG_TERM_AVERAGES = {
    "stocks": 0.07,
    "bonds": 0.02,
    "realEstate": 0.05,
    "commodities": 0.01,
    "cash": 0.00,
    "alternatives": 0.05,
}

DEFAULT_GOAL_AMOUNT = 1_000_000
DEFAULT_TIME_HORIZON = 10
DEFAULT_ALLOCATION = {
    "stocks": 60,
    "bonds": 30,
    "cash": 5,
    "realEstate": 5,
    "commodities": 0,
    "alternatives": 0,
}

# Deterministic bands when no simulation is run
FALLBACK_DOWNSIDE = 0.6
FALLBACK_UPSIDE = 1.4

# Per-holding scenario spreads when only an analyst target exists
ANALYST_TARGET_SPREAD = 0.30

# Inverse ETFs: ticker -> (underlying index ETF, leverage)
SHORT_ETFS = {
    "SQQQ": ("QQQ", 3),
    "QID": ("QQQ", 2),
    "PSQ": ("QQQ", 1),
    "SPXU": ("SPY", 3),
    "SDS": ("SPY", 2),
    "SH": ("SPY", 1),
    "SDOW": ("DIA", 3),
    "DXD": ("DIA", 2),
    "DOG": ("DIA", 1),
    "SOXS": ("SOXX", 3),
    "SARK": ("ARKK", 1),
}


def clamp_probability(p):
    return min(1.0, max(0.0, p))


def _clamp_band(band):
    return {k: clamp_probability(v) for k, v in band.items()}

# ------------------------------------------------------------
# Closed-form projection
# ------------------------------------------------------------

def calculate_expected_return(allocation: dict) -> float:
    """Weighted long-run nominal return. Allocation is in percent and normalized to 100."""
    total = sum(allocation.get(ac, 0) or 0 for ac in ASSET_CLASSES)
    if total == 0:
        return 0.0
    return sum(
        (allocation.get(ac, 0) or 0) / total * LONG_TERM_NOMINAL[ac]
        for ac in ASSET_CLASSES
    )


def project_value(current_value, annual_return, years, monthly_contribution=0):
    """current * (1 + r)^years plus the future value of the monthly contributions."""
    return fv_lump(current_value, annual_return, years) + fv_contrib(monthly_contribution, annual_return, years)


def fallback_goal_analysis(current_value, goal_amount, years, expected_return, monthly_contribution=0):
    """
    Deterministic 3-point bands around the closed-form projection.
    Used when the input is too incomplete for a simulation.
    """
    projection = project_value(current_value, expected_return, years, monthly_contribution)
    probability = clamp_probability(projection / goal_amount) if goal_amount > 0 else 1.0

    values = {
        "median": projection,
        "downside": projection * FALLBACK_DOWNSIDE,
        "upside": projection * FALLBACK_UPSIDE,
    }

    return {
        "probabilityOfSuccess": {
            "median": probability,
            "downside": probability * FALLBACK_DOWNSIDE,
            "upside": min(1.0, probability * FALLBACK_UPSIDE),
        },
        "projectedValues": values,
        "shortfall": {k: v - goal_amount for k, v in values.items()},
        "expectedReturn": expected_return,
    }

# ------------------------------------------------------------
# Year-1 returns per position
# ------------------------------------------------------------

def calculate_year1_return(
    ticker,
    current_price,
    analyst_target_price=None,
    index_targets=None,
    current_prices=None,
    asset_class="stocks",
):
    """
    Expected 12-month return for one position, with priority:
    1. Short/inverse ETF -> underlying index return x leverage x -1
    2. Index/sector ETF with an index target -> target / price - 1
    3. Individual stock with an analyst target -> target / price - 1
    4. Asset-class long-term average

    Returns:
        dict: {"return": float, "source": str, "details": str}
    """
    ticker = ticker.upper()
    index_targets = index_targets or {}
    current_prices = current_prices or {}
    fallback = LONG_TERM_AVERAGES.get(asset_class, LONG_TERM_AVERAGES["stocks"])

    if ticker in SHORT_ETFS:
        underlying, leverage = SHORT_ETFS[ticker]
        target = index_targets.get(underlying)
        price = current_prices.get(underlying)
        if not target:
            logger.warning("No index target for %s (underlying of %s)", underlying, ticker)
            return {
                "return": fallback,
                "source": "asset_class_fallback",
                "details": f"Unknown underlying {underlying} for short {ticker}",
            }
        if not price:
            logger.warning("No current price for %s (underlying of %s)", underlying, ticker)
            return {
                "return": fallback,
                "source": "asset_class_fallback",
                "details": f"Could not get price for {underlying}",
            }
        index_return = target / price - 1
        return {
            "return": index_return * leverage * -1,
            "source": "short_formula",
            "details": f"{underlying} return {index_return * 100:.1f}% x {leverage} x -1",
        }

    index_target = index_targets.get(ticker)
    if index_target and current_price and current_price > 0:
        return {
            "return": index_target / current_price - 1,
            "source": "clockwise",
            "details": f"Index target: ${index_target:.2f}",
        }

    if analyst_target_price and analyst_target_price > 0 and current_price and current_price > 0:
        return {
            "return": analyst_target_price / current_price - 1,
            "source": "factset",
            "details": f"Analyst target: ${analyst_target_price:.2f}",
        }

    logger.warning("%s has no price target, using %s average", ticker, asset_class)
    return {
        "return": fallback,
        "source": "asset_class_fallback",
        "details": f"No target available, using {asset_class} average ({fallback * 100:.1f}%)",
    }


def calculate_blended_year1_return(positions, index_targets=None, current_prices=None):
    """Weight-averaged Year-1 return over positions [{ticker, percentage, currentPrice, ...}]."""
    total = sum(p.get("percentage", 0) or 0 for p in positions)
    if total <= 0:
        return None

    blended = 0.0
    for p in positions:
        result = calculate_year1_return(
            p["ticker"],
            p.get("currentPrice"),
            p.get("targetPrice"),
            index_targets,
            current_prices,
            p.get("assetClass", "stocks"),
        )
        blended += (p.get("percentage", 0) or 0) / total * result["return"]
    return blended

# ------------------------------------------------------------
# Scenario-driven projections
# ------------------------------------------------------------

def calculate_weighted_scenario_returns(holdings, scenario_returns, monte_carlo_results=None, analyst_returns=None):
    """
    Portfolio bull / expected / bear Year-1 returns from per-holding data.

    Per holding, first match wins:
        scenario data -> Monte Carlo upside/median/downside
        -> analyst return +/- 30% -> long-term stock average x1.4 / x0.6
    Holding weights are in percent.
    """
    monte_carlo_results = monte_carlo_results or {}
    analyst_returns = analyst_returns or {}
    bull = expected = bear = 0.0

    for holding in holdings:
        ticker = holding["ticker"]
        w = holding["weight"] / 100.0

        if ticker in scenario_returns:
            s = scenario_returns[ticker]
            bull += w * s["bull"]
            expected += w * s["expected"]
            bear += w * s["bear"]
        elif ticker in monte_carlo_results:
            mc = monte_carlo_results[ticker]
            bull += w * mc["upside"]
            expected += w * mc["median"]
            bear += w * mc["downside"]
        elif ticker in analyst_returns:
            r = analyst_returns[ticker]
            bull += w * (r + ANALYST_TARGET_SPREAD)
            expected += w * r
            bear += w * (r - ANALYST_TARGET_SPREAD)
        else:
            r = LONG_TERM_NOMINAL["stocks"]
            bull += w * r * FALLBACK_UPSIDE
            expected += w * r
            bear += w * r * FALLBACK_DOWNSIDE

    return {"bull": bull, "expected": expected, "bear": bear}


def calculate_multi_year_value(start_value, year1_return, long_term_return, monthly_contribution, years):
    """Year 1 at the scenario return, remaining years at the long-term return."""
    value = fv_with_contributions(start_value, year1_return, monthly_contribution, 1)
    if years > 1:
        value = fv_with_contributions(value, long_term_return, monthly_contribution, years - 1)
    return value


def _has_scenarios(inp):
    return bool(inp.get("holdings")) and inp.get("scenarioReturns") is not None


def calculate_12_month_scenarios(inp):
    """
    One-year goal from holdings scenarios. Values use a simple annual return
    on (current + 12 contributions); probabilities are 1 or 0 per scenario.
    """
    if not _has_scenarios(inp):
        logger.warning("Missing holdings or scenario returns, falling back to Monte Carlo")
        return calculate_goal_probability_with_monte_carlo(inp)

    scenarios = calculate_weighted_scenario_returns(
        inp["holdings"],
        inp["scenarioReturns"],
        inp.get("monteCarloResults"),
        inp.get("analystReturns"),
    )

    base = inp["currentAmount"] + inp["monthlyContribution"] * 12
    goal = inp["goalAmount"]
    values = {
        "upside": base * (1 + scenarios["bull"]),
        "median": base * (1 + scenarios["expected"]),
        "downside": base * (1 + scenarios["bear"]),
    }

    return {
        "probabilityOfSuccess": {
            k: cap_probability(1.0 if v >= goal else 0.0) for k, v in values.items()
        },
        "projectedValues": values,
        "shortfall": {k: v - goal for k, v in values.items()},
        "expectedReturn": scenarios["expected"],
        "method": "scenario_12_month",
    }


def calculate_goal_probability_with_monte_carlo(inp):
    """
    Multi-year goal. Years 2+ use the allocation's long-term return.

    With holdings scenarios, each of bull / expected / bear drives Year 1 of
    its own deterministic projection and simulation. Otherwise one simulation
    is run and its percentiles give the three readings.
    """
    long_term = calculate_expected_return(inp["portfolio"])
    volatility = estimate_volatility(inp["portfolio"], inp.get("correlationMatrix"), inp.get("riskReturn"))
    goal = inp["goalAmount"]
    years = inp["timeHorizon"]
    n_sims = inp.get("simulations", MONTE_CARLO_SIMULATIONS)
    seed = inp.get("seed", MONTE_CARLO_SEED)

    def simulate(year1):
        return run_goal_simulation(
            inp["currentAmount"], goal, years, inp["monthlyContribution"],
            year1, long_term, volatility, n_sims, seed,
        )

    if _has_scenarios(inp):
        scenarios = calculate_weighted_scenario_returns(
            inp["holdings"],
            inp["scenarioReturns"],
            inp.get("monteCarloResults"),
            inp.get("analystReturns"),
        )
        values = {
            key: calculate_multi_year_value(
                inp["currentAmount"], scenarios[name], long_term, inp["monthlyContribution"], years
            )
            for key, name in (("upside", "bull"), ("median", "expected"), ("downside", "bear"))
        }
        probabilities = {
            key: simulate(scenarios[name])["probabilityOfSuccess"]
            for key, name in (("upside", "bull"), ("median", "expected"), ("downside", "bear"))
        }
        year1 = scenarios["expected"]
        simulation = None
    else:
        year1 = inp.get("year1Return")
        if year1 is None:
            year1 = long_term
        simulation = simulate(year1)
        values = {
            "upside": simulation["upside"],
            "median": simulation["median"],
            "downside": simulation["downside"],
        }
        probabilities = {
            "upside": simulation["probabilityAtPercentiles"]["p95"],
            "median": simulation["probabilityOfSuccess"],
            "downside": simulation["probabilityAtPercentiles"]["p5"],
        }

    logger.info(
        "Goal simulation: year1=%.3f long_term=%.3f vol=%.3f median_prob=%.2f",
        year1, long_term, volatility, probabilities["median"],
    )

    result = {
        "probabilityOfSuccess": {k: cap_probability(v) for k, v in probabilities.items()},
        "projectedValues": values,
        "shortfall": {k: v - goal for k, v in values.items()},
        "expectedReturn": year1,
        "volatility": volatility,
        "method": "monte_carlo",
    }
    if simulation is not None:
        result["simulation"] = {
            "years": simulation["years"],
            "percentiles": simulation["percentiles"],
        }
    return result


def calculate_goal_probability(inp):
    """12-month scenario path for one-year goals with holdings data, Monte Carlo otherwise."""
    if inp["timeHorizon"] == 1 and _has_scenarios(inp):
        result = calculate_12_month_scenarios(inp)
    else:
        result = calculate_goal_probability_with_monte_carlo(inp)
    result["probabilityOfSuccess"] = _clamp_band(result["probabilityOfSuccess"])
    return result


def _normalize_holdings(holdings):
    if not holdings:
        return None
    return [
        {"ticker": h["ticker"].upper(), "weight": h.get("percentage", h.get("weight", 0)) or 0}
        for h in holdings
    ]


def create_goal_probability_input(
    intake,
    year1_return=None,
    scenario_returns=None,
    holdings=None,
    monte_carlo_results=None,
    analyst_returns=None,
    correlation_matrix=None,
    risk_return=None,
):
    """Intake form -> simulation input. None when the goal amount or horizon is missing."""
    if not intake.get("goalAmount") or not intake.get("timeHorizon"):
        return None

    portfolio = intake.get("portfolio") or {}
    return {
        "currentAmount": portfolio.get("totalValue") or 0,
        "goalAmount": intake["goalAmount"],
        "timeHorizon": intake["timeHorizon"],
        "monthlyContribution": intake.get("monthlyContribution") or 0,
        "portfolio": _allocation(portfolio),
        "year1Return": year1_return,
        "scenarioReturns": scenario_returns,
        "holdings": _normalize_holdings(holdings),
        "monteCarloResults": monte_carlo_results,
        "analystReturns": analyst_returns,
        "correlationMatrix": correlation_matrix,
        "riskReturn": risk_return,
    }


def _allocation(portfolio):
    allocation = {ac: portfolio.get(ac, 0) or 0 for ac in ASSET_CLASSES}
    if sum(allocation.values()) == 0:
        return dict(DEFAULT_ALLOCATION)
    return allocation


def _upper_keys(mapping):
    if mapping is None:
        return None
    return {k.upper(): v for k, v in mapping.items()}

# ------------------------------------------------------------
# Endpoint contract
# ------------------------------------------------------------

def analyze_goal(payload):
    """
    Goal analysis for one client.

    Payload:
        {"intakeData": {portfolio: {totalValue, stocks, bonds, ...},
                        goalAmount, timeHorizon, monthlyContribution, goalDescription},
         "year1Return"?, "holdings"?, "scenarioReturns"?, "monteCarloResults"?,
         "analystReturns"?, "positions"?, "indexTargets"?, "currentPrices"?,
         "correlationMatrix"?, "riskReturn"?}

        correlationMatrix / riskReturn are keyed by asset class
        (riskReturn: {"stocks": {"return": 10, "vol": 18}, ...} in percent).

    Returns:
        dict: {"goalAnalysis": {...}, "recommendation": str}

    Raises:
        GoalInputError: missing intakeData or non-positive portfolio value.
    """
    if not isinstance(payload, dict):
        raise GoalInputError("Request body must be a JSON object")

    intake = payload.get("intakeData")
    if not intake or not isinstance(intake, dict):
        raise GoalInputError("Missing intakeData")

    portfolio = intake.get("portfolio") or {}
    try:
        total_value = float(portfolio.get("totalValue") or 0)
        goal_amount = float(intake.get("goalAmount") or DEFAULT_GOAL_AMOUNT)
        time_horizon = float(intake.get("timeHorizon") or DEFAULT_TIME_HORIZON)
        monthly = float(intake.get("monthlyContribution") or 0)
    except (TypeError, ValueError) as e:
        raise GoalInputError(f"Invalid numeric input: {e}") from e

    if total_value <= 0:
        raise GoalInputError("Portfolio value must be greater than 0")
    if goal_amount <= 0:
        raise GoalInputError("Goal amount must be greater than 0")
    if time_horizon <= 0:
        raise GoalInputError("Time horizon must be greater than 0")
    if time_horizon.is_integer():
        time_horizon = int(time_horizon)

    allocation = _allocation(portfolio)
    expected_return = calculate_expected_return(allocation)

    year1_return = payload.get("year1Return")
    if year1_return is None and payload.get("positions"):
        year1_return = calculate_blended_year1_return(
            payload["positions"],
            _upper_keys(payload.get("indexTargets")),
            _upper_keys(payload.get("currentPrices")),
        )

    scenario_returns = _upper_keys(payload.get("scenarioReturns"))
    holdings = payload.get("holdings")

    prob_input = create_goal_probability_input(
        intake,
        year1_return=year1_return,
        scenario_returns=scenario_returns,
        holdings=holdings,
        monte_carlo_results=_upper_keys(payload.get("monteCarloResults")),
        analyst_returns=_upper_keys(payload.get("analystReturns")),
        correlation_matrix=payload.get("correlationMatrix"),
        risk_return=payload.get("riskReturn"),
    )

    has_year1 = year1_return is not None or (bool(holdings) and scenario_returns is not None)
    basis = "year_1" if has_year1 else "long_term"
    if basis == "long_term":
        logger.warning("Goal analysis using long-term asset class assumptions")
    else:
        logger.info("Goal analysis using Year-1 assumptions")

    if prob_input is not None:
        prob_input["currentAmount"] = total_value
        prob_input["goalAmount"] = goal_amount
        prob_input["timeHorizon"] = time_horizon
        prob_input["monthlyContribution"] = monthly
        analysis = calculate_goal_probability(prob_input)
    else:
        logger.warning("Incomplete goal input, using fallback bands")
        basis = "long_term"
        analysis = fallback_goal_analysis(total_value, goal_amount, time_horizon, expected_return, monthly)
        analysis["method"] = "fallback"

    analysis["probabilityOfSuccess"] = _clamp_band(analysis["probabilityOfSuccess"])
    recommendation = generate_goal_recommendation(analysis["probabilityOfSuccess"]["median"], basis)

    goal_analysis = {
        "goalAmount": goal_amount,
        "goalDescription": intake.get("goalDescription") or "Financial Goal",
        "currentAmount": total_value,
        "timeHorizon": time_horizon,
        "monthlyContribution": monthly,
        "probabilityOfSuccess": analysis["probabilityOfSuccess"],
        "projectedValues": analysis["projectedValues"],
        "shortfall": analysis["shortfall"],
        "expectedReturn": analysis["expectedReturn"],
        "longTermReturn": expected_return,
        "assumptionBasis": basis,
        "method": analysis["method"],
        "recommendation": recommendation,
    }
    if "volatility" in analysis:
        goal_analysis["volatility"] = analysis["volatility"]
    if "simulation" in analysis:
        goal_analysis["simulation"] = analysis["simulation"]

    return {"goalAnalysis": goal_analysis, "recommendation": recommendation}
