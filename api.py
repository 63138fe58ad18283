import logging

from flask import Blueprint, current_app, jsonify, request

import config
from data_loader import clear_market_data_cache
from exceptions import CSVParseError, GoalInputError, InsufficientDataError, StoreError
from metrics_store import get_store
from portfolio_engine import (
    process_upload,
    run_period_analysis,
    sort_portfolio_names,
    comparison_from_period_rows,
)
from components.goal_probability import analyze_goal

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")


def _error(message, status):
    return jsonify({"success": False, "message": message}), status


def _store():
    # METRICS_STORE_FACTORY overrides the configured store for one app
    factory = current_app.config.get("METRICS_STORE_FACTORY", get_store)
    return factory()


def _read_csv_upload():
    """Returns (content, None) or (None, error response)."""
    file = request.files.get("file")
    if file is None or not file.filename:
        return None, _error("No file provided", 400)
    if not file.filename.lower().endswith(".csv"):
        return None, _error("File must be a CSV", 400)
    try:
        return file.read().decode("utf-8-sig"), None
    except UnicodeDecodeError:
        return None, _error("File must be UTF-8 encoded text", 400)


def _uploaded_by():
    return (
        request.headers.get("X-Admin-User")
        or request.form.get("updated_by")
        or config.ADMIN_USERNAME
    )

# ------------------------------------------------------------
# Admin: trailing 3Y metrics
# ------------------------------------------------------------

@api.route("/admin/portfolios/upload", methods=["POST"])
def upload_portfolios():
    content, err = _read_csv_upload()
    if err:
        return err

    try:
        summary = process_upload(content, _uploaded_by(), _store())
    except CSVParseError as e:
        return _error(str(e), 400)
    except StoreError as e:
        logger.error("Failed to save portfolio metrics: %s", e)
        return _error(f"Database error: {e}", 500)
    except Exception:
        logger.exception("CSV upload failed")
        return _error("Failed to process CSV file", 500)

    return jsonify({
        "success": True,
        "message": f"Successfully processed {summary['portfolioCount']} portfolios",
        "data": summary,
    })


@api.route("/admin/portfolios", methods=["GET"])
def list_portfolios():
    try:
        rows = _store().list_portfolios()
    except StoreError as e:
        logger.error("Failed to load portfolios: %s", e)
        return _error(f"Database error: {e}", 500)

    by_name = {row["name"]: row for row in rows}
    ordered = [by_name[name] for name in sort_portfolio_names(by_name)]
    return jsonify({"success": True, "data": ordered})

# ------------------------------------------------------------
# Admin: period analysis
# ------------------------------------------------------------

@api.route("/admin/portfolio-periods", methods=["POST"])
def analyze_periods():
    content, err = _read_csv_upload()
    if err:
        return err

    try:
        result = run_period_analysis(content, _store())
    except (CSVParseError, InsufficientDataError) as e:
        return _error(str(e), 400)
    except Exception:
        logger.exception("Period analysis failed")
        return _error("Failed to analyze portfolios", 500)

    return jsonify({"success": True, "data": result})


@api.route("/admin/portfolio-periods", methods=["GET"])
def get_periods():
    try:
        rows = _store().list_periods()
    except StoreError as e:
        logger.error("Failed to load period rows: %s", e)
        return _error(f"Database error: {e}", 500)

    if not rows:
        return jsonify({
            "success": False,
            "message": "No portfolio data found. Upload a CSV to get started.",
            "data": None,
        })

    return jsonify({
        "success": True,
        "data": {"rows": rows, "comparison": comparison_from_period_rows(rows)},
    })


@api.route("/admin/market-data/clear-cache", methods=["POST"])
def clear_cache():
    clear_market_data_cache()
    logger.info("Market data cache cleared")
    return jsonify({"success": True, "message": "Market data cache cleared"})

# ------------------------------------------------------------
# Client: goal analysis
# ------------------------------------------------------------

@api.route("/portfolio/analyze-goal", methods=["POST"])
def analyze_goal_route():
    payload = request.get_json(silent=True)
    try:
        result = analyze_goal(payload)
    except GoalInputError as e:
        return _error(str(e), 400)
    except Exception:
        logger.exception("Goal analysis failed")
        return _error("Goal analysis failed", 500)

    return jsonify({"success": True, **result})
