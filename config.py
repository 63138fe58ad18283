import logging
import os

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# ============================================================
# ENVIRONMENT (SECURE LOAD)
# ============================================================

# 1. Load the .env file immediately
load_dotenv()

# 2. Database (Supabase PostgREST). Falls back to a local JSON store when missing.
SUPABASE_URL = os.environ.get("SUPABASE_URL") or os.environ.get("NEXT_PUBLIC_SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")

METRICS_STORE_FILE = os.environ.get("METRICS_STORE_FILE", "portfolio_metrics.json")

# 3. Safety Check
if not SUPABASE_URL or not SUPABASE_SERVICE_ROLE_KEY:
    logger.warning(
        "Supabase credentials not found. Using local metrics store (%s).",
        METRICS_STORE_FILE,
    )

# Recorded as `updated_by` on uploaded rows when the request carries no user
ADMIN_USERNAME = os.environ.get("ADMIN_USERNAME", "admin")

# ============================================================
# MARKET DATA
# ============================================================
BENCHMARK_SYMBOL = "^SP500TR"  # S&P 500 Total Return Index
BENCHMARK_NAME = "S&P 500"
TBILL_SYMBOL = "^IRX"  # 13-week T-Bill yield, quoted in percent

YAHOO_CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart"
HTTP_TIMEOUT = 10

# Memoized market data lifetime (seconds)
MARKET_DATA_CACHE_TTL = int(os.environ.get("MARKET_DATA_CACHE_TTL", 24 * 60 * 60))

# ============================================================
# RISK PARAMETERS
# ============================================================
RISK_FREE_RATE = 0.04  # 4% annual risk-free rate for Sharpe ratios
TRADING_DAYS_PER_YEAR = 252
METRICS_LOOKBACK_YEARS = 3
MIN_MONTHS_FOR_REGRESSION = 12

# ============================================================
# GOAL PROJECTIONS
# ============================================================
MONTE_CARLO_SIMULATIONS = int(os.environ.get("MONTE_CARLO_SIMULATIONS", 10000))
MONTE_CARLO_SEED = int(os.environ.get("MONTE_CARLO_SEED", 42))

TARGET_MONTHLY_CONTRIBUTION = 400

# ============================================================
# GLOBAL COLOR PALETTE
# ============================================================
GLOBAL_PALETTE = [
    "#4C6A92",  # steel blue
    "#8C9CB1",  # soft gray-blue
    "#C0504D",  # muted red
    "#D79E9C",  # soft red-gray
    "#9BBB59",  # olive green
    "#C5D6A4",  # light olive
    "#8064A2",  # muted purple
    "#B1A0C7",  # lavender gray
    "#4F81BD",  # corporate blue
    "#A5B5CF",  # cool gray-blue
    "#F2C200",  # muted gold (accent)
    "#D6B656",  # soft gold-gray
]
