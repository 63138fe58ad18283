import logging
import time
from datetime import datetime, timezone

import pandas as pd
import requests
import yfinance as yf

import config
from exceptions import CSVParseError, MarketDataError

logger = logging.getLogger(__name__)

# ============================================================
# CONFIG
# ============================================================
MARKET_DATA_PADDING_DAYS = 7
DEFAULT_TBILL_RATE = 0.05

# Single-entry memo for the benchmark / T-Bill fetch.
# Per-process only; not shared across server instances.
_MARKET_DATA_CACHE = {}

# ------------------------------------------------------------
# CSV cell helpers
# ------------------------------------------------------------

def parse_number(value):
    """'100,000' -> 100000.0. Empty, '-' or junk -> None (never zero)."""
    if value is None:
        return None
    cleaned = str(value).replace(",", "").strip()
    if cleaned == "" or cleaned == "-":
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_date(date_str: str) -> str:
    """
    Normalize MM/DD/YY or MM/DD/YYYY to ISO YYYY-MM-DD.

    Two-digit years: < 50 -> 20YY, otherwise 19YY.
    Strings that are not slash-separated triples are returned unchanged.
    """
    parts = date_str.strip().split("/")
    if len(parts) != 3:
        return date_str.strip()

    month, day, year = (p.strip() for p in parts)
    if len(year) == 2 and year.isdigit():
        year = f"20{year}" if int(year) < 50 else f"19{year}"

    return f"{year}-{month.zfill(2)}-{day.zfill(2)}"


def split_csv_line(line: str) -> list:
    """
    Split one CSV line on commas outside double quotes.

    Simple quote toggle, not RFC-4180: quote characters are dropped and
    every field is trimmed.
    """
    values = []
    current = []
    in_quotes = False

    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            values.append("".join(current).replace('"', "").strip())
            current = []
        else:
            current.append(char)
    values.append("".join(current).replace('"', "").strip())

    return values

# ------------------------------------------------------------
# Portfolio CSV (Date, <Portfolio1>, <Portfolio2>, ...)
# ------------------------------------------------------------

def parse_portfolio_csv(content: str) -> dict:
    """
    Parse uploaded portfolio values into per-portfolio daily series.

    Returns:
        dict: {
            "portfolios": { name: [ {"date": "YYYY-MM-DD", "value": float}, ... ] },
            "asOfDate": latest date seen across all rows,
        }
    """
    if content is None:
        raise CSVParseError("CSV file is empty")

    lines = [ln for ln in content.strip().splitlines() if ln.strip()]
    if len(lines) < 2:
        raise CSVParseError("CSV file must have at least a header and one data row")

    header = split_csv_line(lines[0])
    portfolio_names = header[1:]  # First column is the date

    portfolios = {name: [] for name in portfolio_names if name}
    latest_date = ""

    for line in lines[1:]:
        values = split_csv_line(line.strip())
        date = parse_date(values[0])

        if date > latest_date:
            latest_date = date

        for idx, name in enumerate(portfolio_names):
            if not name or idx + 1 >= len(values):
                continue
            value = parse_number(values[idx + 1])
            if value is not None:
                portfolios[name].append({"date": date, "value": value})

    # ISO dates sort correctly as strings
    for name in portfolios:
        portfolios[name].sort(key=lambda dv: dv["date"])

    return {
        "portfolios": portfolios,
        "asOfDate": latest_date,
    }


def load_portfolio_csv(path: str) -> dict:
    with open(path, "r", encoding="utf-8-sig") as f:
        return parse_portfolio_csv(f.read())

# ------------------------------------------------------------
# Price history sources (Yahoo chart API -> yfinance)
# ------------------------------------------------------------

def _to_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return pd.Timestamp(value).to_pydatetime()


def fetch_yahoo_chart(symbol: str, start, end) -> list:
    """
    Daily closes from the Yahoo Finance chart endpoint, keyed by Unix
    timestamp range. Returns [{"date": "YYYY-MM-DD", "close": float}, ...].
    """
    period1 = int(_to_datetime(start).timestamp())
    period2 = int(_to_datetime(end).timestamp())

    url = f"{config.YAHOO_CHART_URL}/{symbol}"
    params = {
        "period1": period1,
        "period2": period2,
        "interval": "1d",
        "includePrePost": "false",
    }
    headers = {"User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"}

    resp = requests.get(url, params=params, headers=headers, timeout=config.HTTP_TIMEOUT)
    if resp.status_code != 200:
        raise MarketDataError(f"Yahoo Finance API error for {symbol}: {resp.status_code}")

    payload = resp.json()
    result = ((payload.get("chart") or {}).get("result") or [None])[0]
    if not result or not result.get("timestamp"):
        raise MarketDataError(f"No data returned for {symbol}")

    quotes = (result.get("indicators") or {}).get("quote") or [{}]
    closes = quotes[0].get("close")
    if not closes:
        raise MarketDataError(f"No close prices returned for {symbol}")

    data = []
    for ts, close in zip(result["timestamp"], closes):
        if close is None:
            continue
        date = datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")
        data.append({"date": date, "close": float(close)})

    return data


def fetch_yf_history(symbol: str, start, end) -> list:
    """Fallback source via yfinance. Same shape as fetch_yahoo_chart."""
    raw = yf.download(
        symbol,
        start=_to_datetime(start).strftime("%Y-%m-%d"),
        end=_to_datetime(end).strftime("%Y-%m-%d"),
        progress=False,
        auto_adjust=False,
    )
    if raw is None or raw.empty:
        raise MarketDataError(f"yfinance returned no data for {symbol}")

    # Newer yfinance returns (field, ticker) columns even for one symbol
    if isinstance(raw.columns, pd.MultiIndex):
        closes = raw.xs("Close", axis=1, level=0)
        if isinstance(closes, pd.DataFrame):
            closes = closes.iloc[:, 0]
    else:
        closes = raw["Close"]

    if isinstance(closes.index, pd.DatetimeIndex) and closes.index.tz is not None:
        closes.index = closes.index.tz_localize(None)

    closes = closes.dropna()
    return [
        {"date": idx.strftime("%Y-%m-%d"), "close": float(val)}
        for idx, val in closes.items()
    ]


def fetch_price_history(symbol: str, start, end) -> list:
    """
    Fetch closes with priority:
    1. Yahoo chart API (requests)
    2. yfinance
    """
    try:
        data = fetch_yahoo_chart(symbol, start, end)
        if data:
            return data
    except (requests.RequestException, MarketDataError, ValueError) as e:
        logger.warning("Yahoo chart fetch failed for %s: %s. Trying yfinance.", symbol, e)

    data = fetch_yf_history(symbol, start, end)
    if not data:
        raise MarketDataError(f"No price history for {symbol}")
    return data


def fetch_benchmark_series(start, end) -> list:
    """S&P 500 Total Return closes as DailyValues."""
    data = fetch_price_history(config.BENCHMARK_SYMBOL, start, end)
    return [{"date": d["date"], "value": d["close"]} for d in data]


def fetch_tbill_rates(start, end) -> dict:
    """3-Month T-Bill yields as {date: annual rate decimal}. ^IRX quotes percent."""
    data = fetch_price_history(config.TBILL_SYMBOL, start, end)
    return {d["date"]: d["close"] / 100.0 for d in data}

# ------------------------------------------------------------
# Market data (benchmark + risk-free) with time-boxed memo
# ------------------------------------------------------------

def _filter_market_data(result: dict, start_date: str, end_date: str) -> dict:
    return {
        **result,
        "benchmark": [
            dv for dv in result["benchmark"] if start_date <= dv["date"] <= end_date
        ],
        "tbill_rates": {
            d: r for d, r in result["tbill_rates"].items() if start_date <= d <= end_date
        },
        "start_date": start_date,
        "end_date": end_date,
    }


def fetch_market_data(start_date: str, end_date: str) -> dict:
    """
    Fetch benchmark closes and T-Bill rates covering [start_date, end_date].

    Returns:
        dict: {
            "benchmark": [DailyValue, ...],
            "tbill_rates": {date: rate},
            "start_date", "end_date", "source",
        }
    """
    cached = _MARKET_DATA_CACHE.get("entry")
    if (
        cached is not None
        and cached["start_date"] <= start_date
        and cached["end_date"] >= end_date
        and time.time() - cached["fetched_at"] < config.MARKET_DATA_CACHE_TTL
    ):
        logger.info("Using cached market data")
        return _filter_market_data(cached["data"], start_date, end_date)

    logger.info("Fetching market data from %s to %s", start_date, end_date)

    # Pad the window so month boundaries have an observation on both sides
    start = pd.Timestamp(start_date) - pd.Timedelta(days=MARKET_DATA_PADDING_DAYS)
    end = pd.Timestamp(end_date) + pd.Timedelta(days=MARKET_DATA_PADDING_DAYS)

    benchmark = fetch_benchmark_series(start, end)
    tbill_rates = fetch_tbill_rates(start, end)

    benchmark.sort(key=lambda dv: dv["date"])
    if not benchmark:
        raise MarketDataError("Benchmark series is empty")

    result = {
        "benchmark": benchmark,
        "tbill_rates": tbill_rates,
        "start_date": benchmark[0]["date"],
        "end_date": benchmark[-1]["date"],
        "source": f"Yahoo Finance ({config.BENCHMARK_SYMBOL}, {config.TBILL_SYMBOL})",
    }

    _MARKET_DATA_CACHE["entry"] = {
        "data": result,
        "fetched_at": time.time(),
        "start_date": result["start_date"],
        "end_date": result["end_date"],
    }

    return _filter_market_data(result, start_date, end_date)


def clear_market_data_cache():
    _MARKET_DATA_CACHE.clear()


def get_market_data_safe(start_date: str, end_date: str) -> dict:
    """
    Like fetch_market_data, but never raises. A failed fetch returns an
    empty benchmark plus a warning so callers can still compute the
    portfolio-only metrics.
    """
    try:
        return fetch_market_data(start_date, end_date)
    except Exception as e:
        logger.warning("Failed to fetch market data: %s", e)
        return {
            "benchmark": [],
            "tbill_rates": {},
            "start_date": start_date,
            "end_date": end_date,
            "source": "unavailable",
            "warning": f"Could not fetch market data: {e}",
        }


def forward_fill_rates(dates, tbill_rates: dict, default: float = DEFAULT_TBILL_RATE) -> list:
    """
    Align T-Bill rates to ascending `dates`. Before the first quote the
    default applies; after it the latest quote on or before each date carries.
    """
    known = sorted(tbill_rates)
    last_rate = default
    pos = 0

    rates = []
    for d in dates:
        while pos < len(known) and known[pos] <= d:
            last_rate = tbill_rates[known[pos]]
            pos += 1
        rates.append(last_rate)
    return rates
