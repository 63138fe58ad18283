import json
import logging
import os
from datetime import datetime, timezone

import requests

import config
from exceptions import StoreError

logger = logging.getLogger(__name__)

# ============================================================
# TABLES
# ============================================================
PORTFOLIOS_TABLE = "clockwise_portfolios"
DAILY_VALUES_TABLE = "clockwise_portfolio_daily_values"
PERIODS_TABLE = "clockwise_portfolio_periods"

PERIODS_CONFLICT_KEY = "portfolio_name,period_name"


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def _sort_periods(rows):
    # portfolio_name ascending, most recent period first
    rows = sorted(rows, key=lambda r: r.get("start_date") or "", reverse=True)
    return sorted(rows, key=lambda r: r.get("portfolio_name") or "")

# ------------------------------------------------------------
# Supabase (PostgREST over HTTP)
# ------------------------------------------------------------

class SupabaseStore:
    """
    Metrics tables in Supabase, written through the PostgREST endpoint with
    the service-role key. Upserts merge on each table's natural key.
    """

    def __init__(self, url: str, key: str, timeout: int = config.HTTP_TIMEOUT):
        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self.timeout = timeout
        self.headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }

    def _request(self, method, table, params=None, payload=None, prefer=None):
        headers = dict(self.headers)
        if prefer:
            headers["Prefer"] = prefer

        try:
            resp = requests.request(
                method,
                f"{self.base_url}/{table}",
                params=params,
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise StoreError(f"{table}: {e}") from e

        if resp.status_code >= 400:
            raise StoreError(f"{table}: HTTP {resp.status_code} {resp.text[:200]}")

        if not resp.content:
            return []
        return resp.json()

    def _upsert(self, table, rows, conflict_key):
        return self._request(
            "POST",
            table,
            params={"on_conflict": conflict_key},
            payload=rows,
            prefer="resolution=merge-duplicates,return=representation",
        )

    def upsert_portfolio(self, row: dict):
        self._upsert(PORTFOLIOS_TABLE, [row], "name")

    def list_portfolios(self) -> list:
        return self._request("GET", PORTFOLIOS_TABLE, params={"select": "*"})

    def save_daily_values(self, as_of_date: str, portfolios: dict, uploaded_by: str):
        self._upsert(
            DAILY_VALUES_TABLE,
            [{
                "as_of_date": as_of_date,
                "data": portfolios,
                "uploaded_at": _now_iso(),
                "uploaded_by": uploaded_by,
            }],
            "as_of_date",
        )

    def latest_daily_values(self):
        rows = self._request(
            "GET",
            DAILY_VALUES_TABLE,
            params={"select": "*", "order": "as_of_date.desc", "limit": 1},
        )
        return rows[0] if rows else None

    def upsert_periods(self, rows: list):
        if rows:
            self._upsert(PERIODS_TABLE, rows, PERIODS_CONFLICT_KEY)

    def list_periods(self) -> list:
        return self._request(
            "GET",
            PERIODS_TABLE,
            params={"select": "*", "order": "portfolio_name.asc,start_date.desc"},
        )

# ------------------------------------------------------------
# Local JSON file (development / tests)
# ------------------------------------------------------------

class LocalJSONStore:
    """Same interface as SupabaseStore, persisted to one JSON file."""

    def __init__(self, path: str):
        self.path = path

    def _load(self) -> dict:
        empty = {PORTFOLIOS_TABLE: {}, DAILY_VALUES_TABLE: {}, PERIODS_TABLE: {}}
        if not os.path.exists(self.path):
            return empty
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StoreError(f"Could not read {self.path}: {e}") from e
        for table in empty:
            data.setdefault(table, {})
        return data

    def _save(self, data: dict):
        try:
            with open(self.path, "w") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            raise StoreError(f"Could not write {self.path}: {e}") from e

    def upsert_portfolio(self, row: dict):
        data = self._load()
        existing = data[PORTFOLIOS_TABLE].get(row["name"], {})
        data[PORTFOLIOS_TABLE][row["name"]] = {**existing, **row, "updated_at": _now_iso()}
        self._save(data)

    def list_portfolios(self) -> list:
        return list(self._load()[PORTFOLIOS_TABLE].values())

    def save_daily_values(self, as_of_date: str, portfolios: dict, uploaded_by: str):
        data = self._load()
        data[DAILY_VALUES_TABLE][as_of_date] = {
            "as_of_date": as_of_date,
            "data": portfolios,
            "uploaded_at": _now_iso(),
            "uploaded_by": uploaded_by,
        }
        self._save(data)

    def latest_daily_values(self):
        snapshots = self._load()[DAILY_VALUES_TABLE]
        if not snapshots:
            return None
        return snapshots[max(snapshots)]

    def upsert_periods(self, rows: list):
        if not rows:
            return
        data = self._load()
        for row in rows:
            key = f"{row['portfolio_name']}|{row['period_name']}"
            data[PERIODS_TABLE][key] = row
        self._save(data)

    def list_periods(self) -> list:
        return _sort_periods(self._load()[PERIODS_TABLE].values())


def get_store():
    """Supabase when credentials are configured, otherwise the local JSON file."""
    if config.SUPABASE_URL and config.SUPABASE_SERVICE_ROLE_KEY:
        return SupabaseStore(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE_KEY)
    logger.info("Using local metrics store at %s", config.METRICS_STORE_FILE)
    return LocalJSONStore(config.METRICS_STORE_FILE)
