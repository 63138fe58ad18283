import io

import pytest

import portfolio_engine


def upload(client, path, content, filename="values.csv", headers=None):
    return client.post(
        path,
        data={"file": (io.BytesIO(content.encode("utf-8")), filename)},
        content_type="multipart/form-data",
        headers=headers or {},
    )


def test_upload_portfolios(client, store, portfolio_csv, patched_market):
    resp = upload(client, "/api/admin/portfolios/upload", portfolio_csv, headers={"X-Admin-User": "alice"})

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["message"] == "Successfully processed 2 portfolios"
    assert body["data"]["asOfDate"] == "2024-06-28"

    rows = store.list_portfolios()
    assert {row["updated_by"] for row in rows} == {"alice"}


def test_upload_requires_file(client):
    resp = client.post("/api/admin/portfolios/upload", data={}, content_type="multipart/form-data")
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False


def test_upload_rejects_non_csv(client):
    resp = upload(client, "/api/admin/portfolios/upload", "Date,A\n1/2/24,1", filename="values.txt")
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "File must be a CSV"


def test_upload_rejects_header_only_csv(client, patched_market):
    resp = upload(client, "/api/admin/portfolios/upload", "Date,A")
    assert resp.status_code == 400


def test_list_portfolios_sorted(client, portfolio_csv, patched_market):
    upload(client, "/api/admin/portfolios/upload", portfolio_csv)

    resp = client.get("/api/admin/portfolios")
    assert resp.status_code == 200
    assert [row["name"] for row in resp.get_json()["data"]] == ["Max Growth", "Moderate", "S&P 500"]


def test_period_analysis_roundtrip(client, portfolio_csv, patched_market):
    empty = client.get("/api/admin/portfolio-periods").get_json()
    assert empty["success"] is False
    assert empty["data"] is None

    resp = upload(client, "/api/admin/portfolio-periods", portfolio_csv)
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["comparison"]["periodNames"] == ["YTD", "2023", "2022"]

    stored = client.get("/api/admin/portfolio-periods").get_json()
    assert stored["success"] is True
    assert len(stored["data"]["rows"]) == 8
    assert stored["data"]["comparison"]["portfolioNames"] == ["Clockwise Max Growth", "Clockwise Moderate"]


def test_period_analysis_without_benchmark(client, portfolio_csv, monkeypatch):
    monkeypatch.setattr(
        portfolio_engine, "get_market_data_safe",
        lambda start, end: {"benchmark": [], "tbill_rates": {}, "warning": "Could not fetch market data: offline"},
    )
    resp = upload(client, "/api/admin/portfolio-periods", portfolio_csv)

    assert resp.status_code == 400
    assert "offline" in resp.get_json()["message"]


def test_clear_market_cache(client):
    resp = client.post("/api/admin/market-data/clear-cache")
    assert resp.status_code == 200
    assert resp.get_json()["success"] is True


def test_analyze_goal_endpoint(client):
    payload = {
        "intakeData": {
            "portfolio": {"totalValue": 250000, "stocks": 70, "bonds": 30},
            "goalAmount": 400000,
            "timeHorizon": 5,
            "monthlyContribution": 1000,
        }
    }
    resp = client.post("/api/portfolio/analyze-goal", json=payload)

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["goalAnalysis"]["goalAmount"] == 400000
    assert body["goalAnalysis"]["goalDescription"] == "Financial Goal"
    assert body["recommendation"]


@pytest.mark.parametrize("payload", [{}, {"intakeData": {"portfolio": {"totalValue": 0}}}])
def test_analyze_goal_endpoint_bad_input(client, payload):
    resp = client.post("/api/portfolio/analyze-goal", json=payload)
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False


def test_analyze_goal_endpoint_non_json(client):
    resp = client.post("/api/portfolio/analyze-goal", data="nope", content_type="text/plain")
    assert resp.status_code == 400
