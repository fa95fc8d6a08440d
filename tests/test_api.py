# tests/test_api.py
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

from src.analytics.base import CancellationToken, DataAccessError, OperationCancelled
from src.api.app import create_app, run_cancellable, watch_disconnect
from src.io.db_io import make_session_factory


@pytest.fixture
def client(seeded_factory):
    return TestClient(create_app(seeded_factory))


def test_sellin_requires_dates(client):
    response = client.post("/api/sales/sellin", json={"pharmacyIds": ["P1"]})

    assert response.status_code == 400
    assert response.json() == {"error": "start and end date are required"}


def test_sellin_summary_and_comparison(client):
    response = client.post(
        "/api/sales/sellin",
        json={
            "startDate": "2024-01-01",
            "endDate": "2024-01-31",
            "comparisonStartDate": "2023-01-01",
            "comparisonEndDate": "2023-01-31",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["startDate"] == "2024-01-01"
    assert body["totalOrders"] == 2
    assert body["totalPurchaseQuantity"] == 23
    assert body["totalStockBreakQuantity"] == 6
    assert body["stockBreakRate"] == 20.69
    assert body["actualDateRange"] == {"min": "2024-01-10", "max": "2024-01-20", "days": 2}
    assert body["pharmacyIds"] == "all"
    assert body["code13refs"] == "all"

    comparison = body["comparison"]
    assert comparison["totalPurchaseQuantity"] == 5
    assert comparison["evolution"]["purchaseQuantity"] == {"absolute": 18, "percentage": 360.0, "isPositive": True}


def test_sellin_get_with_repeated_params(client):
    response = client.get(
        "/api/sales/sellin",
        params={"startDate": "2024-01-01", "endDate": "2024-01-31", "pharmacyIds": ["P1"]},
    )

    assert response.status_code == 200
    assert response.json()["totalOrderedQuantity"] == 17
    assert response.json()["pharmacyIds"] == ["P1"]


def test_sellin_for_period_without_orders_returns_zeros(client):
    response = client.post("/api/sales/sellin", json={"startDate": "2019-01-01", "endDate": "2019-12-31"})

    body = response.json()
    assert response.status_code == 200
    assert body["totalOrders"] == 0
    assert body["totalPurchaseAmount"] == 0
    assert body["averagePurchasePrice"] == 0
    assert body["actualDateRange"] == {"min": None, "max": None, "days": 0}
    assert "comparison" not in body


def test_database_failure_returns_500(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}", connect_args={"check_same_thread": False})
    client = TestClient(create_app(make_session_factory(engine)))

    response = client.post("/api/sales/sellin", json={"startDate": "2024-01-01", "endDate": "2024-01-31"})

    assert response.status_code == 500
    assert response.json()["error"] == "Failed to compute sell-in data"
    assert "no such table" in response.json()["details"]


def test_sellout(client):
    response = client.post("/api/sales/sellout", json={"startDate": "2024-01-01", "endDate": "2024-01-31"})

    assert response.status_code == 200
    assert response.json()["totalQuantity"] == 11
    assert response.json()["referencesSold"] == 3


def test_segment_distribution_get_and_post_agree(client):
    params = {"startDate": "2024-01-01", "endDate": "2024-01-31", "segmentType": "universe"}

    by_get = client.get("/api/sales/segment-distribution", params=params).json()
    by_post = client.post("/api/sales/segment-distribution", json=params).json()

    assert by_get["distributions"] == by_post["distributions"]
    assert [row["segment"] for row in by_get["distributions"]] == ["Médicament", "Parapharmacie"]
    assert by_get["distributions"][0]["revenue_percentage"] == 50.66


def test_segment_distribution_invalid_type(client):
    response = client.post(
        "/api/sales/segment-distribution",
        json={"startDate": "2024-01-01", "endDate": "2024-01-31", "segmentType": "unknown"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "invalid segment type"}


def test_segment_evolution_requires_all_dates(client):
    response = client.post(
        "/api/sales/segment-evolution",
        json={"startDate": "2024-01-01", "endDate": "2024-01-31", "comparisonStartDate": "2023-01-01"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "dates are required"}


def test_segment_evolution(client):
    response = client.post(
        "/api/sales/segment-evolution",
        json={
            "startDate": "2024-01-01",
            "endDate": "2024-01-31",
            "comparisonStartDate": "2023-01-01",
            "comparisonEndDate": "2023-01-31",
        },
    )

    rows = {row["segment"]: row for row in response.json()["data"]}
    assert rows["Médicament"]["evolution"]["percentage"] == 242.22
    assert rows["Médicament"]["evolution"]["isPositive"] is True
    assert rows["Médicament"]["evolution_percentage"] == 242.22


def test_sellin_and_stock_by_segment(client):
    sellin = client.post("/api/sellin/by-segment", json={"startDate": "2024-01-01", "endDate": "2024-01-31"})
    stock = client.post("/api/stock/by-segment", json={"endDate": "2024-02-28", "segmentType": "universe"})

    assert sellin.status_code == 200
    assert sellin.json()["distributions"][0] == {
        "segment": "Parapharmacie",
        "total_amount": 45.0,
        "total_quantity": 5,
        "product_count": 1,
    }
    assert stock.status_code == 200
    assert stock.json()["distributions"][0]["total_value"] == 64.0


def test_stock_by_segment_requires_end_date(client):
    response = client.post("/api/stock/by-segment", json={"segmentType": "universe"})

    assert response.status_code == 400


def test_margins_report_shape(client):
    body = client.post("/api/products/margins", json={"pharmacyIds": ["P1"]}).json()

    assert body["pharmacyIds"] == ["P1"]
    assert body["counts"] == {
        "negativeMargin": 0,
        "lowMargin": 0,
        "mediumMargin": 0,
        "goodMargin": 1,
        "excellentMargin": 1,
    }
    assert body["totalProducts"] == 2
    assert body["goodMargin"][0]["id"] == "p1-b"


def test_price_comparison_and_stock_months(client):
    prices = client.post("/api/products/price-comparison", json={"pharmacyIds": ["P2"]}).json()
    stock = client.get("/api/inventory/stock-months", params={"asOfDate": "2024-01-31"}).json()

    assert prices["counts"]["highPrice"] == 1
    assert stock["counts"]["criticalHigh"] == 1
    assert stock["counts"]["optimal"] == 1


def test_data_access_error_from_service_is_reported(seeded_factory):
    app = create_app(seeded_factory)
    client = TestClient(app)
    app.state.segments.distribution = MagicMock(
        side_effect=DataAccessError("Failed to compute segment distribution", "disk I/O error")
    )

    response = client.post(
        "/api/sales/segment-distribution",
        json={"startDate": "2024-01-01", "endDate": "2024-01-31"},
    )

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to compute segment distribution", "details": "disk I/O error"}


def test_cancelled_request_returns_499(seeded_factory):
    app = create_app(seeded_factory)
    client = TestClient(app)
    app.state.sellin.compute = AsyncMock(side_effect=OperationCancelled("Operation was cancelled"))

    response = client.post("/api/sales/sellin", json={"startDate": "2024-01-01", "endDate": "2024-01-31"})

    assert response.status_code == 499


def test_sellin_without_body_returns_400(client):
    response = client.post("/api/sales/sellin")

    assert response.status_code == 400
    assert response.json() == {"error": "start and end date are required"}


def test_malformed_date_type_returns_400(client):
    response = client.post("/api/sales/sellin", json={"startDate": 20240101, "endDate": "2024-01-31"})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid value for startDate"}


def test_sellin_for_unknown_pharmacy_returns_zeros(client):
    response = client.post(
        "/api/sales/sellin",
        json={"startDate": "2024-01-01", "endDate": "2024-01-31", "pharmacyIds": ["NOPE"]},
    )

    body = response.json()
    assert response.status_code == 200
    assert body["totalOrders"] == 0
    assert body["totalOrderedQuantity"] == 0
    assert body["totalStockBreakAmount"] == 0
    assert body["actualDateRange"] == {"min": None, "max": None, "days": 0}
    assert body["pharmacyIds"] == ["NOPE"]


class _FakeRequest:
    def __init__(self, disconnected: bool):
        self.url = SimpleNamespace(path="/api/sales/sellin")
        self._disconnected = disconnected

    async def is_disconnected(self) -> bool:
        return self._disconnected


@pytest.mark.asyncio
async def test_client_disconnect_cancels_token():
    token = CancellationToken()

    await watch_disconnect(_FakeRequest(disconnected=True), token, poll_seconds=0)

    assert token.is_cancelled


@pytest.mark.asyncio
async def test_disconnect_during_computation_stops_it():
    async def compute(token):
        for _ in range(100):
            if token.is_cancelled:
                raise OperationCancelled("Operation was cancelled")
            await asyncio.sleep(0.01)
        return "finished"

    with pytest.raises(OperationCancelled):
        await run_cancellable(_FakeRequest(disconnected=True), compute)


@pytest.mark.asyncio
async def test_connected_client_gets_result():
    request = _FakeRequest(disconnected=False)

    async def compute(token):
        await asyncio.sleep(0)
        return token.is_cancelled

    assert await run_cancellable(request, compute) is False
