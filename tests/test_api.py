"""
End-to-end tests through the HTTP API.
"""

import pytest
from fastapi.testclient import TestClient

from spendguard.main import app

OWNER_HEADERS = {"X-Owner-Id": "user-1"}


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def post_expense(client, title, amount, category="food", when="2024-03-10T12:00:00", headers=OWNER_HEADERS):
    response = client.post("/api/expenses", headers=headers, json={
        "title": title,
        "amount": amount,
        "category": category,
        "transaction_date": when,
    })
    assert response.status_code == 201, response.text
    return response.json()


class TestHealthEndpoint:
    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "ok"}


class TestOwnerHeader:
    def test_missing_owner_is_401(self, client):
        assert client.get("/api/security/dashboard").status_code == 401


class TestExpenses:
    """Tests for the expense endpoints."""

    def test_duplicate_burger_creates_alert(self, client):
        first = post_expense(client, "Burger", 100)
        second = post_expense(client, "Burger", 100)

        anomalies = client.get("/api/security/anomalies", params={"status": "PENDING"}, headers=OWNER_HEADERS).json()

        duplicates = [a for a in anomalies if a["type"] == "DUPLICATE_TRANSACTION"]
        assert len(duplicates) == 1
        assert duplicates[0]["evidence"] == {"duplicateOf": first["id"]}
        assert duplicates[0]["ownerId"] == "user-1"
        assert duplicates[0]["status"] == "PENDING"
        assert duplicates[0]["transactionId"] == {
            "id": second["id"],
            "title": "Burger",
            "amount": 100.0,
            "category": "food",
            "transactionDate": "2024-03-10T12:00:00",
        }

        alerts = client.get("/api/security/dashboard", headers=OWNER_HEADERS).json()["recentAlerts"]
        assert alerts[0]["transactionId"]["amount"] == 100.0
        assert alerts[0]["transactionId"]["category"] == "food"

    def test_budget_scenario(self, client):
        response = client.post("/api/budgets", headers=OWNER_HEADERS, json={
            "name": "Food", "category": "food", "amount": 1000,
            "period": "monthly", "start_date": "2024-03-01T00:00:00",
        })
        assert response.status_code == 201, response.text

        post_expense(client, "Groceries", 100)
        anomalies = client.get("/api/security/anomalies", params={"type": "BUDGET_EXCEEDED"},
                               headers=OWNER_HEADERS).json()
        assert anomalies == []

        post_expense(client, "Catering", 950, when="2024-03-10T13:00:00")
        anomalies = client.get("/api/security/anomalies", params={"type": "BUDGET_EXCEEDED"},
                               headers=OWNER_HEADERS).json()
        assert len(anomalies) == 1
        assert anomalies[0]["evidence"]["currentSpend"] == 1050.0
        assert anomalies[0]["evidence"]["exceededBy"] == 50.0

    def test_writes_are_audited(self, client):
        expense = post_expense(client, "Taxi", 30, category="transport")
        client.put(f"/api/expenses/{expense['id']}", headers=OWNER_HEADERS, json={"amount": 35})
        client.delete(f"/api/expenses/{expense['id']}", headers=OWNER_HEADERS)

        logs = client.get("/api/security/audit-logs", headers=OWNER_HEADERS).json()

        assert {log["action"] for log in logs} == {"EXPENSE_CREATE", "EXPENSE_UPDATE", "EXPENSE_DELETE"}
        assert all(log["resourceId"] == expense["id"] for log in logs)

    def test_other_owner_cannot_touch_expense(self, client):
        expense = post_expense(client, "Taxi", 30, category="transport")
        response = client.delete(f"/api/expenses/{expense['id']}", headers={"X-Owner-Id": "user-2"})
        assert response.status_code == 404

    def test_invalid_amount_is_422(self, client):
        response = client.post("/api/expenses", headers=OWNER_HEADERS,
                               json={"title": "Refund", "amount": -5, "category": "food"})
        assert response.status_code == 422

    def test_income_is_not_scanned(self, client):
        response = client.post("/api/income", headers=OWNER_HEADERS, json={
            "title": "Salary", "amount": 50000, "category": "salary",
            "transaction_date": "2024-03-10T03:00:00",
        })
        assert response.status_code == 201
        assert client.get("/api/security/anomalies", headers=OWNER_HEADERS).json() == []


class TestResolveEndpoint:
    """Tests for resolving through the API."""

    def _odd_time_anomaly(self, client):
        post_expense(client, "Night snack", 12, when="2024-03-10T03:00:00")
        anomalies = client.get("/api/security/anomalies", headers=OWNER_HEADERS).json()
        assert len(anomalies) == 1
        return anomalies[0]

    def test_resolve_then_conflict(self, client):
        anomaly = self._odd_time_anomaly(client)
        url = f"/api/security/anomalies/{anomaly['id']}/resolve"

        first = client.post(url, headers=OWNER_HEADERS, json={"action": "DISMISSED"})
        assert first.status_code == 200
        assert first.json()["status"] == "DISMISSED"
        assert first.json()["resolutionNote"] == "False positive"
        assert first.json()["resolvedAt"] is not None

        second = client.post(url, headers=OWNER_HEADERS, json={"action": "CONFIRMED", "resolutionNote": "oops"})
        assert second.status_code == 409
        assert second.json()["detail"] == {"error": "already_resolved", "status": "DISMISSED"}

    def test_unknown_anomaly_is_404(self, client):
        response = client.post("/api/security/anomalies/00000000-0000-0000-0000-000000000000/resolve",
                               headers=OWNER_HEADERS, json={"action": "CONFIRMED"})
        assert response.status_code == 404

    def test_invalid_action_is_422(self, client):
        anomaly = self._odd_time_anomaly(client)
        response = client.post(f"/api/security/anomalies/{anomaly['id']}/resolve",
                               headers=OWNER_HEADERS, json={"action": "PENDING"})
        assert response.status_code == 422


class TestDashboard:
    """Tests for the dashboard summary."""

    def test_clean_dashboard(self, client):
        body = client.get("/api/security/dashboard", headers=OWNER_HEADERS).json()

        assert body["stats"] == {"total": 0, "pending": 0, "resolved": 0}
        assert body["healthScore"] == 100
        assert body["healthStatus"] == "secure"
        assert body["recentAlerts"] == []

    def test_dashboard_reflects_resolution(self, client):
        post_expense(client, "Night snack", 12, when="2024-03-10T03:00:00")
        body = client.get("/api/security/dashboard", headers=OWNER_HEADERS).json()
        assert body["stats"] == {"total": 1, "pending": 1, "resolved": 0}
        assert body["healthScore"] == 98
        anomaly_id = body["recentAlerts"][0]["id"]

        client.post(f"/api/security/anomalies/{anomaly_id}/resolve", headers=OWNER_HEADERS,
                    json={"action": "CONFIRMED", "resolutionNote": "my card"})
        body = client.get("/api/security/dashboard", headers=OWNER_HEADERS).json()

        assert body["stats"] == {"total": 1, "pending": 0, "resolved": 1}
        assert body["healthScore"] == 99
        assert body["recentAlerts"] == []
        assert body["recentLogs"][0]["action"] == "ANOMALY_RESOLVE"
        assert body["recentLogs"][0]["details"] == {"action": "CONFIRMED", "note": "my card"}


class TestSilentLeaks:
    """Tests for leak detection through the API."""

    def test_small_expenses_raise_one_leak(self, client):
        for day in (1, 3, 5, 7, 9):
            post_expense(client, "Stream", 50, category="entertainment", when=f"2024-03-{day:02d}T12:00:00")

        leaks = client.get("/api/security/anomalies", params={"type": "SILENT_LEAK"}, headers=OWNER_HEADERS).json()

        assert len(leaks) == 1
        assert leaks[0]["evidence"] == {"period": "30 Days", "count": 5, "totalAmount": 250.0}
        assert leaks[0]["status"] == "PENDING"
        assert leaks[0]["transactionId"] is None

    def test_scan_does_not_repeat_open_leak(self, client):
        for day in (1, 3, 5, 7, 9):
            post_expense(client, "Stream", 50, category="entertainment", when=f"2024-03-{day:02d}T12:00:00")

        response = client.post("/api/security/scan-leaks", headers=OWNER_HEADERS,
                               json={"asOf": "2024-03-11T12:00:00"})

        assert response.status_code == 200
        assert response.json()["anomaliesFound"] == 0
        leaks = client.get("/api/security/anomalies", params={"type": "SILENT_LEAK"}, headers=OWNER_HEADERS).json()
        assert len(leaks) == 1


class TestBudgets:
    """Tests for the budget endpoints."""

    def test_budget_lifecycle(self, client):
        created = client.post("/api/budgets", headers=OWNER_HEADERS, json={
            "name": "Food", "category": "Food", "amount": 1000,
            "period": "monthly", "start_date": "2024-03-01T00:00:00",
        }).json()
        assert created["category"] == "food"
        assert created["end_date"] == "2024-04-01T00:00:00"

        updated = client.put(f"/api/budgets/{created['id']}", headers=OWNER_HEADERS,
                             json={"period": "weekly", "amount": 250})
        assert updated.status_code == 200
        assert updated.json()["end_date"] == "2024-03-08T00:00:00"
        assert updated.json()["amount"] == 250

        deactivated = client.delete(f"/api/budgets/{created['id']}", headers=OWNER_HEADERS).json()
        assert deactivated["is_active"] is False
        assert client.get("/api/budgets", headers=OWNER_HEADERS).json() == []

        actions = [log["action"] for log in client.get("/api/security/audit-logs", headers=OWNER_HEADERS).json()]
        assert sorted(actions) == ["BUDGET_CREATE", "BUDGET_DELETE", "BUDGET_UPDATE"]

    def test_unknown_budget_is_404(self, client):
        response = client.put("/api/budgets/not-a-uuid", headers=OWNER_HEADERS, json={"amount": 10})
        assert response.status_code == 404
