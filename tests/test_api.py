"""
API endpoint tests
"""
import pytest


class TestHealthEndpoints:
    """Tests for health check endpoints"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_health_check(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "version" in data

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_root_endpoint(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert "CoopFund" in response.json()["message"]


class TestAuthRequired:
    """Tests that verify auth is required"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_loans_requires_auth(self, client):
        response = await client.get("/api/v1/loans/1")

        assert response.status_code == 401

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rejects_garbage_token(self, client):
        response = await client.get("/api/v1/loans/1", headers={"Authorization": "Bearer not-a-token"})

        assert response.status_code == 401


class TestLoanEndpoints:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_engine_errors_use_json_envelope(self, client, cooperative, borrower, borrower_headers, regular_loan_type):
        response = await client.post(
            f"/api/v1/cooperatives/{cooperative.id}/loans",
            json={"loan_type_id": regular_loan_type.id, "amount": "900000", "purpose": "Land", "duration": 6},
            headers=borrower_headers
        )

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["kind"] == "OutOfRange"
        assert "between" in data["message"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_non_member_forbidden(self, client, cooperative, borrower, regular_loan_type, auth_headers_for):
        response = await client.get(
            f"/api/v1/cooperatives/{cooperative.id}/loan-types",
            headers=auth_headers_for(99)
        )

        assert response.status_code == 403
        assert response.json()["kind"] == "Forbidden"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_missing_loan(self, client, cooperative, borrower, borrower_headers):
        response = await client.get("/api/v1/loans/404", headers=borrower_headers)

        assert response.status_code == 404
        assert response.json()["message"] == "Loan not found"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_loan_lifecycle(
        self, client, cooperative, admin, admin_headers, borrower, borrower_headers, regular_loan_type
    ):
        # Request
        response = await client.post(
            f"/api/v1/cooperatives/{cooperative.id}/loans",
            json={"loan_type_id": regular_loan_type.id, "amount": "100000", "purpose": "Stock", "duration": 10},
            headers=borrower_headers
        )
        assert response.status_code == 201
        loan = response.json()
        assert loan["status"] == "pending"
        assert loan["total_repayment"] == 110000
        assert loan["monthly_repayment"] == 11000
        loan_id = loan["id"]

        response = await client.get(f"/api/v1/cooperatives/{cooperative.id}/loans/pending", headers=admin_headers)
        assert [l["id"] for l in response.json()] == [loan_id]

        # Approve
        response = await client.post(f"/api/v1/loans/{loan_id}/approve", json={}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["fully_approved"] is True
        assert response.json()["loan"]["status"] == "approved"

        # Approving twice is an invalid transition
        response = await client.post(f"/api/v1/loans/{loan_id}/approve", json={}, headers=admin_headers)
        assert response.status_code == 409
        assert response.json()["kind"] == "InvalidTransition"

        # Disburse
        response = await client.post(f"/api/v1/loans/{loan_id}/disburse", json={}, headers=admin_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["loan"]["status"] == "disbursed"
        assert len(body["schedule"]) == 10

        # Borrower self-reports, admin confirms
        response = await client.post(
            f"/api/v1/loans/{loan_id}/repayments", json={"amount": "15000"}, headers=borrower_headers
        )
        assert response.status_code == 201
        assert response.json()["pending_confirmation"] is True
        repayment_id = response.json()["repayment"]["id"]

        response = await client.post(
            f"/api/v1/loans/{loan_id}/repayments", json={"amount": "15000"}, headers=borrower_headers
        )
        assert response.status_code == 409
        assert response.json()["kind"] == "DuplicateSubmission"

        response = await client.post(f"/api/v1/repayments/{repayment_id}/confirm", headers=admin_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["loan"]["status"] == "repaying"
        assert body["loan"]["outstanding_balance"] == 95000
        assert [a["installment_number"] for a in body["allocations"]] == [1, 2]

        response = await client.get(f"/api/v1/loans/{loan_id}/schedule", headers=borrower_headers)
        statuses = [row["status"] for row in response.json()]
        assert statuses[:3] == ["paid", "partial", "pending"]

        response = await client.get(f"/api/v1/loans/{loan_id}/reconciliation", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["is_consistent"] is True

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_ledger_visibility(
        self, client, cooperative, admin, admin_headers, borrower, borrower_headers, guarantor, disbursed_loan,
        auth_headers_for
    ):
        response = await client.post(
            f"/api/v1/loans/{disbursed_loan.id}/repayments", json={"amount": "3000"}, headers=admin_headers
        )
        assert response.status_code == 201
        assert response.json()["pending_confirmation"] is False

        response = await client.get(f"/api/v1/cooperatives/{cooperative.id}/ledger", headers=borrower_headers)
        assert [(e["type"], e["amount"]) for e in response.json()] == [("loan_repayment", 3000)]

        response = await client.get(
            f"/api/v1/cooperatives/{cooperative.id}/ledger", headers=auth_headers_for(guarantor.user_id)
        )
        assert response.json() == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_notifications_feed(self, client, cooperative, admin, admin_headers, borrower, borrower_headers,
                                      regular_loan_type):
        await client.post(
            f"/api/v1/cooperatives/{cooperative.id}/loans",
            json={"loan_type_id": regular_loan_type.id, "amount": "5000", "purpose": "Rent", "duration": 2},
            headers=borrower_headers
        )

        response = await client.get("/api/v1/notifications", headers=admin_headers)
        data = response.json()
        assert data["unread_count"] == 1
        notification = data["notifications"][0]
        assert notification["type"] == "loan_requested"

        response = await client.patch(f"/api/v1/notifications/{notification['id']}/read", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["read_at"] is not None
