"""
LedgerCore - API Endpoint Tests

Integration tests for the HTTP surface.
"""

import pytest
from uuid import uuid4


def _account(code, name, account_type, sub_type):
    return {"code": code, "name": name, "account_type": account_type, "sub_type": sub_type}


class TestHealthEndpoint:
    """Test cases for the health check."""

    @pytest.mark.asyncio
    async def test_health_check(self, client):
        """Test health endpoint returns healthy status."""
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestAccess:
    """Test cases for the forwarded access assertion."""

    @pytest.mark.asyncio
    async def test_missing_organization_header(self, client, organization_id):
        """Requests without an organization assertion are rejected."""
        response = await client.get(f"/api/v1/organizations/{organization_id}/accounts")

        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_other_organization_forbidden(self, client, auth_headers):
        """The path organization must be the asserted one."""
        response = await client.get(f"/api/v1/organizations/{uuid4()}/accounts", headers=auth_headers)

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_read_only_cannot_write(self, client, organization_id, auth_headers):
        """Writing needs ledger:write."""
        headers = {**auth_headers, "X-Ledger-Permissions": "ledger:read"}

        response = await client.post(
            f"/api/v1/organizations/{organization_id}/accounts",
            json=_account("1000", "Cash", "asset", "current_asset"),
            headers=headers,
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_write_implies_read(self, client, organization_id, auth_headers):
        """ledger:write alone may also read."""
        headers = {**auth_headers, "X-Ledger-Permissions": "ledger:write"}

        response = await client.get(f"/api/v1/organizations/{organization_id}/accounts", headers=headers)

        assert response.status_code == 200
        assert response.json() == []


class TestLedgerFlow:
    """End-to-end flow through accounts, journal entries and reports."""

    @pytest.mark.asyncio
    async def test_post_and_trial_balance(self, client, organization_id, auth_headers):
        """Create accounts, post a sale and read it back in every view."""
        base = f"/api/v1/organizations/{organization_id}"

        cash = await client.post(
            f"{base}/accounts", json=_account("1000", "Cash", "asset", "current_asset"), headers=auth_headers
        )
        revenue = await client.post(
            f"{base}/accounts", json=_account("4000", "Sales", "revenue", "operating_revenue"), headers=auth_headers
        )
        assert cash.status_code == 201
        assert revenue.status_code == 201
        cash_id = cash.json()["id"]
        revenue_id = revenue.json()["id"]

        draft = await client.post(
            f"{base}/journal-entries",
            json={
                "entry_date": "2026-01-15",
                "description": "Cash sale",
                "lines": [
                    {"account_id": cash_id, "debit_amount": "100.00"},
                    {"account_id": revenue_id, "credit_amount": "100.00"},
                ],
            },
            headers=auth_headers,
        )
        assert draft.status_code == 201
        assert draft.json()["status"] == "draft"
        entry_id = draft.json()["id"]

        posted = await client.post(f"{base}/journal-entries/{entry_id}/post", headers=auth_headers)
        assert posted.status_code == 200
        assert posted.json()["entry_number"] == "JE-000001"

        again = await client.post(f"{base}/journal-entries/{entry_id}/post", headers=auth_headers)
        assert again.status_code == 409
        assert again.json()["detail"]["code"] == "ALREADY_POSTED"

        balance = await client.get(
            f"{base}/accounts/{cash_id}/balance", params={"as_of_date": "2026-01-31"}, headers=auth_headers
        )
        assert balance.status_code == 200
        assert float(balance.json()["balance"]) == 100.0

        ledger = await client.get(f"{base}/general-ledger", headers=auth_headers)
        assert ledger.json()["total"] == 2
        assert ledger.json()["snapshot_sequence"] == 1

        t_account = await client.get(f"{base}/accounts/{cash_id}/ledger", headers=auth_headers)
        assert t_account.status_code == 200
        assert float(t_account.json()["entries"][0]["ledger_balance"]) == 100.0

        report = await client.get(
            f"{base}/trial-balance", params={"as_of_date": "2026-01-31"}, headers=auth_headers
        )
        assert report.status_code == 200
        body = report.json()
        assert body["is_balanced"] is True
        assert float(body["total_debits"]) == 100.0
        assert float(body["total_credits"]) == 100.0

        verify = await client.post(f"{base}/general-ledger/verify", headers=auth_headers)
        assert verify.json()["is_consistent"] is True

    @pytest.mark.asyncio
    async def test_unbalanced_post_returns_validation_error(self, client, organization_id, auth_headers):
        """An unbalanced draft is refused with the error envelope."""
        base = f"/api/v1/organizations/{organization_id}"
        cash = (await client.post(
            f"{base}/accounts", json=_account("1000", "Cash", "asset", "current_asset"), headers=auth_headers
        )).json()
        revenue = (await client.post(
            f"{base}/accounts", json=_account("4000", "Sales", "revenue", "operating_revenue"), headers=auth_headers
        )).json()

        draft = await client.post(
            f"{base}/journal-entries",
            json={
                "entry_date": "2026-01-15",
                "lines": [
                    {"account_id": cash["id"], "debit_amount": "100.00"},
                    {"account_id": revenue["id"], "credit_amount": "90.00"},
                ],
            },
            headers=auth_headers,
        )
        response = await client.post(
            f"{base}/journal-entries/{draft.json()['id']}/post", headers=auth_headers
        )

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "UNBALANCED_ENTRY"

    @pytest.mark.asyncio
    async def test_unknown_account_returns_not_found(self, client, organization_id, auth_headers):
        response = await client.get(
            f"/api/v1/organizations/{organization_id}/accounts/{uuid4()}", headers=auth_headers
        )

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "ACCOUNT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_reconciliation_endpoints(self, client, organization_id, auth_headers):
        """Start, auto-match and complete a reconciliation over HTTP."""
        base = f"/api/v1/organizations/{organization_id}"
        cash = (await client.post(
            f"{base}/accounts", json=_account("1000", "Cash", "asset", "current_asset"), headers=auth_headers
        )).json()
        revenue = (await client.post(
            f"{base}/accounts", json=_account("4000", "Sales", "revenue", "operating_revenue"), headers=auth_headers
        )).json()
        draft = (await client.post(
            f"{base}/journal-entries",
            json={
                "entry_date": "2026-03-11",
                "description": "Customer deposit",
                "lines": [
                    {"account_id": cash["id"], "debit_amount": "250.00"},
                    {"account_id": revenue["id"], "credit_amount": "250.00"},
                ],
            },
            headers=auth_headers,
        )).json()
        await client.post(f"{base}/journal-entries/{draft['id']}/post", headers=auth_headers)

        started = await client.post(
            f"{base}/bank-reconciliations",
            json={
                "account_id": cash["id"],
                "reconciliation_date": "2026-03-31",
                "statement_balance": "250.00",
                "transactions": [
                    {"transaction_date": "2026-03-10", "amount": "250.00", "transaction_type": "credit"},
                ],
            },
            headers=auth_headers,
        )
        assert started.status_code == 201
        reconciliation_id = started.json()["id"]
        assert len(started.json()["unmatched_book_entries"]) == 1

        matched = await client.post(
            f"{base}/bank-reconciliations/{reconciliation_id}/auto-match", headers=auth_headers
        )
        assert matched.json()["matched_count"] == 1

        completed = await client.post(
            f"{base}/bank-reconciliations/{reconciliation_id}/complete", headers=auth_headers
        )
        assert completed.status_code == 200
        assert completed.json()["status"] == "completed"
        assert len(completed.json()["matched_pairs"]) == 1
