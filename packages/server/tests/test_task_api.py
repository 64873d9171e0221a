"""
HTTP tests for task endpoints.

Tests cover:
- Task creation with fee breakdown, listing, fetching
- The full lifecycle over HTTP, including rejected completion
- Error bodies carry the rejection code
- Reviews after completion
"""

from __future__ import annotations

import uuid

import pytest
from httpx import AsyncClient

from madadkaro_shared.schemas.common import ErrorBody, RejectionCode


async def _create_task(client: AsyncClient, headers: dict, payload: dict) -> dict:
    response = await client.post("/api/v1/tasks/", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def _assigned_task(client, auth_headers, customer, tasker, payload) -> dict:
    task = await _create_task(client, auth_headers(customer), payload)
    bid = await client.post(
        "/api/v1/bids/",
        json={"task_id": task["id"], "amount": 450, "message": "On it"},
        headers=auth_headers(tasker),
    )
    assert bid.status_code == 201, bid.text
    accepted = await client.post(
        f"/api/v1/bids/{bid.json()['id']}/accept", headers=auth_headers(customer)
    )
    assert accepted.status_code == 200, accepted.text
    return task


class TestTaskCrud:
    @pytest.mark.asyncio
    async def test_create_computes_fees(self, client, auth_headers, customer, task_payload):
        task = await _create_task(client, auth_headers(customer), task_payload)

        assert task["status"] == "open"
        assert task["assigned_to"] is None
        assert task["version"] == 1
        assert task["platform_fee"] == 25
        assert task["commission_amount"] == 75
        assert task["final_tasker_payout"] == 425
        assert task["total_amount_paid_by_customer"] == 527

    @pytest.mark.asyncio
    async def test_taskers_cannot_post_tasks(self, client, auth_headers, tasker_a, task_payload):
        response = await client.post(
            "/api/v1/tasks/", json=task_payload, headers=auth_headers(tasker_a)
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, client, task_payload):
        response = await client.post("/api/v1/tasks/", json=task_payload)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_bad_token_is_401(self, client):
        response = await client.get(
            "/api/v1/tasks/", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_task_is_404(self, client, auth_headers, customer):
        response = await client.get(f"/api/v1/tasks/{uuid.uuid4()}", headers=auth_headers(customer))
        assert response.status_code == 404
        assert response.json()["code"] == "NotFound"

    @pytest.mark.asyncio
    async def test_list_mine(self, client, auth_headers, customer, tasker_a, task_payload):
        mine = await _create_task(client, auth_headers(customer), task_payload)
        other = type(customer)(user_id=uuid.uuid4(), role=customer.role)
        await _create_task(client, auth_headers(other), task_payload)

        response = await client.get("/api/v1/tasks/?mine=true", headers=auth_headers(customer))
        assert [t["id"] for t in response.json()] == [mine["id"]]

        everything = await client.get("/api/v1/tasks/?status=open", headers=auth_headers(tasker_a))
        assert len(everything.json()) == 2

    @pytest.mark.asyncio
    async def test_edit_budget(self, client, auth_headers, customer, task_payload):
        task = await _create_task(client, auth_headers(customer), task_payload)

        response = await client.patch(
            f"/api/v1/tasks/{task['id']}", json={"budget": 1000}, headers=auth_headers(customer)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["budget"] == 1000
        assert body["platform_fee"] == 50
        assert body["version"] == 2

    @pytest.mark.asyncio
    async def test_edit_after_assignment_is_409(
        self, client, auth_headers, customer, tasker_a, task_payload
    ):
        task = await _assigned_task(client, auth_headers, customer, tasker_a, task_payload)
        response = await client.patch(
            f"/api/v1/tasks/{task['id']}", json={"title": "New"}, headers=auth_headers(customer)
        )
        assert response.status_code == 409
        assert response.json()["code"] == "InvalidState"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_cancel_assigned_task_is_rejected(
        self, client, auth_headers, customer, tasker_a, task_payload
    ):
        task = await _assigned_task(client, auth_headers, customer, tasker_a, task_payload)

        response = await client.post(
            f"/api/v1/tasks/{task['id']}/cancel", headers=auth_headers(customer)
        )

        assert response.status_code == 409
        assert response.json() == {
            "detail": "Cannot CANCEL_TASK a task in status 'assigned' (requires 'open')",
            "code": "InvalidState",
        }
        assert ErrorBody.model_validate(response.json()).code == RejectionCode.INVALID_STATE

    @pytest.mark.asyncio
    async def test_rejected_completion_reaches_tasker(
        self, client, auth_headers, publisher, customer, tasker_a, task_payload
    ):
        task = await _assigned_task(client, auth_headers, customer, tasker_a, task_payload)
        base = f"/api/v1/tasks/{task['id']}"

        started = await client.post(f"{base}/start", headers=auth_headers(tasker_a))
        assert started.json()["status"] == "inProgress"

        requested = await client.post(
            f"{base}/request-completion", json={"note": "done"}, headers=auth_headers(tasker_a)
        )
        assert requested.json()["status"] == "completionRequested"

        rejected = await client.post(
            f"{base}/reject-completion", json={"reason": "not done"}, headers=auth_headers(customer)
        )
        assert rejected.status_code == 200
        assert rejected.json()["status"] == "inProgress"

        last = publisher.events_for(tasker_a.user_id)[-1]
        assert last["type"] == "completion_rejected"
        assert last["taskId"] == task["id"]
        assert last["reason"] == "not done"

    @pytest.mark.asyncio
    async def test_empty_completion_note_is_422(
        self, client, auth_headers, customer, tasker_a, task_payload
    ):
        task = await _assigned_task(client, auth_headers, customer, tasker_a, task_payload)
        base = f"/api/v1/tasks/{task['id']}"
        await client.post(f"{base}/start", headers=auth_headers(tasker_a))

        response = await client.post(
            f"{base}/request-completion", json={"note": ""}, headers=auth_headers(tasker_a)
        )

        assert response.status_code == 422
        assert response.json()["code"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_customer_cannot_start(self, client, auth_headers, customer, tasker_a, task_payload):
        task = await _assigned_task(client, auth_headers, customer, tasker_a, task_payload)
        response = await client.post(
            f"/api/v1/tasks/{task['id']}/start", headers=auth_headers(customer)
        )
        assert response.status_code == 403
        assert response.json()["code"] == "Unauthorized"

    @pytest.mark.asyncio
    async def test_complete_and_review(self, client, auth_headers, customer, tasker_a, task_payload):
        task = await _assigned_task(client, auth_headers, customer, tasker_a, task_payload)
        base = f"/api/v1/tasks/{task['id']}"
        await client.post(f"{base}/start", headers=auth_headers(tasker_a))
        await client.post(
            f"{base}/request-completion", json={"note": "done"}, headers=auth_headers(tasker_a)
        )

        early = await client.post(
            f"{base}/reviews", json={"rating": 5}, headers=auth_headers(customer)
        )
        assert early.status_code == 409

        confirmed = await client.post(
            f"{base}/confirm-completion",
            json={"feedback": "Spotless"},
            headers=auth_headers(customer),
        )
        assert confirmed.json()["status"] == "completed"
        assert confirmed.json()["review_eligible"] is True

        review = await client.post(
            f"{base}/reviews", json={"rating": 5, "comment": "Quick"}, headers=auth_headers(customer)
        )
        assert review.status_code == 201
        assert review.json()["reviewed_user_id"] == str(tasker_a.user_id)

        again = await client.post(f"{base}/reviews", json={"rating": 4}, headers=auth_headers(customer))
        assert again.status_code == 409

        by_tasker = await client.post(
            f"{base}/reviews", json={"rating": 4}, headers=auth_headers(tasker_a)
        )
        assert by_tasker.status_code == 201
        assert by_tasker.json()["reviewed_user_id"] == str(customer.user_id)

    @pytest.mark.asyncio
    async def test_confirm_without_body(self, client, auth_headers, customer, tasker_a, task_payload):
        task = await _assigned_task(client, auth_headers, customer, tasker_a, task_payload)
        base = f"/api/v1/tasks/{task['id']}"
        await client.post(f"{base}/start", headers=auth_headers(tasker_a))
        await client.post(
            f"{base}/request-completion", json={"note": "done"}, headers=auth_headers(tasker_a)
        )

        response = await client.post(f"{base}/confirm-completion", headers=auth_headers(customer))

        assert response.status_code == 200
        assert response.json()["customer_feedback"] is None
