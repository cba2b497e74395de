"""
HOMEBASE - Task API Integration Tests
======================================
Task CRUD, filters, bulk updates and access control over HTTP.
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy import select

from homebase.db.models import AuditLog, ConsentType
from homebase.services.gdpr import GdprService
from homebase.services.members import MemberService
from homebase.services.tasks import TaskService

API = "/api/v1"


@pytest.fixture
def task_payload():
    return {
        "title": "  Take out the recycling  ",
        "description": "Blue bin goes out on Tuesday",
        "category": "Chores",
        "priority": "High",
        "urgent": True,
    }


@pytest_asyncio.fixture
async def owner(login):
    token, body = await login(name="Owner")
    return token, UUID(body["memberships"][0]["group_id"]), UUID(body["member"]["id"])


async def create_task(client, token, group_id, headers_for, **overrides):
    payload = {"title": "Vacuum", "category": "Chores", **overrides}
    response = await client.post(f"{API}/groups/{group_id}/tasks", json=payload, headers=headers_for(token))
    assert response.status_code == 201, response.text
    return response.json()


class TestTaskCrud:
    @pytest.mark.asyncio
    async def test_due_date_offset_stored_as_utc(self, client, db_session, owner, auth_headers):
        token, group_id, _ = owner

        task = await create_task(client, token, group_id, auth_headers, due_date="2026-10-20T10:00:00+05:00")

        assert task["due_date"] == "2026-10-20T05:00:00"
        stats = await TaskService(db_session).get_stats(
            group_id, now=datetime(2026, 10, 20, 7, 0, tzinfo=timezone.utc)
        )
        assert stats["overdue"] == 1

    @pytest.mark.asyncio
    async def test_create_task(self, client, owner, auth_headers, task_payload):
        token, group_id, member_id = owner

        response = await client.post(
            f"{API}/groups/{group_id}/tasks", json=task_payload, headers=auth_headers(token)
        )

        assert response.status_code == 201
        task = response.json()
        assert task["title"] == "Take out the recycling"
        assert task["status"] == "pending"
        assert task["priority"] == "High"
        assert task["created_by"] == str(member_id)
        assert task["group_id"] == str(group_id)
        assert task["completed_at"] is None

    @pytest.mark.asyncio
    async def test_blank_title_rejected(self, client, owner, auth_headers):
        token, group_id, _ = owner

        response = await client.post(
            f"{API}/groups/{group_id}/tasks",
            json={"title": "   ", "category": "Chores"},
            headers=auth_headers(token),
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_and_delete(self, client, db_session, owner, auth_headers):
        token, group_id, _ = owner
        task = await create_task(client, token, group_id, auth_headers)
        url = f"{API}/groups/{group_id}/tasks/{task['id']}"

        assert (await client.get(url, headers=auth_headers(token))).status_code == 200
        assert (await client.delete(url, headers=auth_headers(token))).status_code == 204
        assert (await client.get(url, headers=auth_headers(token))).status_code == 404
        assert (await client.delete(url, headers=auth_headers(token))).status_code == 404

        result = await db_session.execute(select(AuditLog).where(AuditLog.action == "task_deleted"))
        assert result.scalar_one().resource_id == task["id"]

    @pytest.mark.asyncio
    async def test_completed_at_follows_status(self, client, owner, auth_headers):
        token, group_id, _ = owner
        task = await create_task(client, token, group_id, auth_headers)
        url = f"{API}/groups/{group_id}/tasks/{task['id']}"

        done = (await client.patch(url, json={"status": "completed"}, headers=auth_headers(token))).json()
        assert done["status"] == "completed"
        assert done["completed_at"] is not None

        renamed = (await client.patch(url, json={"title": "Vacuum upstairs"}, headers=auth_headers(token))).json()
        assert renamed["completed_at"] == done["completed_at"]

        reopened = (await client.patch(url, json={"status": "pending"}, headers=auth_headers(token))).json()
        assert reopened["completed_at"] is None

    @pytest.mark.asyncio
    async def test_complete_endpoint(self, client, owner, auth_headers):
        token, group_id, _ = owner
        task = await create_task(client, token, group_id, auth_headers)

        response = await client.post(
            f"{API}/groups/{group_id}/tasks/{task['id']}/complete", headers=auth_headers(token)
        )

        assert response.status_code == 200
        assert response.json()["status"] == "completed"

    @pytest.mark.asyncio
    async def test_assign(self, client, owner, auth_headers):
        token, group_id, member_id = owner
        task = await create_task(client, token, group_id, auth_headers)
        url = f"{API}/groups/{group_id}/tasks/{task['id']}/assign"

        response = await client.post(url, json={"assigned_to": str(member_id)}, headers=auth_headers(token))
        assert response.status_code == 200
        assert response.json()["assigned_to"] == str(member_id)

        response = await client.post(url, json={"assigned_to": str(uuid4())}, headers=auth_headers(token))
        assert response.status_code == 400

        mine = await client.get(f"{API}/tasks/mine", headers=auth_headers(token))
        assert [t["id"] for t in mine.json()] == [task["id"]]


class TestTaskQueries:
    @pytest.mark.asyncio
    async def test_filters(self, client, owner, auth_headers):
        token, group_id, _ = owner
        await create_task(client, token, group_id, auth_headers, title="Laundry", urgent=True)
        await create_task(client, token, group_id, auth_headers, title="Homework", category="Kids")
        shopping = await create_task(client, token, group_id, auth_headers, title="Groceries", category="Shopping")
        await client.patch(
            f"{API}/groups/{group_id}/tasks/{shopping['id']}",
            json={"status": "completed"},
            headers=auth_headers(token),
        )
        url = f"{API}/groups/{group_id}/tasks"

        async def titles(**params):
            response = await client.get(url, params=params, headers=auth_headers(token))
            assert response.status_code == 200
            return sorted(t["title"] for t in response.json())

        assert await titles() == ["Groceries", "Homework", "Laundry"]
        assert await titles(category="Kids") == ["Homework"]
        assert await titles(urgent="true") == ["Laundry"]
        assert await titles(completed="true") == ["Groceries"]
        assert await titles(completed="false") == ["Homework", "Laundry"]
        assert await titles(status="completed") == ["Groceries"]
        assert len(await titles(limit=2)) == 2

    @pytest.mark.asyncio
    async def test_stats(self, client, owner, auth_headers):
        token, group_id, _ = owner
        await create_task(client, token, group_id, auth_headers, due_date="2020-01-01T00:00:00")
        await create_task(client, token, group_id, auth_headers)
        done = await create_task(client, token, group_id, auth_headers)
        await client.post(f"{API}/groups/{group_id}/tasks/{done['id']}/complete", headers=auth_headers(token))

        response = await client.get(f"{API}/groups/{group_id}/tasks/stats", headers=auth_headers(token))

        assert response.json() == {
            "total": 3,
            "completed": 1,
            "pending": 2,
            "in_progress": 0,
            "overdue": 1,
            "completion_rate": 33,
        }


class TestBulkUpdate:
    @pytest.mark.asyncio
    async def test_bulk_update(self, client, owner, auth_headers):
        token, group_id, _ = owner
        ids = [(await create_task(client, token, group_id, auth_headers))["id"] for _ in range(3)]

        response = await client.post(
            f"{API}/groups/{group_id}/tasks/bulk-update",
            json={"task_ids": ids, "updates": {"priority": "Low", "status": "in_progress"}},
            headers=auth_headers(token),
        )

        assert response.status_code == 200
        assert {t["priority"] for t in response.json()} == {"Low"}
        assert {t["status"] for t in response.json()} == {"in_progress"}

    @pytest.mark.asyncio
    async def test_missing_task_changes_nothing(self, client, owner, auth_headers):
        token, group_id, _ = owner
        task = await create_task(client, token, group_id, auth_headers)

        response = await client.post(
            f"{API}/groups/{group_id}/tasks/bulk-update",
            json={"task_ids": [task["id"], str(uuid4())], "updates": {"priority": "Low"}},
            headers=auth_headers(token),
        )

        assert response.status_code == 404
        current = await client.get(f"{API}/groups/{group_id}/tasks/{task['id']}", headers=auth_headers(token))
        assert current.json()["priority"] == "Medium"

    @pytest.mark.asyncio
    async def test_empty_ids_rejected(self, client, owner, auth_headers):
        token, group_id, _ = owner

        response = await client.post(
            f"{API}/groups/{group_id}/tasks/bulk-update",
            json={"task_ids": [], "updates": {"priority": "Low"}},
            headers=auth_headers(token),
        )

        assert response.status_code == 422


class TestTaskAccess:
    @pytest.mark.asyncio
    async def test_other_household_denied(self, client, db_session, owner, login, auth_headers):
        _, group_id, _ = owner
        outsider_token, _ = await login(name="Outsider")

        response = await client.get(f"{API}/groups/{group_id}/tasks", headers=auth_headers(outsider_token))

        assert response.status_code == 403
        assert response.json() == {"error": "Access denied to requested group"}
        result = await db_session.execute(select(AuditLog).where(AuditLog.action == "group_access_denied"))
        assert len(result.scalars().all()) == 1

    @pytest.mark.asyncio
    async def test_viewer_cannot_create(self, client, db_session, owner, login, auth_headers):
        token, group_id, member_id = owner
        viewer_token, viewer_body = await login(name="Viewer")
        viewer = await MemberService(db_session).get_member(UUID(viewer_body["member"]["id"]))
        service = MemberService(db_session)
        _, invite = await service.invite_member(group_id, member_id, viewer.email, "viewer")
        await service.accept_invitation(invite, viewer)

        listing = await client.get(f"{API}/groups/{group_id}/tasks", headers=auth_headers(viewer_token))
        assert listing.status_code == 200

        response = await client.post(
            f"{API}/groups/{group_id}/tasks",
            json={"title": "Sneaky", "category": "Chores"},
            headers=auth_headers(viewer_token),
        )
        assert response.status_code == 403
        assert response.json() == {"error": "Access denied: requires permission 'tasks:create'"}
        result = await db_session.execute(select(AuditLog).where(AuditLog.action == "permission_denied"))
        assert result.scalar_one().details["required_permission"] == "tasks:create"

    @pytest.mark.asyncio
    async def test_consent_withdrawn(self, client, db_session, owner, auth_headers):
        token, group_id, member_id = owner
        consent = await GdprService(db_session).record_consent(member_id, ConsentType.FUNCTIONAL, granted=False)
        # Registration consent and withdrawal can share a timestamp
        consent.granted_at += timedelta(seconds=1)
        await db_session.commit()

        response = await client.get(f"{API}/groups/{group_id}/tasks", headers=auth_headers(token))

        assert response.status_code == 451
        assert response.json() == {"error": "Data processing consent required", "code": "CONSENT_REQUIRED"}
