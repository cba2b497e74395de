"""
HOMEBASE - Group & Member API Integration Tests
================================================
Household creation, invitations, roles and profiles over HTTP.
"""

import pytest
import pytest_asyncio
from sqlalchemy import select

from homebase.db.models import AuditLog

API = "/api/v1"


@pytest_asyncio.fixture
async def household(client, login, auth_headers):
    """An admin and an invited member sharing the admin's household."""
    admin_token, admin = await login(name="Admin")
    member_token, member = await login(name="Housemate")
    group_id = admin["memberships"][0]["group_id"]

    response = await client.post(
        f"{API}/groups/{group_id}/invitations",
        json={"email": member["member"]["email"], "message": "Join us"},
        headers=auth_headers(admin_token),
    )
    assert response.status_code == 201, response.text
    response = await client.post(
        f"{API}/invitations/accept",
        json={"token": response.json()["token"]},
        headers=auth_headers(member_token),
    )
    assert response.status_code == 200, response.text

    return {
        "group_id": group_id,
        "admin_token": admin_token,
        "admin_id": admin["member"]["id"],
        "member_token": member_token,
        "member_id": member["member"]["id"],
    }


class TestGroups:
    @pytest.mark.asyncio
    async def test_create_group(self, client, db_session, login, auth_headers):
        token, _ = await login()

        response = await client.post(
            f"{API}/groups",
            json={"name": "Beach House", "description": "Summer rotation"},
            headers=auth_headers(token),
        )

        assert response.status_code == 201
        group = response.json()
        assert group["type"] == "family"
        assert group["max_members"] == 10

        context = await client.get(f"{API}/groups/{group['id']}", headers=auth_headers(token))
        assert context.status_code == 200
        assert context.json()["role"] == "admin"
        assert context.json()["member_count"] == 1

        result = await db_session.execute(select(AuditLog).where(AuditLog.action == "group_created"))
        assert result.scalar_one().group_id is not None

    @pytest.mark.asyncio
    async def test_group_name_too_short(self, client, login, auth_headers):
        token, _ = await login()

        response = await client.post(f"{API}/groups", json={"name": "x"}, headers=auth_headers(token))

        assert response.status_code == 422


class TestInvitations:
    @pytest.mark.asyncio
    async def test_accepted_member_is_listed(self, client, household, auth_headers):
        response = await client.get(
            f"{API}/groups/{household['group_id']}/members",
            headers=auth_headers(household["member_token"]),
        )

        assert response.status_code == 200
        roles = {m["member_id"]: m["role"] for m in response.json()}
        assert roles == {household["admin_id"]: "admin", household["member_id"]: "member"}

    @pytest.mark.asyncio
    async def test_member_cannot_invite(self, client, household, auth_headers):
        response = await client.post(
            f"{API}/groups/{household['group_id']}/invitations",
            json={"email": "friend@example.com"},
            headers=auth_headers(household["member_token"]),
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_reinvite_existing_member(self, client, household, auth_headers):
        listing = await client.get(
            f"{API}/groups/{household['group_id']}/members",
            headers=auth_headers(household["admin_token"]),
        )
        email = next(m["email"] for m in listing.json() if m["member_id"] == household["member_id"])

        response = await client.post(
            f"{API}/groups/{household['group_id']}/invitations",
            json={"email": email},
            headers=auth_headers(household["admin_token"]),
        )

        assert response.status_code == 400
        assert response.json() == {"error": "User is already a member of this group"}

    @pytest.mark.asyncio
    async def test_unknown_invitation(self, client, login, auth_headers):
        token, _ = await login()

        response = await client.post(
            f"{API}/invitations/accept", json={"token": "definitely-not-real"}, headers=auth_headers(token)
        )

        assert response.status_code == 404


class TestRoles:
    @pytest.mark.asyncio
    async def test_platform_role_is_escalation(self, client, db_session, household, auth_headers):
        url = f"{API}/groups/{household['group_id']}/members/{household['member_id']}/role"

        response = await client.patch(
            url, json={"role_name": "security_admin"}, headers=auth_headers(household["admin_token"])
        )

        assert response.status_code == 403
        result = await db_session.execute(select(AuditLog).where(AuditLog.action == "privilege_escalation"))
        row = result.scalar_one()
        assert row.details["requested_role"] == "security_admin"
        assert row.risk_score >= 70

    @pytest.mark.asyncio
    async def test_change_role(self, client, household, auth_headers):
        url = f"{API}/groups/{household['group_id']}/members/{household['member_id']}/role"

        response = await client.patch(url, json={"role_name": "viewer"}, headers=auth_headers(household["admin_token"]))

        assert response.status_code == 200
        assert response.json()["role"] == "viewer"

        context = await client.get(
            f"{API}/groups/{household['group_id']}", headers=auth_headers(household["member_token"])
        )
        assert context.json()["role"] == "viewer"
        assert "tasks:create" not in context.json()["permissions"]

    @pytest.mark.asyncio
    async def test_last_admin_cannot_leave(self, client, household, auth_headers):
        url = f"{API}/groups/{household['group_id']}/members/{household['admin_id']}"

        response = await client.delete(url, headers=auth_headers(household["admin_token"]))

        assert response.status_code == 400
        assert response.json() == {"error": "Cannot remove the last admin of a group"}

    @pytest.mark.asyncio
    async def test_remove_member(self, client, household, auth_headers):
        group_url = f"{API}/groups/{household['group_id']}"

        response = await client.delete(
            f"{group_url}/members/{household['member_id']}", headers=auth_headers(household["admin_token"])
        )
        assert response.status_code == 204

        response = await client.get(group_url, headers=auth_headers(household["member_token"]))
        assert response.status_code == 403


class TestProfiles:
    @pytest.mark.asyncio
    async def test_update_own_profile(self, client, household, auth_headers):
        response = await client.patch(
            f"{API}/members/{household['member_id']}",
            json={"name": "Renamed"},
            headers=auth_headers(household["member_token"]),
        )

        assert response.status_code == 200
        assert response.json()["name"] == "Renamed"

    @pytest.mark.asyncio
    async def test_admin_updates_member_profile(self, client, household, auth_headers):
        response = await client.patch(
            f"{API}/members/{household['member_id']}",
            json={"avatar_url": "https://example.com/a.png"},
            headers=auth_headers(household["admin_token"]),
        )

        assert response.status_code == 200
        assert response.json()["avatar_url"] == "https://example.com/a.png"

    @pytest.mark.asyncio
    async def test_member_cannot_update_admin(self, client, household, auth_headers):
        response = await client.patch(
            f"{API}/members/{household['admin_id']}",
            json={"name": "Hijacked"},
            headers=auth_headers(household["member_token"]),
        )

        assert response.status_code == 403
        assert response.json() == {"error": "Access denied"}
