"""
HOMEBASE - Auth API Integration Tests
======================================
Login, the session gate over HTTP, logout and offline tokens.
"""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from homebase.db.models import AuditCategory, AuditLog, IPBlock

API = "/api/v1"


async def audit_actions(db, action=None):
    query = select(AuditLog)
    if action:
        query = query.where(AuditLog.action == action)
    result = await db.execute(query)
    return list(result.scalars().all())


class TestLogin:
    @pytest.mark.asyncio
    async def test_first_login_registers_member(self, login):
        _, body = await login(name="Grace")

        assert body["new_member"] is True
        assert body["offline_token"]
        assert body["member"]["name"] == "Grace"
        assert body["member"]["data_processing_consent"] is True
        assert len(body["memberships"]) == 1
        assert body["memberships"][0]["role"] == "admin"
        assert body["memberships"][0]["group_name"] == "Grace's Household"

    @pytest.mark.asyncio
    async def test_second_login_is_not_new(self, login):
        _, first = await login()
        _, second = await login(subject=first["member"]["id"])

        assert second["new_member"] is False
        assert second["member"]["id"] == first["member"]["id"]

    @pytest.mark.asyncio
    async def test_invalid_token_records_failure(self, client, db_session, make_token, auth_headers):
        token = make_token(secret="not_the_identity_provider_secret")

        response = await client.post(f"{API}/auth/sessions", json={}, headers=auth_headers(token))

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid or expired token"}
        failures = await audit_actions(db_session, "login_failure")
        assert len(failures) == 1
        assert failures[0].event_type == AuditCategory.AUTH
        assert failures[0].success is False

    @pytest.mark.asyncio
    async def test_missing_header(self, client, db_session):
        response = await client.post(f"{API}/auth/sessions", json={})

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"
        assert await audit_actions(db_session) == []

    @pytest.mark.asyncio
    async def test_blocked_ip(self, client, db_session, make_token, auth_headers):
        db_session.add(IPBlock(
            ip_address="203.0.113.50",
            reason="brute_force_detected",
            blocked_until=datetime.utcnow() + timedelta(hours=1),
        ))
        await db_session.commit()

        headers = {**auth_headers(make_token()), "X-Forwarded-For": "203.0.113.50"}
        response = await client.post(f"{API}/auth/sessions", json={}, headers=headers)

        assert response.status_code == 429

        # Other addresses are unaffected
        headers["X-Forwarded-For"] = "203.0.113.51"
        response = await client.post(f"{API}/auth/sessions", json={}, headers=headers)
        assert response.status_code == 201


class TestSessionGate:
    @pytest.mark.asyncio
    async def test_me(self, client, login, auth_headers):
        token, body = await login()

        response = await client.get(f"{API}/auth/me", headers=auth_headers(token))

        assert response.status_code == 200
        me = response.json()
        assert me["member"]["id"] == body["member"]["id"]
        assert me["session_id"] == body["session"]["id"]
        assert me["current_group_id"] == body["memberships"][0]["group_id"]
        assert me["role"] == "admin"
        assert "tasks:create" in me["permissions"]

    @pytest.mark.asyncio
    async def test_new_login_revokes_previous_session(self, client, login, auth_headers):
        first_token, body = await login()
        second_token, _ = await login(subject=body["member"]["id"])

        response = await client.get(f"{API}/auth/me", headers=auth_headers(first_token))
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid session"}

        response = await client.get(f"{API}/auth/me", headers=auth_headers(second_token))
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_foreign_group_header(self, client, db_session, login, auth_headers):
        token, _ = await login()

        response = await client.get(f"{API}/auth/me", headers=auth_headers(token, uuid4()))

        assert response.status_code == 403
        assert len(await audit_actions(db_session, "group_access_denied")) == 1

    @pytest.mark.asyncio
    async def test_malformed_group_header(self, client, login, auth_headers):
        token, _ = await login()

        response = await client.get(f"{API}/auth/me", headers=auth_headers(token, "not-a-uuid"))

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_ip_change_is_recorded_not_rejected(self, client, db_session, login, auth_headers):
        token, _ = await login()
        headers = {**auth_headers(token), "X-Forwarded-For": "198.51.100.77"}

        response = await client.get(f"{API}/auth/me", headers=headers)

        assert response.status_code == 200
        changes = await audit_actions(db_session, "ip_address_change")
        assert len(changes) == 1
        assert changes[0].risk_score == 50

    @pytest.mark.asyncio
    async def test_logout(self, client, db_session, login, auth_headers):
        token, _ = await login()

        response = await client.delete(f"{API}/auth/sessions/current", headers=auth_headers(token))
        assert response.status_code == 204
        assert len(await audit_actions(db_session, "logout")) == 1

        response = await client.get(f"{API}/auth/me", headers=auth_headers(token))
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_list_sessions(self, client, login, auth_headers):
        token, body = await login(device={"device_id": "tablet-1", "device_type": "tablet"})

        response = await client.get(f"{API}/auth/sessions", headers=auth_headers(token))

        assert response.status_code == 200
        sessions = response.json()
        assert [s["id"] for s in sessions] == [body["session"]["id"]]
        assert sessions[0]["device_id"] == "tablet-1"


class TestOfflineTokens:
    DEVICE = {"device_id": "phone-1", "device_type": "mobile", "platform": "ios"}

    @pytest.mark.asyncio
    async def test_login_offline_token_verifies(self, client, login):
        _, body = await login(device=self.DEVICE)

        response = await client.get(
            f"{API}/auth/offline/verify", headers={"X-Offline-Token": body["offline_token"]}
        )

        assert response.status_code == 200
        assert response.json() == {
            "member_id": body["member"]["id"],
            "session_id": body["session"]["id"],
            "valid": True,
        }

    @pytest.mark.asyncio
    async def test_rotate_from_registered_device(self, client, login, auth_headers):
        token, body = await login(device=self.DEVICE)
        headers = {**auth_headers(token), "X-Device-ID": "phone-1"}

        response = await client.post(f"{API}/auth/offline-token", headers=headers)

        assert response.status_code == 200
        rotated = response.json()["offline_token"]
        assert rotated != body["offline_token"]

        old = await client.get(f"{API}/auth/offline/verify", headers={"X-Offline-Token": body["offline_token"]})
        assert old.status_code == 401
        new = await client.get(f"{API}/auth/offline/verify", headers={"X-Offline-Token": rotated})
        assert new.status_code == 200

    @pytest.mark.asyncio
    async def test_unregistered_device(self, client, db_session, login, auth_headers):
        token, _ = await login(device=self.DEVICE)
        headers = {**auth_headers(token), "X-Device-ID": "laptop-9"}

        response = await client.post(f"{API}/auth/offline-token", headers=headers)

        assert response.status_code == 403
        assert len(await audit_actions(db_session, "unregistered_device")) == 1

    @pytest.mark.asyncio
    async def test_missing_offline_token(self, client):
        response = await client.get(f"{API}/auth/offline/verify")
        assert response.status_code == 401


class TestConsents:
    @pytest.mark.asyncio
    async def test_registration_consent_listed(self, client, login, auth_headers):
        token, _ = await login()

        response = await client.get(f"{API}/auth/me/consents", headers=auth_headers(token))

        assert response.status_code == 200
        consents = response.json()
        assert [c["consent_type"] for c in consents] == ["functional"]
        assert consents[0]["granted"] is True

    @pytest.mark.asyncio
    async def test_withdraw_and_regrant_functional(self, client, db_session, login, auth_headers):
        token, body = await login()
        tasks_url = f"{API}/groups/{body['memberships'][0]['group_id']}/tasks"

        response = await client.post(
            f"{API}/auth/me/consents",
            json={"consent_type": "functional", "granted": False},
            headers=auth_headers(token),
        )
        assert response.status_code == 201
        assert response.json()["granted"] is False

        response = await client.get(tasks_url, headers=auth_headers(token))
        assert response.status_code == 451
        assert response.json()["code"] == "CONSENT_REQUIRED"

        await client.post(
            f"{API}/auth/me/consents",
            json={"consent_type": "functional", "granted": True},
            headers=auth_headers(token),
        )
        assert (await client.get(tasks_url, headers=auth_headers(token))).status_code == 200

        # Registration plus the two changes
        assert len(await audit_actions(db_session, "consent_updated")) == 3

    @pytest.mark.asyncio
    async def test_unknown_consent_type(self, client, login, auth_headers):
        token, _ = await login()

        response = await client.post(
            f"{API}/auth/me/consents",
            json={"consent_type": "telemetry", "granted": True},
            headers=auth_headers(token),
        )

        assert response.status_code == 422
