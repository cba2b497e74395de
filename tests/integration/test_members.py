"""
HOMEBASE - Member Service Integration Tests
============================================
Registration, households, invitations and roles.
"""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from homebase.db.models import InvitationStatus, MembershipStatus
from homebase.services.identity import Identity
from homebase.services.members import MemberService
from homebase.services.permissions import PermissionService


async def register(db, name="Other Member"):
    member, _ = await MemberService(db).get_or_create_from_identity(
        Identity(subject=uuid4(), email=f"{uuid4().hex[:8]}@example.com", name=name)
    )
    return member


class TestRegistration:
    @pytest.mark.asyncio
    async def test_first_login_creates_household(self, db_session):
        identity = Identity(subject=uuid4(), email="ana@example.com", name="Ana")
        service = MemberService(db_session)

        member, created = await service.get_or_create_from_identity(identity, privacy_policy_version="3.1")

        assert created is True
        assert member.id == identity.subject
        assert member.privacy_policy_version == "3.1"
        memberships = await PermissionService(db_session).get_memberships(member.id)
        assert len(memberships) == 1
        assert memberships[0].group_name == "Ana's Household"
        assert memberships[0].role == "admin"

    @pytest.mark.asyncio
    async def test_second_login_returns_existing(self, db_session, member):
        identity = Identity(subject=member.id, email=member.email, name=member.name)

        again, created = await MemberService(db_session).get_or_create_from_identity(identity)

        assert created is False
        assert again.id == member.id

    @pytest.mark.asyncio
    async def test_email_clash(self, db_session, member):
        with pytest.raises(ValueError):
            await MemberService(db_session).get_or_create_from_identity(
                Identity(subject=uuid4(), email=member.email, name="Impostor")
            )


class TestInvitations:
    @pytest.mark.asyncio
    async def test_invite_and_accept(self, db_session, member, household_id):
        other = await register(db_session)
        service = MemberService(db_session)

        invitation, token = await service.invite_member(household_id, member.id, other.email.upper(), "viewer")
        assert invitation.token_hash != token
        assert invitation.email == other.email
        assert invitation.expires_at > datetime.utcnow() + timedelta(days=6)

        membership = await service.accept_invitation(token, other)

        assert membership.status == MembershipStatus.ACTIVE
        assert invitation.status == InvitationStatus.ACCEPTED
        info = await service.permissions.get_membership(other.id, household_id)
        assert info.role == "viewer"
        assert "tasks:create" not in info.permissions
        assert await service.count_active_members(household_id) == 2

    @pytest.mark.asyncio
    async def test_accept_twice(self, db_session, member, household_id):
        other = await register(db_session)
        service = MemberService(db_session)
        _, token = await service.invite_member(household_id, member.id, other.email)
        await service.accept_invitation(token, other)

        with pytest.raises(ValueError, match="no longer pending"):
            await service.accept_invitation(token, other)

    @pytest.mark.asyncio
    async def test_wrong_email(self, db_session, member, household_id):
        other = await register(db_session)
        service = MemberService(db_session)
        _, token = await service.invite_member(household_id, member.id, "someone@example.com")

        with pytest.raises(ValueError, match="different email"):
            await service.accept_invitation(token, other)

    @pytest.mark.asyncio
    async def test_expired(self, db_session, member, household_id):
        other = await register(db_session)
        service = MemberService(db_session)
        invitation, token = await service.invite_member(household_id, member.id, other.email)
        invitation.expires_at = datetime.utcnow() - timedelta(minutes=1)
        await db_session.commit()

        with pytest.raises(ValueError, match="expired"):
            await service.accept_invitation(token, other)
        assert invitation.status == InvitationStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_unknown_token(self, db_session, member):
        with pytest.raises(LookupError):
            await MemberService(db_session).accept_invitation("no-such-invitation", member)

    @pytest.mark.asyncio
    async def test_existing_member_cannot_be_invited(self, db_session, member, household_id):
        with pytest.raises(ValueError, match="already a member"):
            await MemberService(db_session).invite_member(household_id, member.id, member.email)

    @pytest.mark.asyncio
    async def test_platform_role_not_assignable(self, db_session, member, household_id):
        with pytest.raises(ValueError):
            await MemberService(db_session).invite_member(
                household_id, member.id, "x@example.com", role_name="security_admin"
            )

    @pytest.mark.asyncio
    async def test_rejoin_after_leaving(self, db_session, member, household_id):
        other = await register(db_session)
        service = MemberService(db_session)
        _, token = await service.invite_member(household_id, member.id, other.email)
        await service.accept_invitation(token, other)
        await service.remove_member(household_id, other.id)

        _, token = await service.invite_member(household_id, member.id, other.email, "admin")
        membership = await service.accept_invitation(token, other)

        assert membership.status == MembershipStatus.ACTIVE
        assert membership.left_at is None
        assert (await service.permissions.get_membership(other.id, household_id)).role == "admin"


class TestRoles:
    @pytest.mark.asyncio
    async def test_last_admin_protected(self, db_session, member, household_id):
        service = MemberService(db_session)

        with pytest.raises(ValueError, match="last admin"):
            await service.remove_member(household_id, member.id)
        with pytest.raises(ValueError, match="last admin"):
            await service.update_member_role(household_id, member.id, "member")

    @pytest.mark.asyncio
    async def test_set_platform_role(self, db_session, member, household_id):
        other = await register(db_session)
        service = MemberService(db_session)
        _, token = await service.invite_member(household_id, member.id, other.email)
        await service.accept_invitation(token, other)

        with pytest.raises(ValueError):
            await service.update_member_role(household_id, other.id, "security_admin")

        await service.set_role(household_id, other.id, "security_admin")
        info = await service.permissions.get_membership(other.id, household_id)
        assert "system:admin" in info.permissions

    @pytest.mark.asyncio
    async def test_unknown_membership(self, db_session, household_id):
        with pytest.raises(LookupError):
            await MemberService(db_session).remove_member(household_id, uuid4())

    @pytest.mark.asyncio
    async def test_shares_group_as_admin(self, db_session, member, household_id):
        other = await register(db_session)
        stranger = await register(db_session, name="Stranger")
        service = MemberService(db_session)
        _, token = await service.invite_member(household_id, member.id, other.email)
        await service.accept_invitation(token, other)

        assert await service.shares_group_as_admin(member.id, other.id)
        assert not await service.shares_group_as_admin(other.id, member.id)
        assert not await service.shares_group_as_admin(member.id, stranger.id)
