"""
HOMEBASE - GDPR Service
========================
Consent records, personal data export and account anonymization.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

import structlog
from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from homebase.db.models import (
    AuditCategory, AuditLog, ConsentType, DataConsent, DataProcessingLog,
    GroupMembership, Member, MemberStatus, RevocationReason, Task, UserSession,
)
from homebase.monitoring.metrics import record_session_revocation
from homebase.services.audit import AuditService

logger = structlog.get_logger(__name__)

CONSENT_FLAGS = {
    ConsentType.MARKETING: "marketing_consent",
    ConsentType.ANALYTICS: "analytics_consent",
    ConsentType.FUNCTIONAL: "data_processing_consent",
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class GdprService:
    def __init__(self, db: AsyncSession, consent_version: str = "1.0"):
        self.db = db
        self.consent_version = consent_version

    # ============== CONSENT ==============

    async def record_consent(
        self,
        member_id: UUID,
        consent_type: ConsentType,
        granted: bool,
        version: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> DataConsent:
        """Append a consent record and mirror it onto the member's flag."""
        consent = DataConsent(
            member_id=member_id,
            consent_type=consent_type,
            version=version or self.consent_version,
            granted=granted,
            granted_at=datetime.utcnow(),
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
        )
        self.db.add(consent)
        await self.db.execute(
            update(Member).where(Member.id == member_id).values({CONSENT_FLAGS[consent_type]: granted})
        )
        await self.db.commit()

        await AuditService(self.db).log(
            category=AuditCategory.GDPR,
            action="consent_updated",
            actor_id=member_id,
            resource_type="consent",
            resource_id=str(consent.id),
            details={"consent_type": consent_type.value, "granted": granted, "version": consent.version},
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return consent

    async def latest_consents(self, member_id: UUID) -> Dict[ConsentType, DataConsent]:
        result = await self.db.execute(
            select(DataConsent)
            .where(DataConsent.member_id == member_id)
            .order_by(DataConsent.granted_at.desc())
        )
        latest: Dict[ConsentType, DataConsent] = {}
        for consent in result.scalars().all():
            latest.setdefault(consent.consent_type, consent)
        return latest

    async def has_processing_consent(self, member_id: UUID) -> bool:
        """True when the latest functional consent is granted and unexpired."""
        consent = (await self.latest_consents(member_id)).get(ConsentType.FUNCTIONAL)
        if consent is None or not consent.granted:
            return False
        return consent.expires_at is None or consent.expires_at > datetime.utcnow()

    # ============== EXPORT ==============

    async def export_member_data(
        self,
        member_id: UUID,
        processor_id: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        """Collect the member's personal data and log the processing."""
        member = await self.db.get(Member, member_id)
        if member is None:
            raise LookupError("Member not found")

        memberships = (await self.db.execute(
            select(GroupMembership).where(GroupMembership.member_id == member_id)
        )).scalars().all()
        tasks = (await self.db.execute(
            select(Task).where(or_(Task.created_by == member_id, Task.assigned_to == member_id))
        )).scalars().all()
        consents = (await self.db.execute(
            select(DataConsent).where(DataConsent.member_id == member_id).order_by(DataConsent.granted_at)
        )).scalars().all()

        export = {
            "exported_at": datetime.utcnow().isoformat(),
            "member": {
                "id": str(member.id),
                "email": member.email,
                "name": member.name,
                "avatar_url": member.avatar_url,
                "status": member.status.value,
                "marketing_consent": member.marketing_consent,
                "analytics_consent": member.analytics_consent,
                "data_processing_consent": member.data_processing_consent,
                "privacy_policy_version": member.privacy_policy_version,
                "last_login_at": _iso(member.last_login_at),
                "created_at": _iso(member.created_at),
            },
            "memberships": [
                {
                    "group_id": str(m.group_id),
                    "status": m.status.value,
                    "joined_at": _iso(m.joined_at),
                    "left_at": _iso(m.left_at),
                }
                for m in memberships
            ],
            "tasks": [
                {
                    "id": str(t.id),
                    "group_id": str(t.group_id),
                    "title": t.title,
                    "description": t.description,
                    "category": t.category.value,
                    "status": t.status.value,
                    "due_date": _iso(t.due_date),
                    "created_at": _iso(t.created_at),
                }
                for t in tasks
            ],
            "consents": [
                {
                    "consent_type": c.consent_type.value,
                    "granted": c.granted,
                    "version": c.version,
                    "granted_at": _iso(c.granted_at),
                }
                for c in consents
            ],
        }

        self.db.add(DataProcessingLog(
            member_id=member_id,
            processing_type="export",
            data_type="profile,memberships,tasks,consents",
            purpose="Data subject access request",
            legal_basis="legal_obligation",
            processor_id=processor_id or member_id,
            details={"tasks": len(tasks), "memberships": len(memberships)},
        ))
        await self.db.commit()

        await AuditService(self.db).log(
            category=AuditCategory.GDPR,
            action="data_export",
            actor_id=processor_id or member_id,
            resource_type="member",
            resource_id=str(member_id),
            details={"subject_id": str(member_id)},
        )
        return export

    # ============== ANONYMIZATION ==============

    async def anonymize_member(
        self,
        member_id: UUID,
        processor_id: Optional[UUID] = None,
    ) -> Dict[str, int]:
        """
        Irreversibly anonymize a member.

        Personal fields are overwritten, memberships, sessions and consents
        are deleted, and the member's audit rows lose their actor reference.
        """
        member = await self.db.get(Member, member_id)
        if member is None:
            raise LookupError("Member not found")

        now = datetime.utcnow()
        member.email = f"deleted_user_{member_id}@deleted.local"
        member.name = "Deleted User"
        member.avatar_url = None
        member.status = MemberStatus.DELETED
        member.marketing_consent = False
        member.analytics_consent = False
        member.data_processing_consent = False
        member.anonymized_at = now
        member.deletion_requested_at = member.deletion_requested_at or now

        sessions = await self.db.execute(delete(UserSession).where(UserSession.member_id == member_id))
        memberships = await self.db.execute(delete(GroupMembership).where(GroupMembership.member_id == member_id))
        consents = await self.db.execute(delete(DataConsent).where(DataConsent.member_id == member_id))
        audit_rows = await self.db.execute(
            update(AuditLog)
            .where(AuditLog.actor_id == member_id)
            .values(actor_id=None, actor_type="anonymized")
        )

        self.db.add(DataProcessingLog(
            member_id=None,
            processing_type="anonymization",
            data_type="profile,memberships,sessions,consents",
            purpose="Right to erasure",
            legal_basis="legal_obligation",
            processor_id=processor_id,
            details={"subject_id": str(member_id)},
        ))
        await self.db.commit()
        record_session_revocation(RevocationReason.ACCOUNT_DELETED.value, sessions.rowcount or 0)

        summary = {
            "sessions": sessions.rowcount or 0,
            "memberships": memberships.rowcount or 0,
            "consents": consents.rowcount or 0,
            "audit_rows": audit_rows.rowcount or 0,
        }
        logger.warning("member_anonymized", member_id=str(member_id), **summary)
        return summary
