"""
HOMEBASE - Security Administration Routes
==========================================
Threat sweeps, incident triage, behavior analysis and IP blocks.
Every route requires the platform permission `system:admin`.
"""

from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from homebase.api.deps import get_monitoring, require_system_admin
from homebase.db.database import get_db
from homebase.db.models import IncidentStatus, Member, Severity
from homebase.schemas.security import (
    BehaviorResponse, IncidentResponse, IncidentUpdate, IPBlockResponse, ThreatAlertResponse,
)
from homebase.security.gate import AuthContext
from homebase.security.policy import MonitoringPolicy
from homebase.services.audit import AuditService
from homebase.services.incidents import IncidentService
from homebase.services.security_monitor import SecurityMonitor
from homebase.services.threat_detection import BehaviorAnalyzer, ThreatDetector

router = APIRouter(prefix="/security", tags=["Security"])


@router.get("/threats", response_model=List[ThreatAlertResponse])
async def detect_threats(
    window_minutes: int = Query(60, ge=1, le=24 * 60),
    ctx: AuthContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
    policy: MonitoringPolicy = Depends(get_monitoring),
):
    """Run every threat sweep over the trailing window."""
    return await ThreatDetector(db, policy).detect(window=timedelta(minutes=window_minutes))


# ============== INCIDENTS ==============

@router.get("/incidents", response_model=List[IncidentResponse])
async def list_incidents(
    status_filter: Optional[IncidentStatus] = Query(None, alias="status"),
    severity: Optional[Severity] = None,
    member_id: Optional[UUID] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: AuthContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
):
    return await IncidentService(db).list_incidents(
        status=status_filter, severity=severity, member_id=member_id, limit=limit, offset=offset
    )


@router.patch("/incidents/{incident_id}", response_model=IncidentResponse)
async def update_incident(
    request: Request,
    incident_id: UUID,
    data: IncidentUpdate,
    ctx: AuthContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        incident = await IncidentService(db).transition(incident_id, data.status, ctx.member.id, data.notes)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await AuditService(db).log_admin_action(
        action="incident_updated",
        actor_id=ctx.member.id,
        resource_type="security_incident",
        resource_id=str(incident.id),
        details={"status": incident.status.value},
        request=request,
    )
    return incident


@router.get("/report")
async def security_report(
    days: int = Query(30, ge=1, le=365),
    ctx: AuthContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
):
    end = datetime.utcnow()
    return await IncidentService(db).generate_report(end - timedelta(days=days), end)


# ============== BEHAVIOR ==============

@router.get("/members/{member_id}/behavior", response_model=BehaviorResponse)
async def analyze_member_behavior(
    member_id: UUID,
    window_hours: int = Query(24, ge=1, le=24 * 7),
    ctx: AuthContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
    policy: MonitoringPolicy = Depends(get_monitoring),
):
    if not await db.get(Member, member_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")
    return await BehaviorAnalyzer(db, policy).analyze(member_id, window=timedelta(hours=window_hours))


# ============== IP BLOCKS ==============

@router.get("/ip-blocks", response_model=List[IPBlockResponse])
async def list_ip_blocks(
    ctx: AuthContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
    policy: MonitoringPolicy = Depends(get_monitoring),
):
    return await SecurityMonitor(db, policy).list_active_blocks()


@router.delete("/ip-blocks/{ip_address}", status_code=status.HTTP_204_NO_CONTENT)
async def clear_ip_block(
    request: Request,
    ip_address: str,
    ctx: AuthContext = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
    policy: MonitoringPolicy = Depends(get_monitoring),
):
    cleared = await SecurityMonitor(db, policy).clear_block(ip_address)
    if not cleared:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No block for this IP address")

    await AuditService(db).log_admin_action(
        action="ip_block_cleared",
        actor_id=ctx.member.id,
        resource_type="ip_block",
        resource_id=ip_address,
        details={"count": cleared},
        request=request,
    )
