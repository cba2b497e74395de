"""
HOMEBASE - Security Admin Schemas
==================================
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from homebase.db.models import IncidentStatus, Severity


class ThreatAlertResponse(BaseModel):
    type: str
    severity: Severity
    message: str
    details: Dict[str, Any] = {}
    timestamp: datetime

    class Config:
        from_attributes = True


class IncidentResponse(BaseModel):
    id: UUID
    incident_type: str
    severity: Severity
    member_id: Optional[UUID] = None
    session_id: Optional[UUID] = None
    ip_address: Optional[str] = None
    details: Dict[str, Any] = {}
    automated_response: Optional[str] = None
    manual_response: Optional[str] = None
    status: IncidentStatus
    detected_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[UUID] = None

    class Config:
        from_attributes = True


class IncidentUpdate(BaseModel):
    status: IncidentStatus
    notes: Optional[str] = Field(None, max_length=2000)


class BehaviorBaselineResponse(BaseModel):
    typical_hours: List[int] = []
    typical_days: List[int] = []
    typical_ips: List[str] = []
    average_daily_activity: float
    event_count: int

    class Config:
        from_attributes = True


class BehaviorResponse(BaseModel):
    member_id: UUID
    risk_score: int
    anomalies: List[str] = []
    baseline: BehaviorBaselineResponse
    recent_activity_count: int
    window_start: datetime
    analyzed_at: datetime

    class Config:
        from_attributes = True


class IPBlockResponse(BaseModel):
    id: UUID
    ip_address: str
    reason: str
    blocked_until: datetime
    created_at: datetime

    class Config:
        from_attributes = True
