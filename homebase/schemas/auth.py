"""
HOMEBASE - Auth Schemas
========================
Pydantic models for sessions and the current member.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from homebase.db.models import ConsentType


class SessionCreate(BaseModel):
    """Login request. The provider token travels in the Authorization header."""
    device_id: Optional[str] = Field(None, max_length=255)
    device_type: Optional[str] = Field(None, max_length=50)
    device_name: Optional[str] = Field(None, max_length=255)
    device_fingerprint: Optional[str] = Field(None, max_length=255)
    platform: Optional[str] = Field(None, max_length=50)
    app_version: Optional[str] = Field(None, max_length=50)


class MembershipBrief(BaseModel):
    group_id: UUID
    group_name: str
    role: str
    permissions: List[str] = []

    class Config:
        from_attributes = True


class MemberResponse(BaseModel):
    id: UUID
    email: str
    name: str
    avatar_url: Optional[str] = None
    auth_provider: str
    data_processing_consent: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SessionResponse(BaseModel):
    id: UUID
    device_id: Optional[str] = None
    device_type: Optional[str] = None
    device_name: Optional[str] = None
    platform: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: datetime
    last_activity_at: datetime
    auto_logout_at: Optional[datetime] = None
    expires_at: datetime

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    member: MemberResponse
    session: SessionResponse
    memberships: List[MembershipBrief] = []
    offline_token: Optional[str] = None  # Only returned once
    new_member: bool = False


class CurrentMemberResponse(BaseModel):
    member: MemberResponse
    session_id: UUID
    current_group_id: Optional[UUID] = None
    role: Optional[str] = None
    permissions: List[str] = []
    memberships: List[MembershipBrief] = []


class OfflineTokenResponse(BaseModel):
    offline_token: str
    expires_at: datetime


class OfflineVerifyResponse(BaseModel):
    member_id: UUID
    session_id: UUID
    valid: bool = True


class ConsentUpdate(BaseModel):
    consent_type: ConsentType
    granted: bool


class ConsentResponse(BaseModel):
    consent_type: ConsentType
    granted: bool
    version: str
    granted_at: datetime
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True
