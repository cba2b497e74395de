"""
HOMEBASE - Group & Member Schemas
==================================
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from homebase.db.models import GroupType


class GroupCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    type: GroupType = GroupType.FAMILY


class GroupResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    type: GroupType
    max_members: int
    created_at: datetime

    class Config:
        from_attributes = True


class GroupContextResponse(BaseModel):
    group: GroupResponse
    role: str
    permissions: List[str] = []
    member_count: int


class GroupMemberResponse(BaseModel):
    member_id: UUID
    email: str
    name: str
    avatar_url: Optional[str] = None
    role: str
    joined_at: datetime


class InviteMember(BaseModel):
    email: EmailStr
    role_name: str = "member"
    message: Optional[str] = Field(None, max_length=500)


class InvitationResponse(BaseModel):
    id: UUID
    email: str
    group_id: UUID
    role_name: str
    expires_at: datetime
    token: str  # Only returned once


class AcceptInvitation(BaseModel):
    token: str = Field(..., min_length=10)


class RoleUpdate(BaseModel):
    role_name: str = Field(..., min_length=2, max_length=50)


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    avatar_url: Optional[str] = Field(None, max_length=500)
