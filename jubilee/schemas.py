from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EventRoleRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    name: str


class EventTeamRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    name: str


class Registrant(BaseModel):
    """Participant record consumed by the card generator and the compositor."""

    model_config = ConfigDict(frozen=True)

    id: str
    full_name: str
    saint_name: Optional[str] = None
    event_role: Optional[EventRoleRef] = None
    event_team: Optional[EventTeamRef] = None
    portrait_url: Optional[str] = None
    second_day_only: bool = False
    selected_attendance_day: Optional[str] = None
    invoice_code: Optional[str] = None
    is_checked_in: bool = False


class CheckInRequest(BaseModel):
    registrantId: Optional[str] = None


class CheckInRegistrant(BaseModel):
    id: str
    full_name: str
    saint_name: Optional[str] = None
    email: Optional[str] = None
    diocese: Optional[str] = None
    is_checked_in: bool = False
    checked_in_at: Optional[datetime] = None


class CheckInResponse(BaseModel):
    success: bool
    registrant: Optional[CheckInRegistrant] = None
    message: str


class RecentCheckIn(BaseModel):
    id: str
    full_name: str
    checked_in_at: datetime


class CheckInStats(BaseModel):
    totalConfirmed: int
    totalCheckedIn: int
    checkInRate: str
    todayCheckins: int
    recentCheckins: List[RecentCheckIn] = Field(default_factory=list)


class CardExportRequest(BaseModel):
    registrant_ids: List[str]
    filename: Optional[str] = None
    prefix: str = "cards"


class CardErrorOut(BaseModel):
    type: str
    message: str
    userId: Optional[str] = None


class CardPreviewOut(BaseModel):
    id: str
    userId: str
    imageDataUrl: str
    saintName: str
    fullName: str
    role: str


class CardStatsOut(BaseModel):
    total: int
    organizers: int
    participants: int
    withPhoto: int
    withoutPhoto: int
    estimatedPages: int


class AvatarResponse(BaseModel):
    success: bool
    avatarUrl: Optional[str] = None
    message: Optional[str] = None


__all__ = [
    "EventRoleRef",
    "EventTeamRef",
    "Registrant",
    "CheckInRequest",
    "CheckInRegistrant",
    "CheckInResponse",
    "RecentCheckIn",
    "CheckInStats",
    "CardExportRequest",
    "CardErrorOut",
    "CardPreviewOut",
    "CardStatsOut",
    "AvatarResponse",
]
