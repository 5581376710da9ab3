"""Role categorisation for registrants.

A registrant either holds a named event role (organizer side, printed on the
organizer card template) or is a plain attendee, optionally in a team.
"""
from dataclasses import dataclass
from typing import Optional, Union

from jubilee.schemas import Registrant


ROLE_CATEGORY_PARTICIPANT = "Tham gia"
ROLE_CATEGORY_VOLUNTEER = "Tình nguyện"
ROLE_CATEGORY_ORGANIZER = "Tổ chức"
ROLE_CATEGORY_SPECIAL = "Đặc biệt"

ATTENDEE_LABEL = "Tham dự viên"


@dataclass(frozen=True)
class Organizer:
    role_name: str


@dataclass(frozen=True)
class Attendee:
    team_name: Optional[str] = None


BadgeKind = Union[Organizer, Attendee]


def categorize(registrant: Registrant) -> BadgeKind:
    role = registrant.event_role
    if role is not None and role.name and role.name.strip():
        return Organizer(role_name=role.name.strip())
    team = registrant.event_team.name if registrant.event_team else None
    return Attendee(team_name=team)


def role_label(registrant: Registrant) -> str:
    kind = categorize(registrant)
    if isinstance(kind, Organizer):
        return kind.role_name
    return ATTENDEE_LABEL


def role_category(role_name: Optional[str]) -> str:
    """Group a free-form role name into one of the four display categories."""
    if not role_name:
        return ROLE_CATEGORY_PARTICIPANT

    lower_name = role_name.lower()

    if any(k in lower_name for k in ("ban tổ chức", "organizer", "cốt cán", "thủ quỹ")):
        return ROLE_CATEGORY_ORGANIZER

    if any(k in lower_name for k in ("ban ", "volunteer", "tình nguyện", "trưởng ban", "phó ban", "thành viên ban")):
        return ROLE_CATEGORY_VOLUNTEER

    if any(k in lower_name for k in ("diễn giả", "speaker", "nghệ sĩ", "performer", "ca sĩ", "nhạc sĩ")):
        return ROLE_CATEGORY_SPECIAL

    return ROLE_CATEGORY_PARTICIPANT


__all__ = [
    "Organizer",
    "Attendee",
    "BadgeKind",
    "categorize",
    "role_label",
    "role_category",
    "ATTENDEE_LABEL",
    "ROLE_CATEGORY_PARTICIPANT",
    "ROLE_CATEGORY_VOLUNTEER",
    "ROLE_CATEGORY_ORGANIZER",
    "ROLE_CATEGORY_SPECIAL",
]
