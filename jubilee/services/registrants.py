from typing import List, Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from jubilee.models.registrant import (
    CHECK_IN_ALLOWED_STATUSES,
    event_roles,
    event_teams,
    registrants,
    registrations,
)
from jubilee.schemas import EventRoleRef, EventTeamRef, Registrant

ROLE_FILTERS = ("all", "organizer", "participant")


def _registrant_query():
    return (
        select(
            registrants.c.id,
            registrants.c.full_name,
            registrants.c.saint_name,
            registrants.c.portrait_url,
            registrants.c.second_day_only,
            registrants.c.selected_attendance_day,
            registrants.c.is_checked_in,
            registrations.c.invoice_code,
            registrations.c.status.label("registration_status"),
            event_roles.c.id.label("role_id"),
            event_roles.c.name.label("role_name"),
            event_teams.c.id.label("team_id"),
            event_teams.c.name.label("team_name"),
        )
        .select_from(registrants)
        .join(registrations, registrations.c.id == registrants.c.registration_id)
        .outerjoin(event_roles, event_roles.c.id == registrants.c.event_role_id)
        .outerjoin(event_teams, event_teams.c.id == registrants.c.event_team_id)
    )


def row_to_registrant(row) -> Registrant:
    return Registrant(
        id=row.id,
        full_name=row.full_name,
        saint_name=row.saint_name,
        event_role=EventRoleRef(id=row.role_id, name=row.role_name) if row.role_name else None,
        event_team=EventTeamRef(id=row.team_id, name=row.team_name) if row.team_name else None,
        portrait_url=row.portrait_url,
        second_day_only=bool(row.second_day_only),
        selected_attendance_day=row.selected_attendance_day,
        invoice_code=row.invoice_code,
        is_checked_in=bool(row.is_checked_in),
    )


def load_registrants_by_ids(db: Session, ids: Sequence[str]) -> List[Registrant]:
    """Fetch registrants keeping the order of ``ids``; unknown ids are dropped."""
    if not ids:
        return []
    rows = db.execute(_registrant_query().where(registrants.c.id.in_(list(ids)))).all()
    by_id = {row.id: row_to_registrant(row) for row in rows}
    return [by_id[i] for i in ids if i in by_id]


def list_registrants(
    db: Session,
    team: Optional[str] = None,
    role: str = "all",
    search: Optional[str] = None,
    confirmed_only: bool = False,
) -> List[Registrant]:
    if role not in ROLE_FILTERS:
        raise ValueError(f"role filter must be one of {', '.join(ROLE_FILTERS)}")

    query = _registrant_query()
    if team:
        query = query.where(or_(event_teams.c.id == team, event_teams.c.name == team))
    if role == "organizer":
        query = query.where(event_roles.c.name.is_not(None))
    elif role == "participant":
        query = query.where(event_roles.c.name.is_(None))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(registrants.c.full_name.ilike(pattern), registrants.c.saint_name.ilike(pattern)))
    if confirmed_only:
        query = query.where(registrations.c.status.in_(CHECK_IN_ALLOWED_STATUSES))

    rows = db.execute(query.order_by(registrants.c.full_name)).all()
    return [row_to_registrant(row) for row in rows]
