from sqlalchemy import (
    Table,
    MetaData,
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
)
from sqlalchemy import func

# Tables mirroring the hosted registration store, defined with SQLAlchemy Core (no ORM classes)
metadata = MetaData()

event_teams = Table(
    "event_teams",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(200), nullable=False),
)

event_roles = Table(
    "event_roles",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(200), nullable=False),
    Column("description", String(500), nullable=True),
    Column("team_name", String(200), nullable=True),
)

registrations = Table(
    "registrations",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("invoice_code", String(50), nullable=False, unique=True),
    Column("status", String(30), nullable=False, server_default="pending"),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=True),
)

registrants = Table(
    "registrants",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("registration_id", String(64), ForeignKey("registrations.id"), nullable=False),
    Column("full_name", String(200), nullable=False),
    Column("saint_name", String(100), nullable=True),
    Column("email", String(200), nullable=True),
    Column("diocese", String(200), nullable=True),
    Column("event_role_id", String(64), ForeignKey("event_roles.id"), nullable=True),
    Column("event_team_id", String(64), ForeignKey("event_teams.id"), nullable=True),
    Column("portrait_url", String(500), nullable=True),
    Column("second_day_only", Boolean, nullable=False, server_default="0"),
    Column("selected_attendance_day", String(20), nullable=True),
    Column("is_checked_in", Boolean, nullable=False, server_default="0"),
    Column("checked_in_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=True),
)

event_logs = Table(
    "event_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("event_type", String(50), nullable=False),
    Column("user_id", String(100), nullable=True),
    Column("target_id", String(64), nullable=True),
    Column("target_type", String(50), nullable=True),
    Column("details", JSON, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)

# Registration statuses that allow check-in
CHECK_IN_ALLOWED_STATUSES = ("confirmed", "temp_confirmed", "checked_in")


def create_tables(engine):
    """Create all registration tables in the target database."""
    metadata.create_all(engine)


__all__ = [
    "metadata",
    "event_teams",
    "event_roles",
    "registrations",
    "registrants",
    "event_logs",
    "CHECK_IN_ALLOWED_STATUSES",
    "create_tables",
]
