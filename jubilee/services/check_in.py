import logging
from datetime import datetime, time
from typing import Optional, Tuple

from sqlalchemy import and_, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from jubilee.core.security import StaffUser
from jubilee.models.registrant import CHECK_IN_ALLOWED_STATUSES, event_logs, registrants, registrations
from jubilee.schemas import CheckInRegistrant, CheckInResponse, CheckInStats, RecentCheckIn

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Không tìm thấy thông tin người tham gia với mã QR này"
REGISTRATION_NOT_FOUND_MESSAGE = "Không tìm thấy thông tin đăng ký"
NOT_CONFIRMED_MESSAGE = "Đăng ký chưa được xác nhận thanh toán. Không thể check-in."

RECENT_CHECKINS_LIMIT = 10


def format_check_in_time(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return f"{value:%H:%M:%S %d/%m/%Y}"


def _registrant_out(row, **overrides) -> CheckInRegistrant:
    data = {
        "id": row.id,
        "full_name": row.full_name,
        "saint_name": row.saint_name,
        "email": row.email,
        "diocese": row.diocese,
        "is_checked_in": bool(row.is_checked_in),
        "checked_in_at": row.checked_in_at,
    }
    data.update(overrides)
    return CheckInRegistrant(**data)


def check_in(
    db: Session,
    registrant_id: str,
    staff: StaffUser,
    now: Optional[datetime] = None,
) -> Tuple[int, CheckInResponse]:
    """Mark a registrant as arrived.

    Returns the HTTP status code together with the response body. The update is
    guarded on ``is_checked_in = false`` so two desks scanning the same ticket
    at once produce exactly one successful check-in.
    """
    now = now or datetime.now()

    row = db.execute(
        select(
            registrants.c.id,
            registrants.c.full_name,
            registrants.c.saint_name,
            registrants.c.email,
            registrants.c.diocese,
            registrants.c.is_checked_in,
            registrants.c.checked_in_at,
            registrants.c.registration_id,
        ).where(registrants.c.id == registrant_id)
    ).first()

    if row is None:
        logger.warning(f"Check-in: registrant {registrant_id} not found")
        return 404, CheckInResponse(success=False, message=NOT_FOUND_MESSAGE)

    registration_status = db.execute(
        select(registrations.c.status).where(registrations.c.id == row.registration_id)
    ).scalar()

    if registration_status is None:
        return 404, CheckInResponse(success=False, message=REGISTRATION_NOT_FOUND_MESSAGE)

    if registration_status not in CHECK_IN_ALLOWED_STATUSES:
        return 400, CheckInResponse(success=False, registrant=_registrant_out(row), message=NOT_CONFIRMED_MESSAGE)

    if row.is_checked_in:
        return 200, CheckInResponse(
            success=False,
            registrant=_registrant_out(row),
            message=f"{row.full_name} đã check-in trước đó lúc {format_check_in_time(row.checked_in_at)}",
        )

    try:
        result = db.execute(
            update(registrants)
            .where(and_(registrants.c.id == registrant_id, registrants.c.is_checked_in.is_(False)))
            .values(is_checked_in=True, checked_in_at=now, updated_at=now)
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    if result.rowcount == 0:
        current = db.execute(
            select(registrants.c.full_name, registrants.c.checked_in_at).where(registrants.c.id == registrant_id)
        ).first()
        name = current.full_name if current is not None else row.full_name
        return 200, CheckInResponse(
            success=False,
            registrant=_registrant_out(
                row,
                full_name=name,
                is_checked_in=True,
                checked_in_at=current.checked_in_at if current is not None else None,
            ),
            message=f"{name} đã được check-in bởi người khác",
        )

    if registration_status != "checked_in":
        try:
            db.execute(
                update(registrations)
                .where(registrations.c.id == row.registration_id)
                .values(status="checked_in", updated_at=now)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Registration status update failed (non-critical): {e}")

    try:
        db.execute(
            insert(event_logs).values(
                event_type="check_in",
                user_id=staff.username,
                target_id=registrant_id,
                target_type="registrant",
                details={
                    "registrant_name": row.full_name,
                    "registrant_email": row.email,
                    "checked_in_by": staff.username,
                    "timestamp": now.isoformat(),
                },
                created_at=now,
            )
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Event logging failed (non-critical): {e}")

    logger.info(f"Checked in {row.full_name} ({registrant_id}) by {staff.username}")
    return 200, CheckInResponse(
        success=True,
        registrant=_registrant_out(row, is_checked_in=True, checked_in_at=now),
        message=f"Check-in thành công cho {row.full_name}!",
    )


def check_in_stats(db: Session, now: Optional[datetime] = None) -> CheckInStats:
    now = now or datetime.now()
    start_of_day = datetime.combine(now.date(), time.min)
    end_of_day = datetime.combine(now.date(), time.max)

    confirmed = (
        select(registrants.c.id, registrants.c.full_name, registrants.c.is_checked_in, registrants.c.checked_in_at)
        .join(registrations, registrations.c.id == registrants.c.registration_id)
        .where(registrations.c.status.in_(CHECK_IN_ALLOWED_STATUSES))
    )
    rows = db.execute(confirmed).all()

    total_confirmed = len(rows)
    total_checked_in = sum(1 for r in rows if r.is_checked_in)
    check_in_rate = f"{total_checked_in / total_confirmed * 100:.1f}" if total_confirmed else "0"

    today = [
        r for r in rows
        if r.is_checked_in and r.checked_in_at is not None and start_of_day <= r.checked_in_at <= end_of_day
    ]
    today.sort(key=lambda r: r.checked_in_at, reverse=True)

    return CheckInStats(
        totalConfirmed=total_confirmed,
        totalCheckedIn=total_checked_in,
        checkInRate=check_in_rate,
        todayCheckins=len(today),
        recentCheckins=[
            RecentCheckIn(id=r.id, full_name=r.full_name, checked_in_at=r.checked_in_at)
            for r in today[:RECENT_CHECKINS_LIMIT]
        ],
    )

