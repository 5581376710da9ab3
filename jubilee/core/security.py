import base64
import binascii
import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, status

from jubilee.core.config import settings

CHECK_IN_ROLES = ("registration_manager", "event_organizer", "super_admin")
ADMIN_ROLES = ("event_organizer", "super_admin")


@dataclass(frozen=True)
class StaffUser:
    username: str
    role: str


def authenticate(authorization: Optional[str]) -> Optional[StaffUser]:
    """Resolve a Basic Authorization header against the configured staff accounts."""
    if not authorization or not authorization.startswith("Basic "):
        return None

    try:
        credentials = base64.b64decode(authorization.split(" ", 1)[1]).decode()
        username, password = credentials.split(":", 1)
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None

    for account_user, account_password, role in settings.staff_accounts:
        if account_user == username and hmac.compare_digest(account_password.encode(), password.encode()):
            return StaffUser(username=username, role=role)
    return None


def get_optional_staff(authorization: str = Header(None)) -> Optional[StaffUser]:
    return authenticate(authorization)


def require_staff(authorization: str = Header(None)) -> StaffUser:
    user = authenticate(authorization)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": 'Basic realm="Jubilee"'},
        )
    return user


def require_admin(authorization: str = Header(None)) -> StaffUser:
    user = require_staff(authorization)
    if user.role not in ADMIN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden - Không có quyền truy cập chức năng này",
        )
    return user
