import json
import logging
import os
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from jubilee.core.database import get_db
from jubilee.core.rate_limit import RateLimiter
from jubilee.core.security import StaffUser, require_staff
from jubilee.models.registrant import event_logs, registrants
from jubilee.schemas import AvatarResponse
from jubilee.services.avatar import (
    AvatarValidationError,
    CropBox,
    delete_avatar_file,
    process_avatar,
    save_avatar,
    validate_avatar,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/registrants", tags=["avatar"])

UPLOAD_LIMIT = 5
UPDATE_LIMIT = 3
DELETE_LIMIT = 5
RATE_LIMIT_WINDOW = 60.0
TOO_MANY_REQUESTS = "Too many requests. Please try again later."


def _limit(request: Request, scope: str, staff: StaffUser, max_requests: int) -> None:
    limiter: RateLimiter = request.app.state.rate_limiter
    result = limiter.check(scope, staff.username, max_requests, RATE_LIMIT_WINDOW)
    if not result.allowed:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=TOO_MANY_REQUESTS)


def _current_portrait(db: Session, registrant_id: str) -> Optional[str]:
    row = db.execute(select(registrants.c.id, registrants.c.portrait_url).where(registrants.c.id == registrant_id)).first()
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Registrant not found")
    return row.portrait_url


def _avatar_url(request: Request, path: str) -> str:
    relative = os.path.relpath(path, request.app.state.static_dir).replace(os.sep, "/")
    return f"/static/{relative}"


def _store(db: Session, registrant_id: str, portrait_url: Optional[str], action: str, staff: StaffUser, details: dict):
    now = datetime.now()
    try:
        db.execute(
            update(registrants)
            .where(registrants.c.id == registrant_id)
            .values(portrait_url=portrait_url, updated_at=now)
        )
        db.execute(
            insert(event_logs).values(
                event_type=action,
                user_id=staff.username,
                target_id=registrant_id,
                target_type="registrant",
                details=details,
                created_at=now,
            )
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to update registrant record {registrant_id}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update registrant record")


async def _read_upload(file: UploadFile, crop: Optional[CropBox] = None):
    content = await file.read()
    try:
        image = validate_avatar(content, file.content_type)
        return process_avatar(image, len(content), crop)
    except AvatarValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/{registrant_id}/avatar", status_code=status.HTTP_201_CREATED, response_model=AvatarResponse)
async def upload_avatar(
    registrant_id: str,
    request: Request,
    file: UploadFile = File(...),
    staff: StaffUser = Depends(require_staff),
    db: Session = Depends(get_db),
):
    _limit(request, "avatar_upload", staff, UPLOAD_LIMIT)
    _current_portrait(db, registrant_id)

    processed = await _read_upload(file)
    path = save_avatar(request.app.state.avatar_dir, registrant_id, processed.content)
    url = _avatar_url(request, path)
    _store(db, registrant_id, url, "avatar_uploaded", staff, {
        "file_size": processed.compressed_size,
        "file_type": file.content_type,
    })
    return AvatarResponse(success=True, avatarUrl=url)


@router.put("/{registrant_id}/avatar")
async def replace_avatar(
    registrant_id: str,
    request: Request,
    file: UploadFile = File(...),
    cropData: Optional[str] = Form(None),
    staff: StaffUser = Depends(require_staff),
    db: Session = Depends(get_db),
):
    _limit(request, "avatar_update", staff, UPDATE_LIMIT)
    _current_portrait(db, registrant_id)

    crop = None
    if cropData:
        try:
            crop = CropBox(**{k: int(v) for k, v in json.loads(cropData).items() if k in ("x", "y", "width", "height")})
        except (ValueError, TypeError, AttributeError) as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid crop data format") from e

    processed = await _read_upload(file, crop)
    path = save_avatar(request.app.state.avatar_dir, registrant_id, processed.content)
    url = _avatar_url(request, path)
    _store(db, registrant_id, url, "avatar_updated", staff, {
        "file_size": processed.compressed_size,
        "original_size": processed.original_size,
        "compression_ratio": processed.compression_ratio,
    })
    return JSONResponse(content={
        "success": True,
        "avatarUrl": url,
        "metadata": {
            "originalSize": processed.original_size,
            "compressedSize": processed.compressed_size,
            "compressionRatio": processed.compression_ratio,
        },
    })


@router.delete("/{registrant_id}/avatar", response_model=AvatarResponse)
def remove_avatar(
    registrant_id: str,
    request: Request,
    staff: StaffUser = Depends(require_staff),
    db: Session = Depends(get_db),
):
    _limit(request, "avatar_delete", staff, DELETE_LIMIT)
    if not _current_portrait(db, registrant_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No avatar to delete")

    _store(db, registrant_id, None, "avatar_deleted", staff, {})
    delete_avatar_file(request.app.state.avatar_dir, registrant_id)
    return AvatarResponse(success=True, message="Avatar deleted successfully")
