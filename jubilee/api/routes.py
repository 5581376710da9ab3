import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from jubilee.core.config import settings
from jubilee.core.database import get_db
from jubilee.core.security import CHECK_IN_ROLES, StaffUser, get_optional_staff, require_staff
from jubilee.schemas import CheckInRequest
from jubilee.services.check_in import check_in, check_in_stats
from jubilee.services.scanner import CheckInScanner

logger = logging.getLogger(__name__)

router = APIRouter()


def _fail(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def get_scanner(request: Request) -> CheckInScanner:
    return request.app.state.scanner


def require_check_in_staff(staff: StaffUser = Depends(require_staff)) -> StaffUser:
    if staff.role not in CHECK_IN_ROLES:
        raise HTTPException(status_code=403, detail="Forbidden")
    return staff


@router.post("/api/check-in")
def post_check_in(
    payload: Optional[CheckInRequest] = Body(None),
    staff: Optional[StaffUser] = Depends(get_optional_staff),
    db: Session = Depends(get_db),
):
    if staff is None:
        return _fail(401, "Unauthorized - Vui lòng đăng nhập")
    if staff.role not in CHECK_IN_ROLES:
        return _fail(403, "Forbidden - Không có quyền truy cập chức năng này")

    registrant_id = payload.registrantId if payload is not None else None
    if not registrant_id:
        return _fail(400, "Thiếu thông tin registrant ID")

    logger.info(f"Check-in attempt for registrant ID: {registrant_id}")
    try:
        status_code, response = check_in(db, registrant_id, staff)
    except Exception as e:
        logger.exception(f"Check-in API error: {e}")
        return _fail(500, "Lỗi hệ thống khi xử lý check-in")

    return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"))


@router.get("/api/check-in")
def get_check_in_stats(
    staff: StaffUser = Depends(require_check_in_staff),
    db: Session = Depends(get_db),
):
    return check_in_stats(db)


@router.get("/video_feed")
async def video_feed(scanner: CheckInScanner = Depends(get_scanner)):
    # camera stack (OpenCV, zbar) is only needed once a stream is opened
    from jubilee.services.video import generate_frame, initialize_camera

    cap = initialize_camera(settings.CAMERA_INDEX)
    if cap is None:
        raise HTTPException(status_code=503, detail="Camera not available")

    return StreamingResponse(
        generate_frame(scanner, settings.CAMERA_INDEX),
        media_type="multipart/x-mixed-replace; boundary=frame",
    )


@router.get("/api/scanner/status")
async def scanner_status(
    staff: StaffUser = Depends(require_check_in_staff),
    scanner: CheckInScanner = Depends(get_scanner),
):
    return scanner.snapshot().to_dict()


@router.post("/api/scanner/start")
async def scanner_start(
    staff: StaffUser = Depends(require_check_in_staff),
    scanner: CheckInScanner = Depends(get_scanner),
):
    scanner.start()
    return scanner.snapshot().to_dict()


@router.post("/api/scanner/stop")
async def scanner_stop(
    staff: StaffUser = Depends(require_check_in_staff),
    scanner: CheckInScanner = Depends(get_scanner),
):
    scanner.stop()
    return scanner.snapshot().to_dict()


@router.post("/api/scanner/dialog/close")
async def scanner_dialog_close(
    staff: StaffUser = Depends(require_check_in_staff),
    scanner: CheckInScanner = Depends(get_scanner),
):
    scanner.close_dialog()
    return scanner.snapshot().to_dict()
