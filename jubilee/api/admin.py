import io
import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from jubilee.core.cancellation import GenerationCancelled
from jubilee.core.database import get_db
from jubilee.core.security import StaffUser, require_admin
from jubilee.schemas import (
    CardErrorOut,
    CardExportRequest,
    CardPreviewOut,
    CardStatsOut,
    Registrant,
)
from jubilee.services.card_generator import CardError, CardGeneratorService
from jubilee.services.errors import ExportError
from jubilee.services.pdf_export import CardPackager, ExportResult, archive_name, build_qr_archive
from jubilee.services.registrants import ROLE_FILTERS, list_registrants, load_registrants_by_ids
from jubilee.services.roles import role_category

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def get_packager(request: Request) -> CardPackager:
    return request.app.state.packager


def get_card_generator(request: Request) -> CardGeneratorService:
    return request.app.state.card_generator


def _error_out(error: CardError) -> CardErrorOut:
    return CardErrorOut(type=error.kind.value, message=error.message, userId=error.user_id)


def _selected_registrants(db: Session, ids: List[str]) -> List[Registrant]:
    if not ids:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Chưa chọn người tham gia nào")
    selected = load_registrants_by_ids(db, ids)
    if not selected:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Không tìm thấy người tham gia")
    return selected


def _download(result: ExportResult) -> StreamingResponse:
    return StreamingResponse(
        io.BytesIO(result.content),
        media_type=result.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"',
            "X-Cards-Generated": str(result.success_count),
            "X-Cards-Failed": str(len(result.errors)),
            "X-Card-Errors": json.dumps([_error_out(e).model_dump() for e in result.errors]),
        },
    )


@router.get("/registrants")
def registrants_list(
    team: Optional[str] = None,
    role: str = "all",
    search: Optional[str] = None,
    staff: StaffUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if role not in ROLE_FILTERS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown role filter: {role}")
    rows = list_registrants(db, team=team, role=role, search=search)
    return {
        "registrants": [
            {**r.model_dump(), "category": role_category(r.event_role.name if r.event_role else None)}
            for r in rows
        ]
    }


@router.get("/cards/stats", response_model=CardStatsOut)
def cards_stats(
    ids: List[str] = Query(...),
    staff: StaffUser = Depends(require_admin),
    db: Session = Depends(get_db),
    generator: CardGeneratorService = Depends(get_card_generator),
):
    stats = generator.get_card_stats(_selected_registrants(db, ids))
    return CardStatsOut(
        total=stats.total,
        organizers=stats.organizers,
        participants=stats.participants,
        withPhoto=stats.with_photo,
        withoutPhoto=stats.without_photo,
        estimatedPages=stats.estimated_pages,
    )


@router.post("/cards/preview")
async def cards_preview(
    body: CardExportRequest,
    staff: StaffUser = Depends(require_admin),
    db: Session = Depends(get_db),
    generator: CardGeneratorService = Depends(get_card_generator),
):
    valid, invalid = generator.validate_registrants(_selected_registrants(db, body.registrant_ids))
    cards = await generator.get_cards_preview(valid)
    return {
        "cards": [
            CardPreviewOut(
                id=card.id,
                userId=card.user_id,
                imageDataUrl=card.image_data_url,
                saintName=card.saint_name,
                fullName=card.full_name,
                role=card.role,
            )
            for card in cards
        ],
        "invalid": [{"userId": r.id, "reason": reason} for r, reason in invalid],
    }


async def _run_export(export, *args, **kwargs) -> ExportResult:
    try:
        result = await export(*args, **kwargs)
    except ExportError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except GenerationCancelled as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    for error in result.errors:
        logger.warning(f"Card for {error.user_id} not generated: {error.message}")
    logger.info(f"Export {result.filename}: {result.success_count} ok, {len(result.errors)} failed")
    return result


@router.post("/cards/export")
async def cards_export(
    body: CardExportRequest,
    staff: StaffUser = Depends(require_admin),
    db: Session = Depends(get_db),
    packager: CardPackager = Depends(get_packager),
):
    valid, invalid = packager.generator.validate_registrants(_selected_registrants(db, body.registrant_ids))
    if not valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=invalid[0][1])
    result = await _run_export(packager.generate_and_export_pdf, valid, filename=body.filename, prefix=body.prefix)
    return _download(result)


@router.post("/badges/export")
async def badges_export(
    body: CardExportRequest,
    staff: StaffUser = Depends(require_admin),
    db: Session = Depends(get_db),
    packager: CardPackager = Depends(get_packager),
):
    selected = _selected_registrants(db, body.registrant_ids)
    result = await _run_export(packager.export_badges_zip, selected, prefix=f"{body.prefix}-Badges")
    return _download(result)


@router.post("/tickets/export")
async def tickets_export(
    body: CardExportRequest,
    staff: StaffUser = Depends(require_admin),
    db: Session = Depends(get_db),
    packager: CardPackager = Depends(get_packager),
):
    selected = _selected_registrants(db, body.registrant_ids)
    result = await _run_export(packager.export_tickets_zip, selected, prefix=f"{body.prefix}-Tickets")
    return _download(result)


@router.get("/qr-codes")
def qr_codes_export(
    request: Request,
    team: Optional[str] = None,
    staff: StaffUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    selected = list_registrants(db, team=team, confirmed_only=True)
    if not selected:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Không có người tham gia đã xác nhận")

    packager: CardPackager = request.app.state.packager
    content = build_qr_archive(selected, request.app.state.event_name)
    return _download(
        ExportResult(
            filename=archive_name("qr-codes", packager.clock()),
            content=content,
            media_type="application/zip",
            success_count=len(selected),
        )
    )
