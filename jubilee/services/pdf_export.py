"""A4 card sheets, batched PDF export and ZIP packaging."""
import asyncio
import io
import logging
import re
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from jubilee.core.cancellation import CancelToken
from jubilee.schemas import Registrant
from jubilee.services.badge_compositor import data_uri_to_bytes
from jubilee.services.card_generator import (
    CardError,
    CardGeneratorService,
    CardImageData,
    ProgressCallback,
)
from jubilee.services.errors import CardErrorKind, CardGenerationError, ExportError
from jubilee.services.qr_generator import build_qr_payload, generate_qr_code_blob

logger = logging.getLogger(__name__)

# A4 layout, millimetres, measured from the top-left corner of the page
PAGE_WIDTH_MM = 210
PAGE_HEIGHT_MM = 297
MARGIN_MM = 8
CARD_WIDTH_MM = 90
CARD_HEIGHT_MM = 135
CARD_SPACING_MM = 3

CARD_POSITIONS_MM = (
    (MARGIN_MM, MARGIN_MM),
    (MARGIN_MM + CARD_WIDTH_MM + CARD_SPACING_MM, MARGIN_MM),
    (MARGIN_MM, MARGIN_MM + CARD_HEIGHT_MM + CARD_SPACING_MM),
    (MARGIN_MM + CARD_WIDTH_MM + CARD_SPACING_MM, MARGIN_MM + CARD_HEIGHT_MM + CARD_SPACING_MM),
)
CARDS_PER_PAGE = len(CARD_POSITIONS_MM)

DEFAULT_BATCH_SIZE = 12

PDF_MEDIA_TYPE = "application/pdf"
ZIP_MEDIA_TYPE = "application/zip"


@dataclass
class CardPlacement:
    card: CardImageData
    x_mm: float
    y_mm: float


@dataclass
class CardPage:
    cards: List[CardImageData]
    layout: List[CardPlacement]


@dataclass
class BatchReport:
    number: int
    filename: str
    card_count: int
    skipped: bool = False


@dataclass
class ExportResult:
    filename: str
    content: bytes
    media_type: str
    batches: List[BatchReport] = field(default_factory=list)
    errors: List[CardError] = field(default_factory=list)
    success_count: int = 0


# -------------------
# --- FILENAMES ---
# -------------------
def sanitize_filename_part(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", name)


def badge_filename(full_name: str) -> str:
    return f"Badge-{sanitize_filename_part(full_name)}.png"


def ticket_filename(invoice_code: Optional[str], full_name: str) -> str:
    return f"{invoice_code or 'unknown'}-{sanitize_filename_part(full_name)}.png"


def batch_filename(number: int) -> str:
    return f"cards_batch_{number:02d}.pdf"


def archive_name(prefix: str, now: datetime) -> str:
    return f"{prefix}_{now:%Y-%m-%d-%H%M}.zip"


def default_pdf_name(now: datetime) -> str:
    return f"the-id-cards-{now:%d-%m-%Y-%H-%M}.pdf"


# -------------------
# --- LAYOUT / PDF ---
# -------------------
def split_into_batches(items: Sequence, size: int = DEFAULT_BATCH_SIZE) -> List[list]:
    if size <= 0:
        raise ValueError("batch size must be positive")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def create_a4_card_layout(cards: Sequence[CardImageData]) -> List[CardPage]:
    pages = []
    for page_cards in split_into_batches(cards, CARDS_PER_PAGE):
        layout = [
            CardPlacement(card=card, x_mm=x, y_mm=y)
            for card, (x, y) in zip(page_cards, CARD_POSITIONS_MM)
        ]
        pages.append(CardPage(cards=page_cards, layout=layout))
    return pages


def _add_card_to_page(pdf: canvas.Canvas, card: CardImageData, x_mm: float, y_mm: float) -> None:
    # reportlab measures from the bottom-left corner
    x = x_mm * mm
    y = (PAGE_HEIGHT_MM - y_mm - CARD_HEIGHT_MM) * mm
    width = CARD_WIDTH_MM * mm
    height = CARD_HEIGHT_MM * mm
    try:
        image = ImageReader(io.BytesIO(data_uri_to_bytes(card.image_data_url)))
        pdf.drawImage(image, x, y, width=width, height=height)
    except Exception as e:
        logger.error(f"Error adding card {card.id} to PDF: {e}")
        pdf.setStrokeColorRGB(200 / 255, 200 / 255, 200 / 255)
        pdf.setFillColorRGB(240 / 255, 240 / 255, 240 / 255)
        pdf.rect(x, y, width, height, stroke=1, fill=1)
        pdf.setFont("Helvetica", 8)
        pdf.setFillColorRGB(100 / 255, 100 / 255, 100 / 255)
        pdf.drawCentredString(x + width / 2, y + height / 2, "Lỗi tải ảnh")


def generate_cards_pdf(cards: Sequence[CardImageData]) -> bytes:
    """Lay the cards out four per A4 page and return the PDF bytes."""
    if not cards:
        raise CardGenerationError(CardErrorKind.PDF_GENERATION_FAILED, "Không có thẻ nào để xuất PDF")

    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    pdf.setTitle("ID cards")
    for page in create_a4_card_layout(cards):
        for placement in page.layout:
            _add_card_to_page(pdf, placement.card, placement.x_mm, placement.y_mm)
        pdf.showPage()
    pdf.save()
    return buffer.getvalue()


# -------------------
# --- ARCHIVES ---
# -------------------
def build_image_archive(entries: Iterable[Tuple[str, Union[str, bytes]]], folder: Optional[str] = None) -> bytes:
    """ZIP the entries; string payloads are treated as base64 data URIs."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, payload in entries:
            data = data_uri_to_bytes(payload) if isinstance(payload, str) else payload
            zf.writestr(f"{folder}/{name}" if folder else name, data)
    return buffer.getvalue()


def build_qr_archive(registrants: Sequence[Registrant], event_name: str) -> bytes:
    entries = []
    for registrant in registrants:
        payload = build_qr_payload(registrant, event_name)
        entries.append((ticket_filename(registrant.invoice_code, registrant.full_name), generate_qr_code_blob(payload)))
    return build_image_archive(entries)


class CardPackager:
    """Turns registrant selections into downloadable PDF / ZIP files."""

    def __init__(
        self,
        generator: CardGeneratorService,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.generator = generator
        self.batch_size = batch_size
        self.clock = clock

    async def generate_pdf_bytes(
        self,
        registrants: Sequence[Registrant],
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> Tuple[bytes, List[CardError]]:
        result = await self.generator.generate_cards_for_users(registrants, on_progress, cancel_token)
        if not result.success:
            raise ExportError("Không thể tạo thẻ nào")
        pdf_bytes = await asyncio.to_thread(generate_cards_pdf, result.cards)
        return pdf_bytes, result.errors

    async def generate_and_export_pdf(
        self,
        registrants: Sequence[Registrant],
        filename: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
        prefix: str = "cards",
    ) -> ExportResult:
        registrants = list(registrants)
        now = self.clock()

        if len(registrants) <= self.batch_size:
            pdf_bytes, errors = await self.generate_pdf_bytes(registrants, on_progress, cancel_token)
            name = filename or default_pdf_name(now)
            count = len(registrants) - len(errors)
            return ExportResult(
                filename=name,
                content=pdf_bytes,
                media_type=PDF_MEDIA_TYPE,
                batches=[BatchReport(number=1, filename=name, card_count=count)],
                errors=errors,
                success_count=count,
            )

        total = len(registrants)
        batches = split_into_batches(registrants, self.batch_size)
        logger.info(f"Exporting {total} cards in {len(batches)} PDF batches")

        reports: List[BatchReport] = []
        errors: List[CardError] = []
        pdf_entries: List[Tuple[str, bytes]] = []
        completed_before = 0

        for number, batch in enumerate(batches, start=1):
            offset = completed_before

            def batch_progress(completed: int, _batch_total: int, offset=offset) -> None:
                if on_progress is not None:
                    on_progress(offset + completed, total)

            name = batch_filename(number)
            result = await self.generator.generate_cards_for_users(batch, batch_progress, cancel_token)
            errors.extend(result.errors)
            completed_before += len(batch)

            if not result.success:
                logger.warning(f"Skipping {name}: no card could be generated for this batch")
                reports.append(BatchReport(number=number, filename=name, card_count=0, skipped=True))
                continue

            pdf_entries.append((name, await asyncio.to_thread(generate_cards_pdf, result.cards)))
            reports.append(BatchReport(number=number, filename=name, card_count=len(result.cards)))

        if not pdf_entries:
            raise ExportError("Không thể tạo thẻ nào")

        return ExportResult(
            filename=archive_name(prefix, now),
            content=build_image_archive(pdf_entries),
            media_type=ZIP_MEDIA_TYPE,
            batches=reports,
            errors=errors,
            success_count=sum(r.card_count for r in reports),
        )

    async def _export_images(
        self,
        registrants: Sequence[Registrant],
        render: Callable[[Registrant], str],
        name_for: Callable[[Registrant], str],
        prefix: str,
        folder: Optional[str],
        on_progress: Optional[ProgressCallback],
        cancel_token: Optional[CancelToken],
    ) -> ExportResult:
        entries: List[Tuple[str, str]] = []
        errors: List[CardError] = []
        total = len(registrants)

        for i, registrant in enumerate(registrants):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                entries.append((name_for(registrant), await asyncio.to_thread(render, registrant)))
            except CardGenerationError as e:
                logger.error(f"Failed to render image for {registrant.full_name}: {e.message}")
                errors.append(CardError(kind=e.kind, message=e.message, user_id=registrant.id))
            except Exception as e:
                logger.error(f"Failed to render image for {registrant.full_name}: {e}")
                errors.append(CardError(kind=CardErrorKind.CANVAS_ERROR, message=str(e), user_id=registrant.id))
            if on_progress is not None:
                on_progress(i + 1, total)

        if not entries:
            raise ExportError("Không thể tạo thẻ nào")

        return ExportResult(
            filename=archive_name(prefix, self.clock()),
            content=build_image_archive(entries, folder=folder),
            media_type=ZIP_MEDIA_TYPE,
            errors=errors,
            success_count=len(entries),
        )

    async def export_badges_zip(
        self,
        registrants: Sequence[Registrant],
        prefix: str = "Badges",
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> ExportResult:
        compositor = self.generator.compositor
        return await self._export_images(
            registrants,
            compositor.render_badge,
            lambda r: badge_filename(r.full_name),
            prefix,
            None,
            on_progress,
            cancel_token,
        )

    async def export_tickets_zip(
        self,
        registrants: Sequence[Registrant],
        prefix: str = "Tickets",
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> ExportResult:
        compositor = self.generator.compositor
        return await self._export_images(
            registrants,
            compositor.render_ticket,
            lambda r: ticket_filename(r.invoice_code, r.full_name),
            prefix,
            "tickets",
            on_progress,
            cancel_token,
        )
