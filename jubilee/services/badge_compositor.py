"""Badge and ticket rasteriser.

Both templates are drawn with Pillow onto a canvas of fixed size: the
400 x 600 (badge) and 400 x 640 (ticket) layouts rendered at scale 2.
"""
import base64
import binascii
import io
import logging
import os
import time
import unicodedata
from datetime import date
from typing import Optional

import httpx
from PIL import Image, ImageDraw, ImageFont, ImageOps

from jubilee.schemas import Registrant
from jubilee.services.errors import AssetLoadError, CardErrorKind, CardGenerationError
from jubilee.services.qr_generator import build_qr_payload, generate_qr_code_image
from jubilee.services.roles import Organizer, categorize

logger = logging.getLogger(__name__)

SCALE = 2
BADGE_SIZE = (400 * SCALE, 600 * SCALE)
TICKET_SIZE = (400 * SCALE, 640 * SCALE)

ORGANIZER_BACKGROUND = "organizer-with-photo.png"
ATTENDEE_BACKGROUND = "no-organizer.png"
EVENT_LOGO = "logo-dh-2025.jpg"

TEXT_BLUE = (30, 64, 175)
PILL_GREEN = (22, 163, 74)
PILL_TEXT_GREEN = (21, 128, 61)
FALLBACK_BACKGROUND = (239, 246, 255)
ORGANIZER_HEADER = (16, 185, 129)
ATTENDEE_HEADER = (59, 130, 246)
MUTED_GREY = (107, 114, 128)
BORDER_GREY = (229, 231, 235)
DAY_PILL_FILL = (254, 215, 170)
DAY_PILL_TEXT = (154, 52, 18)
DAY_PILL_BORDER = (253, 186, 116)

DATA_URI_PREFIX = "data:image/png;base64,"
MAX_ASSET_BYTES = 10 * 1024 * 1024


def image_to_data_uri(img: Image.Image) -> str:
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return DATA_URI_PREFIX + base64.b64encode(buffer.getvalue()).decode("ascii")


def data_uri_to_bytes(data_uri: str) -> bytes:
    """Decode a base64 data URI (or a bare base64 string) to raw bytes."""
    _, _, encoded = data_uri.partition(",") if data_uri.startswith("data:") else ("", "", data_uri)
    return base64.b64decode(encoded)


def format_vi_date(value: Optional[str]) -> str:
    """Format an ISO date the way vi-VN long dates read: ``15 tháng 9, 2025``."""
    if not value:
        return ""
    try:
        parsed = date.fromisoformat(value[:10])
    except ValueError:
        return value
    return f"{parsed.day} tháng {parsed.month}, {parsed.year}"


def _ascii_fold(text: str) -> str:
    text = text.replace("Đ", "D").replace("đ", "d")
    normalized = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in normalized if not unicodedata.combining(ch)).encode("ascii", "ignore").decode("ascii")


class AssetLoader:
    """Loads images from data URIs, http(s) URLs, ``/static/...`` paths or files.

    A network fetch has ``timeout`` seconds in total, checked between body
    chunks, and at most ``max_bytes`` of body.
    """

    def __init__(self, static_dir: str, assets_dir: str, timeout: float = 10.0,
                 client: Optional[httpx.Client] = None, max_bytes: int = MAX_ASSET_BYTES):
        self.static_dir = static_dir
        self.assets_dir = assets_dir
        self.timeout = timeout
        self.max_bytes = max_bytes
        self._client = client

    def asset_path(self, name: str) -> str:
        return os.path.join(self.assets_dir, name)

    def _fetch(self, url: str) -> bytes:
        deadline = time.monotonic() + self.timeout
        client = self._client or httpx.Client(follow_redirects=True)
        try:
            with client.stream("GET", url, timeout=self.timeout) as response:
                response.raise_for_status()
                body = bytearray()
                for chunk in response.iter_bytes():
                    body.extend(chunk)
                    if len(body) > self.max_bytes:
                        raise AssetLoadError(f"{url[:80]} is larger than {self.max_bytes} bytes")
                    if time.monotonic() > deadline:
                        raise AssetLoadError(f"timed out after {self.timeout}s loading {url[:80]}")
                return bytes(body)
        finally:
            if self._client is None:
                client.close()

    def _read(self, ref: str) -> bytes:
        if ref.startswith("data:"):
            return data_uri_to_bytes(ref)
        if ref.startswith(("http://", "https://")):
            return self._fetch(ref)
        if ref.startswith("/static/"):
            ref = os.path.join(self.static_dir, ref[len("/static/"):])
        with open(ref, "rb") as fh:
            return fh.read()

    def load(self, ref: Optional[str]) -> Image.Image:
        if not ref:
            raise AssetLoadError("empty image reference")
        try:
            data = self._read(ref)
            img = Image.open(io.BytesIO(data))
            img.load()
        except (httpx.HTTPError, OSError, ValueError, binascii.Error) as e:
            raise AssetLoadError(f"could not load {ref[:80]}: {e}") from e
        return img


class BadgeCompositor:
    """Renders one registrant into a badge or ticket PNG data URI."""

    def __init__(
        self,
        loader: AssetLoader,
        event_name: str,
        event_title: str,
        event_location: str,
        font_path: Optional[str] = None,
        bold_font_path: Optional[str] = None,
        default_attendance_day: str = "2025-09-15",
    ):
        self.loader = loader
        self.event_name = event_name
        self.event_title = event_title
        self.event_location = event_location
        self.font_path = font_path
        self.bold_font_path = bold_font_path
        self.default_attendance_day = default_attendance_day
        self._font_cache = {}

    # -------------------
    # --- FONTS / TEXT ---
    # -------------------
    def _font(self, size: int, bold: bool = False):
        key = (size, bold)
        if key in self._font_cache:
            return self._font_cache[key]

        candidates = [self.bold_font_path if bold else self.font_path]
        candidates.append("DejaVuSans-Bold.ttf" if bold else "DejaVuSans.ttf")
        font = None
        for candidate in candidates:
            if not candidate:
                continue
            try:
                font = ImageFont.truetype(candidate, size * SCALE)
                break
            except OSError:
                continue
        if font is None:
            logger.debug("TrueType font unavailable, using Pillow default font")
            try:
                font = ImageFont.load_default(size * SCALE)
            except TypeError:
                font = ImageFont.load_default()
        self._font_cache[key] = font
        return font

    @staticmethod
    def _text_size(draw: ImageDraw.ImageDraw, text: str, font):
        try:
            left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
        except UnicodeEncodeError:
            left, top, right, bottom = draw.textbbox((0, 0), _ascii_fold(text), font=font)
        return right - left, bottom - top

    @staticmethod
    def _draw_text(draw: ImageDraw.ImageDraw, xy, text: str, font, fill) -> None:
        try:
            draw.text(xy, text, font=font, fill=fill)
        except UnicodeEncodeError:
            # bitmap default font only covers latin-1
            draw.text(xy, _ascii_fold(text), font=font, fill=fill)

    def _draw_centered(self, draw, text: str, center_x: int, center_y: int, font, fill) -> None:
        width, height = self._text_size(draw, text, font)
        self._draw_text(draw, (center_x - width // 2, center_y - height // 2), text, font, fill)

    def _draw_pill(self, draw, text: str, right: int, center_y: int, font, *, fill, outline, text_fill,
                   height: int = 40 * SCALE, padding: int = 24 * SCALE, align_right: bool = True) -> None:
        width, _ = self._text_size(draw, text, font)
        pill_width = width + 2 * padding
        x0 = right - pill_width if align_right else right - pill_width // 2
        y0 = center_y - height // 2
        draw.rounded_rectangle(
            (x0, y0, x0 + pill_width, y0 + height),
            radius=height // 2,
            fill=fill,
            outline=outline,
            width=2 * SCALE,
        )
        self._draw_centered(draw, text, x0 + pill_width // 2, center_y, font, text_fill)

    # -------------------
    # --- IMAGES ---
    # -------------------
    def _background(self, registrant: Registrant, size) -> Image.Image:
        name = ORGANIZER_BACKGROUND if isinstance(categorize(registrant), Organizer) else ATTENDEE_BACKGROUND
        try:
            template = self.loader.load(self.loader.asset_path(name))
        except AssetLoadError as e:
            logger.warning(f"Background template {name} unavailable, using flat background: {e}")
            return Image.new("RGB", size, FALLBACK_BACKGROUND)
        return ImageOps.fit(template.convert("RGB"), size, method=Image.LANCZOS)

    @staticmethod
    def crop_to_square(img: Image.Image) -> Image.Image:
        """Center crop to a square, keeping more of the top for portrait photos."""
        w, h = img.size
        if w == h:
            return img
        if w > h:
            left = (w - h) // 2
            return img.crop((left, 0, left + h, h))
        top = min(int((h - w) * 0.35), h - w)
        return img.crop((0, top, w, top + w))

    @staticmethod
    def _paste_circle(canvas: Image.Image, img: Image.Image, center, diameter: int,
                      border: int = 0, border_fill=(255, 255, 255)) -> None:
        cx, cy = center
        x0, y0 = cx - diameter // 2, cy - diameter // 2
        if border:
            ring = ImageDraw.Draw(canvas)
            ring.ellipse((x0 - border, y0 - border, x0 + diameter + border, y0 + diameter + border), fill=border_fill)
        img = img.convert("RGB").resize((diameter, diameter), Image.LANCZOS)
        mask = Image.new("L", (diameter, diameter), 0)
        ImageDraw.Draw(mask).ellipse((0, 0, diameter - 1, diameter - 1), fill=255)
        canvas.paste(img, (x0, y0), mask)

    def _portrait(self, registrant: Registrant) -> Optional[Image.Image]:
        if not registrant.portrait_url:
            return None
        try:
            return self.crop_to_square(self.loader.load(registrant.portrait_url))
        except AssetLoadError as e:
            logger.warning(f"Portrait unavailable for {registrant.full_name}, falling back to logo: {e}")
            return None

    def _logo(self) -> Optional[Image.Image]:
        try:
            return self.crop_to_square(self.loader.load(self.loader.asset_path(EVENT_LOGO)))
        except AssetLoadError as e:
            logger.warning(f"Event logo unavailable: {e}")
            return None

    @staticmethod
    def _require_name(registrant: Registrant) -> None:
        if not registrant.full_name or not registrant.full_name.strip():
            raise CardGenerationError(
                CardErrorKind.USER_NOT_FOUND,
                "Thiếu họ và tên",
                user_id=registrant.id,
            )

    # -------------------
    # --- BADGE ---
    # -------------------
    def render_badge_image(self, registrant: Registrant, include_qr: bool = False) -> Image.Image:
        self._require_name(registrant)
        width, height = BADGE_SIZE
        canvas = self._background(registrant, BADGE_SIZE)
        draw = ImageDraw.Draw(canvas)

        kind = categorize(registrant)
        saint_name = registrant.saint_name or ""
        full_name = registrant.full_name.strip().upper()
        center_x = width // 2
        pill_right = width - 24 * SCALE
        pill_font = self._font(16, bold=True)

        # Section 1: text block, top 200px
        if isinstance(kind, Organizer):
            self._draw_centered(draw, saint_name, center_x, 30 * SCALE, self._font(24, bold=True), TEXT_BLUE)
            self._draw_centered(draw, full_name, center_x, 90 * SCALE, self._font(28, bold=True), TEXT_BLUE)
            self._draw_pill(draw, kind.role_name.upper(), pill_right, 150 * SCALE, pill_font,
                            fill="white", outline=PILL_GREEN, text_fill=PILL_TEXT_GREEN)
        else:
            self._draw_centered(draw, saint_name, center_x, 25 * SCALE, self._font(24, bold=True), TEXT_BLUE)
            self._draw_centered(draw, full_name, center_x, 75 * SCALE, self._font(28, bold=True), TEXT_BLUE)
            label = f"THAM DỰ VIÊN - {kind.team_name}" if kind.team_name else "THAM DỰ VIÊN"
            self._draw_pill(draw, label, pill_right, 135 * SCALE, pill_font,
                            fill="white", outline=PILL_GREEN, text_fill=PILL_TEXT_GREEN)

        # Section 2: portrait or logo, middle 300px
        avatar_center = (center_x, 350 * SCALE)
        diameter = 240 * SCALE
        portrait = self._portrait(registrant)
        if portrait is not None:
            self._paste_circle(canvas, portrait, avatar_center, diameter, border=2 * SCALE)
        else:
            logo = self._logo()
            if logo is not None:
                self._paste_circle(canvas, logo, avatar_center, diameter)
            else:
                cx, cy = avatar_center
                draw.ellipse((cx - diameter // 2, cy - diameter // 2, cx + diameter // 2, cy + diameter // 2),
                             fill=TEXT_BLUE)

        # Section 3: optional QR block, bottom 100px
        if include_qr:
            qr = generate_qr_code_image(build_qr_payload(registrant, self.event_name), box_size=4, border=1)
            qr_size = 88 * SCALE
            qr = qr.resize((qr_size, qr_size), Image.NEAREST)
            canvas.paste(qr, (center_x - qr_size // 2, 506 * SCALE))

        return canvas

    def render_badge(self, registrant: Registrant, include_qr: bool = False) -> str:
        img = self.render_badge_image(registrant, include_qr=include_qr)
        try:
            return image_to_data_uri(img)
        finally:
            img.close()

    # -------------------
    # --- TICKET ---
    # -------------------
    def render_ticket_image(self, registrant: Registrant) -> Image.Image:
        self._require_name(registrant)
        width, height = TICKET_SIZE
        canvas = Image.new("RGB", TICKET_SIZE, "white")
        draw = ImageDraw.Draw(canvas)
        center_x = width // 2

        header_color = ORGANIZER_HEADER if isinstance(categorize(registrant), Organizer) else ATTENDEE_HEADER
        draw.rectangle((0, 0, width, 56 * SCALE), fill=header_color)
        self._draw_centered(draw, self.event_title, center_x, 28 * SCALE, self._font(18, bold=True), "white")

        y = 80 * SCALE
        portrait = self._portrait(registrant)
        if portrait is not None:
            diameter = 128 * SCALE
            self._paste_circle(canvas, portrait, (center_x, y + diameter // 2), diameter,
                               border=4 * SCALE, border_fill=BORDER_GREY)
            y += diameter + 16 * SCALE

        if registrant.saint_name:
            self._draw_centered(draw, f"({registrant.saint_name})", center_x, y + 10 * SCALE, self._font(16), MUTED_GREY)
            y += 28 * SCALE

        self._draw_centered(draw, registrant.full_name.strip(), center_x, y + 14 * SCALE, self._font(24, bold=True), "black")
        y += 36 * SCALE

        if registrant.second_day_only:
            day = format_vi_date(registrant.selected_attendance_day or self.default_attendance_day)
            self._draw_pill(draw, f"Chỉ tham dự: {day}", center_x, y + 18 * SCALE, self._font(14),
                            fill=DAY_PILL_FILL, outline=DAY_PILL_BORDER, text_fill=DAY_PILL_TEXT,
                            height=34 * SCALE, padding=8 * SCALE, align_right=False)
            y += 44 * SCALE

        self._draw_centered(draw, self.event_location, center_x, y + 12 * SCALE, self._font(14), MUTED_GREY)
        y += 32 * SCALE

        qr_size = 200 * SCALE
        qr = generate_qr_code_image(build_qr_payload(registrant, self.event_name))
        qr = qr.resize((qr_size, qr_size), Image.NEAREST)
        frame = 8 * SCALE
        draw.rounded_rectangle((center_x - qr_size // 2 - frame, y, center_x + qr_size // 2 + frame, y + qr_size + 2 * frame),
                               radius=8 * SCALE, fill="white", outline=BORDER_GREY, width=SCALE)
        canvas.paste(qr, (center_x - qr_size // 2, y + frame))
        y += qr_size + 2 * frame + 16 * SCALE

        self._draw_centered(draw, "Sử dụng mã QR này để check-in tại sự kiện.", center_x, y + 10 * SCALE,
                            self._font(14), MUTED_GREY)
        return canvas

    def render_ticket(self, registrant: Registrant) -> str:
        img = self.render_ticket_image(registrant)
        try:
            return image_to_data_uri(img)
        finally:
            img.close()


def build_compositor(settings) -> BadgeCompositor:
    loader = AssetLoader(settings.STATIC_DIR, settings.ASSETS_DIR, timeout=settings.ASSET_LOAD_TIMEOUT)
    return BadgeCompositor(
        loader,
        event_name=settings.EVENT_NAME,
        event_title=settings.EVENT_TITLE,
        event_location=settings.EVENT_LOCATION,
        font_path=settings.FONT_PATH,
        bold_font_path=settings.FONT_BOLD_PATH,
        default_attendance_day=settings.DEFAULT_ATTENDANCE_DAY,
    )
