import io
import os
import tempfile
import time
import unittest

import httpx
from PIL import Image

from jubilee.schemas import EventRoleRef, EventTeamRef, Registrant
from jubilee.services.badge_compositor import (
    ATTENDEE_BACKGROUND,
    BADGE_SIZE,
    EVENT_LOGO,
    TICKET_SIZE,
    AssetLoader,
    BadgeCompositor,
    data_uri_to_bytes,
    format_vi_date,
    image_to_data_uri,
)
from jubilee.services.errors import AssetLoadError, CardErrorKind, CardGenerationError


def _decode(data_uri: str) -> Image.Image:
    return Image.open(io.BytesIO(data_uri_to_bytes(data_uri)))


class TrickleStream(httpx.SyncByteStream):
    """Response body that sends one byte every `interval` seconds."""

    def __init__(self, interval: float, chunks: int = 100):
        self.interval = interval
        self.chunks = chunks

    def __iter__(self):
        for _ in range(self.chunks):
            time.sleep(self.interval)
            yield b"x"


def _client(stream) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, stream=stream)))


class BadgeCompositorTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.static_dir = self._tmpdir.name
        self.assets_dir = os.path.join(self.static_dir, "assets")
        os.makedirs(self.assets_dir)
        self.compositor = BadgeCompositor(
            AssetLoader(self.static_dir, self.assets_dir, timeout=1),
            event_name="Đại hội Năm Thánh 2025",
            event_title="ĐẠI HỘI NĂM THÁNH TOÀN QUỐC 2025",
            event_location="Kamiozuki, Hanado, Kanagawa",
        )

    def tearDown(self):
        self._tmpdir.cleanup()

    def _save_asset(self, name, size, color):
        Image.new("RGB", size, color).save(os.path.join(self.assets_dir, name))

    def test_badge_has_fixed_size_without_any_assets(self):
        img = _decode(self.compositor.render_badge(Registrant(id="1", full_name="Maria Lan")))
        self.assertEqual(img.size, BADGE_SIZE)

    def test_badge_uses_attendee_template(self):
        self._save_asset(ATTENDEE_BACKGROUND, (400, 600), (255, 0, 0))
        img = _decode(self.compositor.render_badge(
            Registrant(id="1", full_name="Maria Lan", event_team=EventTeamRef(name="Tokyo"))
        ))
        self.assertEqual(img.convert("RGB").getpixel((5, BADGE_SIZE[1] - 5)), (255, 0, 0))

    def test_organizer_without_template_falls_back_to_flat_background(self):
        self._save_asset(ATTENDEE_BACKGROUND, (400, 600), (255, 0, 0))
        img = _decode(self.compositor.render_badge(
            Registrant(id="1", full_name="Giuse An", event_role=EventRoleRef(name="Ban Lễ Tân"))
        ))
        self.assertNotEqual(img.convert("RGB").getpixel((5, BADGE_SIZE[1] - 5)), (255, 0, 0))

    def test_portrait_is_drawn_in_circle(self):
        portrait = os.path.join(self.static_dir, "p.png")
        Image.new("RGB", (300, 500), (0, 200, 0)).save(portrait)
        img = _decode(self.compositor.render_badge(
            Registrant(id="1", full_name="Maria Lan", portrait_url="/static/p.png")
        )).convert("RGB")
        self.assertEqual(img.getpixel((BADGE_SIZE[0] // 2, 350 * 2)), (0, 200, 0))

    def test_missing_portrait_falls_back_to_logo(self):
        self._save_asset(EVENT_LOGO, (200, 200), (0, 0, 255))
        img = _decode(self.compositor.render_badge(
            Registrant(id="1", full_name="Maria Lan", portrait_url="/static/missing.png")
        )).convert("RGB")
        self.assertEqual(img.getpixel((BADGE_SIZE[0] // 2, 350 * 2)), (0, 0, 255))

    def test_long_name_keeps_canvas_size(self):
        name = "Nguyễn Thị Hồng Nhung Phương Thảo Maria Goretti Anna " * 3
        img = _decode(self.compositor.render_badge(Registrant(id="1", full_name=name)))
        self.assertEqual(img.size, BADGE_SIZE)

    def test_empty_name_is_user_not_found(self):
        with self.assertRaises(CardGenerationError) as ctx:
            self.compositor.render_badge(Registrant(id="1", full_name="  "))
        self.assertEqual(ctx.exception.kind, CardErrorKind.USER_NOT_FOUND)
        self.assertEqual(ctx.exception.user_id, "1")

    def test_ticket_fixed_size_and_header_colours(self):
        attendee = _decode(self.compositor.render_ticket(
            Registrant(id="1", full_name="Maria Lan", second_day_only=True, selected_attendance_day="2025-09-15")
        )).convert("RGB")
        organizer = _decode(self.compositor.render_ticket(
            Registrant(id="2", full_name="Giuse An", event_role=EventRoleRef(name="MC"))
        )).convert("RGB")

        self.assertEqual(attendee.size, TICKET_SIZE)
        self.assertEqual(attendee.getpixel((2, 2)), (59, 130, 246))
        self.assertEqual(organizer.getpixel((2, 2)), (16, 185, 129))

    def test_crop_to_square_biases_towards_top(self):
        tall = Image.new("RGB", (100, 200))
        tall.paste((255, 0, 0), (0, 0, 100, 35))
        square = BadgeCompositor.crop_to_square(tall)
        self.assertEqual(square.size, (100, 100))
        # 35% of the 100px overflow is cut from the top
        self.assertEqual(square.getpixel((50, 0)), (0, 0, 0))
        self.assertEqual(square.getpixel((50, 99)), (0, 0, 0))

        wide = BadgeCompositor.crop_to_square(Image.new("RGB", (300, 100)))
        self.assertEqual(wide.size, (100, 100))


class AssetLoaderTests(unittest.TestCase):
    def test_data_uri_and_missing_file(self):
        loader = AssetLoader("static", "static/assets")
        img = loader.load(image_to_data_uri(Image.new("RGB", (3, 4))))
        self.assertEqual(img.size, (3, 4))
        with self.assertRaises(AssetLoadError):
            loader.load("/static/does-not-exist.png")
        with self.assertRaises(AssetLoadError):
            loader.load(None)

    def test_remote_fetch(self):
        buffer = io.BytesIO()
        Image.new("RGB", (5, 6)).save(buffer, format="PNG")
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, content=buffer.getvalue())))
        img = AssetLoader("static", "static/assets", client=client).load("https://portraits.test/p.png")
        self.assertEqual(img.size, (5, 6))

    def test_trickling_server_hits_total_deadline(self):
        loader = AssetLoader("static", "static/assets", timeout=0.5, client=_client(TrickleStream(0.1)))
        started = time.monotonic()
        with self.assertRaises(AssetLoadError) as ctx:
            loader.load("https://portraits.test/slow.jpg")
        self.assertLess(time.monotonic() - started, 2.0)
        self.assertIn("timed out", str(ctx.exception))

    def test_oversized_body_is_rejected(self):
        loader = AssetLoader("static", "static/assets", max_bytes=3, client=_client(TrickleStream(0, chunks=10)))
        with self.assertRaises(AssetLoadError):
            loader.load("https://portraits.test/big.jpg")

    def test_http_error_status(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        with self.assertRaises(AssetLoadError):
            AssetLoader("static", "static/assets", client=client).load("https://portraits.test/gone.jpg")


class SlowPortraitTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        assets_dir = os.path.join(self._tmpdir.name, "assets")
        os.makedirs(assets_dir)
        Image.new("RGB", (200, 200), (0, 0, 255)).save(os.path.join(assets_dir, EVENT_LOGO))
        loader = AssetLoader(self._tmpdir.name, assets_dir, timeout=1.0, client=_client(TrickleStream(0.5, chunks=40)))
        self.compositor = BadgeCompositor(loader, "Đại hội Năm Thánh 2025", "ĐẠI HỘI", "Kanagawa")

    def tearDown(self):
        self._tmpdir.cleanup()

    def test_badge_falls_back_to_logo_within_timeout(self):
        started = time.monotonic()
        img = _decode(self.compositor.render_badge(
            Registrant(id="1", full_name="Maria Lan", portrait_url="https://portraits.test/slow.jpg")
        )).convert("RGB")
        self.assertLess(time.monotonic() - started, 2.5)
        self.assertEqual(img.size, BADGE_SIZE)
        self.assertEqual(img.getpixel((BADGE_SIZE[0] // 2, 350 * 2)), (0, 0, 255))


class FormatDateTests(unittest.TestCase):
    def test_vietnamese_long_date(self):
        self.assertEqual(format_vi_date("2025-09-15"), "15 tháng 9, 2025")
        self.assertEqual(format_vi_date(None), "")
        self.assertEqual(format_vi_date("soon"), "soon")


if __name__ == "__main__":
    unittest.main()
