import asyncio
import json
import unittest
from datetime import datetime

import httpx

from jubilee.schemas import CheckInRegistrant, CheckInResponse
from jubilee.services.scanner import (
    INVALID_QR_MESSAGE,
    CheckInScanner,
    HttpCheckInClient,
    ScannerState,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class RecordingSubmitter:
    """Check-in endpoint stand-in; each call blocks until ``release`` is set."""

    def __init__(self, response=None, error=None, block=False):
        self.calls = []
        self.response = response
        self.error = error
        self.release = asyncio.Event()
        if not block:
            self.release.set()

    async def __call__(self, registrant_id):
        self.calls.append(registrant_id)
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return self.response or CheckInResponse(
            success=True,
            registrant=CheckInRegistrant(id=registrant_id, full_name="Maria Lan", is_checked_in=True),
            message="Check-in thành công cho Maria Lan!",
        )


def _payload(registrant_id):
    return json.dumps({"id": registrant_id, "name": "Maria Lan", "event": "Đại hội Năm Thánh 2025"})


class ScannerDedupeTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.submit = RecordingSubmitter()
        self.scanner = CheckInScanner(
            self.submit,
            clock=self.clock,
            wall_clock=lambda: datetime(2025, 9, 15, 9, 0),
        )
        self.scanner.start()

    async def test_same_payload_inside_window_is_dropped(self):
        payload = _payload("r-1")

        self.assertTrue(self.scanner.process_qr_code(payload))
        await self.scanner.wait_idle()

        self.clock.now = 1.0
        self.assertFalse(self.scanner.process_qr_code(payload))

        self.clock.now = 4.0
        self.assertTrue(self.scanner.process_qr_code(payload))
        await self.scanner.wait_idle()

        self.assertEqual(self.submit.calls, ["r-1", "r-1"])
        self.assertEqual(self.scanner.scan_count, 2)

    async def test_different_payload_inside_window_is_accepted(self):
        self.assertTrue(self.scanner.process_qr_code(_payload("r-1")))
        await self.scanner.wait_idle()
        self.clock.now = 0.5
        self.assertTrue(self.scanner.process_qr_code(_payload("r-2")))
        await self.scanner.wait_idle()
        self.assertEqual(self.submit.calls, ["r-1", "r-2"])

    async def test_success_updates_counters_and_dialog(self):
        self.scanner.process_qr_code(_payload("r-1"))
        await self.scanner.wait_idle()

        status = self.scanner.snapshot()
        self.assertEqual(status.scan_count, 1)
        self.assertEqual(status.last_scan_time, datetime(2025, 9, 15, 9, 0))
        self.assertTrue(status.dialog_open)
        self.assertTrue(status.last_result.success)
        self.assertEqual(status.last_result.registrant_name, "Maria Lan")
        self.assertEqual(status.state, ScannerState.SCANNING.value)
        self.assertFalse(status.processing)

    async def test_failure_response_opens_dialog_without_counting(self):
        self.submit.response = CheckInResponse(success=False, message="Maria Lan đã check-in trước đó lúc 09:00:00 15/09/2025")
        self.scanner.process_qr_code(_payload("r-1"))
        await self.scanner.wait_idle()

        self.assertEqual(self.scanner.scan_count, 0)
        self.assertTrue(self.scanner.dialog_open)
        self.assertIn("đã check-in trước đó", self.scanner.last_result.message)

    async def test_transport_error_is_shown(self):
        self.submit.error = httpx.ConnectError("connection refused")
        self.scanner.process_qr_code(_payload("r-1"))
        await self.scanner.wait_idle()

        self.assertFalse(self.scanner.last_result.success)
        self.assertEqual(self.scanner.last_result.message, "connection refused")
        self.assertFalse(self.scanner.processing)

    async def test_invalid_payload_opens_dialog(self):
        self.assertFalse(self.scanner.process_qr_code('{"name": "no id"}'))
        self.assertEqual(self.submit.calls, [])
        self.assertTrue(self.scanner.dialog_open)
        self.assertEqual(self.scanner.last_result.message, INVALID_QR_MESSAGE)


class ScannerInFlightTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.submit = RecordingSubmitter(block=True)
        self.scanner = CheckInScanner(self.submit, clock=self.clock)
        self.scanner.start()

    async def test_only_one_request_in_flight(self):
        self.assertTrue(self.scanner.process_qr_code(_payload("r-1")))
        await asyncio.sleep(0)
        self.assertEqual(self.scanner.state, ScannerState.IN_FLIGHT)

        self.clock.now = 5.0
        self.assertFalse(self.scanner.process_qr_code(_payload("r-2")))

        self.submit.release.set()
        await self.scanner.wait_idle()
        self.assertEqual(self.submit.calls, ["r-1"])

        self.assertTrue(self.scanner.process_qr_code(_payload("r-2")))
        await self.scanner.wait_idle()
        self.assertEqual(self.submit.calls, ["r-1", "r-2"])

    async def test_close_dialog_cancels_pending_request(self):
        self.scanner.process_qr_code(_payload("r-1"))
        await asyncio.sleep(0)
        self.assertTrue(self.scanner.processing)

        self.scanner.close_dialog()
        await asyncio.sleep(0)

        self.assertFalse(self.scanner.processing)
        self.assertEqual(self.scanner.state, ScannerState.SCANNING)
        self.assertEqual(self.scanner.scan_count, 0)
        self.assertIsNone(self.scanner.last_result)

        # dedupe memory is cleared, the same code can be scanned straight away
        self.submit.release.set()
        self.assertTrue(self.scanner.process_qr_code(_payload("r-1")))
        await self.scanner.wait_idle()
        self.assertEqual(self.scanner.scan_count, 1)


class ScannerThrottleTests(unittest.IsolatedAsyncioTestCase):
    async def test_frame_callback_throttle(self):
        clock = FakeClock()
        submit = RecordingSubmitter()
        scanner = CheckInScanner(submit, clock=clock)

        self.assertFalse(scanner.on_frame_decoded(_payload("r-1")))

        scanner.start()
        self.assertTrue(scanner.on_frame_decoded(_payload("r-1")))
        await scanner.wait_idle()

        clock.now = 0.5
        self.assertFalse(scanner.on_frame_decoded(_payload("r-2")))

        clock.now = 1.2
        self.assertTrue(scanner.on_frame_decoded(_payload("r-2")))
        await scanner.wait_idle()
        self.assertEqual(submit.calls, ["r-1", "r-2"])

    def test_stop_returns_to_idle(self):
        scanner = CheckInScanner(RecordingSubmitter())
        scanner.start()
        self.assertEqual(scanner.state, ScannerState.SCANNING)
        scanner.stop()
        self.assertEqual(scanner.state, ScannerState.IDLE)


class HttpCheckInClientTests(unittest.IsolatedAsyncioTestCase):
    async def test_posts_registrant_id_and_parses_response(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(404, json={"success": False, "message": "Không tìm thấy"})

        client = HttpCheckInClient("http://checkin.test")
        client._client = httpx.AsyncClient(base_url=client.base_url, transport=httpx.MockTransport(handler))
        try:
            response = await client("r-9")
        finally:
            await client.aclose()

        self.assertEqual(seen, {"path": "/api/check-in", "body": {"registrantId": "r-9"}})
        self.assertFalse(response.success)
        self.assertEqual(response.message, "Không tìm thấy")


if __name__ == "__main__":
    unittest.main()
