import threading
import unittest
from unittest.mock import patch

import numpy as np

from jubilee.schemas import CheckInResponse
from jubilee.services.qr_generator import generate_qr_code_image
from jubilee.services.scanner import CheckInScanner

try:
    from jubilee.services import video
except ImportError:  # zbar shared library not installed
    video = None


class FakeCapture:
    def __init__(self, frames):
        self._frames = list(frames)

    def isOpened(self):
        return True

    def read(self):
        if not self._frames:
            return False, None
        return True, self._frames.pop(0)

    def release(self):
        pass


def _qr_frame(payload: str) -> np.ndarray:
    rgb = np.array(generate_qr_code_image(payload, box_size=8, border=4))
    return rgb[:, :, ::-1].copy()


@unittest.skipIf(video is None, "pyzbar / zbar not available")
class VideoLoopTests(unittest.IsolatedAsyncioTestCase):
    def tearDown(self):
        video._cap = None

    def test_decode_qr_texts(self):
        detections = video.decode_qr_texts(_qr_frame('{"id": "r-1"}'))
        self.assertEqual([text for text, _ in detections], ['{"id": "r-1"}'])
        self.assertEqual(len(detections[0][1]), 4)

    def test_blank_frame_has_no_codes(self):
        self.assertEqual(video.decode_qr_texts(np.full((200, 200, 3), 255, dtype=np.uint8)), [])

    async def test_stream_feeds_scanner(self):
        calls = []

        async def submit(registrant_id):
            calls.append(registrant_id)
            return CheckInResponse(success=True, message="ok")

        scanner = CheckInScanner(submit)
        scanner.start()
        video._cap = FakeCapture([_qr_frame('{"id": "r-7"}'), _qr_frame('{"id": "r-7"}')])

        parts = [part async for part in video.generate_frame(scanner)]
        await scanner.wait_idle()

        self.assertEqual(len(parts), 2)
        self.assertTrue(parts[0].startswith(b"--frame\r\nContent-Type: image/jpeg"))
        self.assertEqual(calls, ["r-7"])
        self.assertEqual(scanner.scan_count, 1)

    async def test_decode_and_encode_run_off_the_event_loop(self):
        loop_thread = threading.get_ident()
        threads = {}
        real_decode, real_part = video.decode_qr_texts, video._mjpeg_part

        def decode(frame):
            threads["decode"] = threading.get_ident()
            return real_decode(frame)

        def part(image):
            threads["encode"] = threading.get_ident()
            return real_part(image)

        async def submit(registrant_id):
            return CheckInResponse(success=True, message="ok")

        video._cap = FakeCapture([_qr_frame('{"id": "r-8"}')])
        with patch.object(video, "decode_qr_texts", side_effect=decode), \
                patch.object(video, "_mjpeg_part", side_effect=part):
            parts = [p async for p in video.generate_frame(CheckInScanner(submit))]

        self.assertEqual(len(parts), 1)
        self.assertNotEqual(threads["decode"], loop_thread)
        self.assertNotEqual(threads["encode"], loop_thread)


if __name__ == "__main__":
    unittest.main()
