import asyncio
import logging
from typing import List, Optional, Tuple

import cv2
import numpy as np
from pyzbar.pyzbar import decode

from jubilee.services.scanner import CheckInScanner

logger = logging.getLogger(__name__)

FRAME_INTERVAL = 0.03

_cap = None


def initialize_camera(index: int = 0):
    global _cap
    if _cap is None:
        _cap = cv2.VideoCapture(index)
    if not _cap.isOpened():
        logger.error("Could not open video device %s", index)
        _cap = None
        return None
    return _cap


def release_camera() -> None:
    global _cap
    if _cap is not None:
        _cap.release()
        _cap = None


def decode_qr_texts(frame) -> List[Tuple[str, list]]:
    """Decode every QR code in the frame; returns (text, polygon points) pairs."""
    results = []
    for obj in decode(frame):
        try:
            text = obj.data.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("Skipping QR code with non UTF-8 payload")
            continue
        points = [(int(pt.x), int(pt.y)) for pt in obj.polygon] if obj.polygon else []
        results.append((text, points))
    return results


def annotate_frame(frame, detections: List[Tuple[str, list]], status_line: Optional[str] = None):
    for _, points in detections:
        if points:
            pts = np.array(points, np.int32)
            cv2.polylines(frame, [pts], True, (0, 255, 0), 2)

    if status_line:
        cv2.putText(frame, status_line, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.8, (0, 255, 0), 2)
    return frame


def _scanner_status_line(scanner: CheckInScanner) -> str:
    status = scanner.snapshot()
    if status.processing:
        return "Processing check-in..."
    if status.dialog_open and status.last_result is not None:
        return "Check-in OK" if status.last_result.success else "Check-in failed"
    return f"Scanned: {status.scan_count}"


def _mjpeg_part(image) -> bytes:
    ret, buffer = cv2.imencode(".jpg", image)
    return b"--frame\r\nContent-Type: image/jpeg\r\n\r\n" + buffer.tobytes() + b"\r\n"


def unavailable_frame() -> bytes:
    error_frame = np.zeros((480, 480, 3), dtype=np.uint8)
    cv2.putText(error_frame, "Camera not available", (50, 240), cv2.FONT_HERSHEY_SIMPLEX, 1, (0, 0, 255), 2)
    return _mjpeg_part(error_frame)


def _render_part(img, detections: List[Tuple[str, list]], status_line: str) -> bytes:
    return _mjpeg_part(annotate_frame(img, detections, status_line))


async def generate_frame(scanner: CheckInScanner, camera_index: int = 0):
    """MJPEG stream; every decoded QR payload is handed to the scanner.

    Camera reads, decoding and JPEG encoding run in worker threads; only the
    scanner callbacks run on the event loop.
    """
    cap = initialize_camera(camera_index)

    if cap is None:
        frame = unavailable_frame()
        while True:
            yield frame
            await asyncio.sleep(1)

    while True:
        success, img = await asyncio.to_thread(cap.read)
        if not success:
            logger.warning("Camera returned no frame, stopping stream")
            break

        detections = await asyncio.to_thread(decode_qr_texts, img)
        for text, _ in detections:
            scanner.on_frame_decoded(text)

        yield await asyncio.to_thread(_render_part, img, detections, _scanner_status_line(scanner))
        await asyncio.sleep(FRAME_INTERVAL)
