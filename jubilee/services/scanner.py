"""Check-in scan loop.

Decoded QR payloads arrive many times per second while a code sits in front
of the camera. The scanner throttles the callback, drops repeats of the same
payload inside the dedupe window, keeps at most one check-in request in flight
and exposes the result dialog state to the UI.
"""
import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional, Tuple

import httpx

from jubilee.schemas import CheckInResponse
from jubilee.services.qr_generator import parse_qr_payload

logger = logging.getLogger(__name__)

INVALID_QR_MESSAGE = "Mã QR không hợp lệ - không tìm thấy ID"
GENERIC_ERROR_MESSAGE = "Có lỗi xảy ra khi xử lý mã QR"

SubmitFn = Callable[[str], Awaitable[CheckInResponse]]


class ScannerState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CANDIDATE = "candidate"
    IN_FLIGHT = "in_flight"


@dataclass
class ScanResult:
    success: bool
    message: str
    registrant_name: Optional[str] = None


@dataclass
class ScannerStatus:
    state: str
    scan_count: int
    last_scan_time: Optional[datetime]
    dialog_open: bool
    last_result: Optional[ScanResult]
    processing: bool

    def to_dict(self) -> dict:
        data = asdict(self)
        data["last_scan_time"] = self.last_scan_time.isoformat() if self.last_scan_time else None
        return data


class CheckInScanner:
    def __init__(
        self,
        submit: SubmitFn,
        clock: Callable[[], float] = time.monotonic,
        dedupe_window: float = 3.0,
        callback_throttle: float = 1.0,
        wall_clock: Callable[[], datetime] = datetime.now,
    ):
        self.submit = submit
        self.clock = clock
        self.wall_clock = wall_clock
        self.dedupe_window = dedupe_window
        self.callback_throttle = callback_throttle

        self.state = ScannerState.IDLE
        self.scan_count = 0
        self.last_scan_time: Optional[datetime] = None
        self.dialog_open = False
        self.last_result: Optional[ScanResult] = None

        self._active = False
        self._last_payload: Optional[str] = None
        self._last_payload_at: Optional[float] = None
        self._last_callback_at: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def processing(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        self._active = True
        if self.state == ScannerState.IDLE:
            self.state = ScannerState.SCANNING
        logger.info("Scanner started")

    def stop(self) -> None:
        self._active = False
        self._last_callback_at = None
        if not self.processing:
            self.state = ScannerState.IDLE
        logger.info("Scanner stopped")

    def _resting_state(self) -> ScannerState:
        return ScannerState.SCANNING if self._active else ScannerState.IDLE

    def on_frame_decoded(self, text: str) -> bool:
        """Camera callback; at most one payload per throttle interval reaches process_qr_code."""
        if not self._active:
            return False

        now = self.clock()
        if self._last_callback_at is not None and now - self._last_callback_at < self.callback_throttle:
            return False
        self._last_callback_at = now
        return self.process_qr_code(text)

    def _is_duplicate(self, text: str, now: float) -> bool:
        return (
            self._last_payload == text
            and self._last_payload_at is not None
            and now - self._last_payload_at < self.dedupe_window
        )

    def process_qr_code(self, text: str) -> bool:
        """Returns True when a check-in request was started for this payload."""
        now = self.clock()
        if self._is_duplicate(text, now):
            logger.debug("Ignoring repeated scan inside the dedupe window")
            return False

        registrant_id = parse_qr_payload(text)
        if registrant_id is None:
            self._show_result(ScanResult(success=False, message=INVALID_QR_MESSAGE))
            return False

        if self.processing:
            return False

        self.state = ScannerState.CANDIDATE
        self._last_payload = text
        self._last_payload_at = now

        self.state = ScannerState.IN_FLIGHT
        self._task = asyncio.get_running_loop().create_task(self._submit(registrant_id))
        logger.info(f"Submitting check-in for registrant {registrant_id}")
        return True

    async def _submit(self, registrant_id: str) -> None:
        try:
            response = await self.submit(registrant_id)
        except asyncio.CancelledError:
            logger.debug(f"Check-in request for {registrant_id} cancelled")
            raise
        except Exception as e:
            logger.error(f"Check-in request for {registrant_id} failed: {e}")
            self._show_result(ScanResult(success=False, message=str(e) or GENERIC_ERROR_MESSAGE))
        else:
            name = response.registrant.full_name if response.registrant else None
            self._show_result(ScanResult(success=response.success, message=response.message, registrant_name=name))
            if response.success:
                self.scan_count += 1
                self.last_scan_time = self.wall_clock()
        finally:
            if self._task is asyncio.current_task():
                self._task = None
                self.state = self._resting_state()

    def _show_result(self, result: ScanResult) -> None:
        self.last_result = result
        self.dialog_open = True

    def close_dialog(self) -> None:
        """Dismiss the result dialog, abort any pending request and forget the last payload."""
        self.dialog_open = False
        self.last_result = None

        if self._task is not None:
            self._task.cancel()
            self._task = None

        self._last_payload = None
        self._last_payload_at = None
        self.state = self._resting_state()

    async def wait_idle(self) -> None:
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def snapshot(self) -> ScannerStatus:
        return ScannerStatus(
            state=self.state.value,
            scan_count=self.scan_count,
            last_scan_time=self.last_scan_time,
            dialog_open=self.dialog_open,
            last_result=self.last_result,
            processing=self.processing,
        )


class HttpCheckInClient:
    """Posts scanned registrant ids to the check-in endpoint."""

    def __init__(self, base_url: str, auth: Optional[Tuple[str, str]] = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.auth = auth
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, auth=self.auth)
        return self._client

    async def __call__(self, registrant_id: str) -> CheckInResponse:
        response = await self._get_client().post("/api/check-in", json={"registrantId": registrant_id})
        try:
            data = response.json()
        except ValueError:
            response.raise_for_status()
            raise
        if "success" not in data:
            data = {"success": False, "message": data.get("error") or data.get("detail") or GENERIC_ERROR_MESSAGE}
        return CheckInResponse.model_validate(data)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
