import threading


class GenerationCancelled(Exception):
    """Raised when a cancel token is observed at an iteration boundary."""


class CancelToken:
    """Cooperative cancellation flag passed through the generation call chain.

    Checked at the top of each loop iteration; never interrupts a card that is
    already being rendered.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled("Quá trình tạo thẻ đã được hủy bởi người dùng")
