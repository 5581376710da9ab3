from enum import Enum
from typing import Optional


class CardErrorKind(str, Enum):
    USER_NOT_FOUND = "USER_NOT_FOUND"
    CANVAS_ERROR = "CANVAS_ERROR"
    PDF_GENERATION_FAILED = "PDF_GENERATION_FAILED"


class CardGenerationError(Exception):
    def __init__(self, kind: CardErrorKind, message: str, user_id: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.user_id = user_id


class ExportError(Exception):
    """Raised when an export produced nothing to download."""


class AssetLoadError(Exception):
    """An image asset could not be fetched or decoded in time."""
