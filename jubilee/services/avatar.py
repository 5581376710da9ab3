"""Portrait upload validation and processing."""
import io
import logging
import os
from dataclasses import dataclass
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp")
MAX_FILE_SIZE = 5 * 1024 * 1024
MIN_DIMENSION = 100

AVATAR_MAX_SIDE = 512
AVATAR_QUALITY = 85


class AvatarValidationError(ValueError):
    pass


@dataclass
class CropBox:
    x: int
    y: int
    width: int
    height: int


@dataclass
class ProcessedAvatar:
    content: bytes
    original_size: int
    compressed_size: int

    @property
    def compression_ratio(self) -> float:
        if not self.original_size:
            return 0.0
        return round(self.compressed_size / self.original_size, 3)


def validate_avatar(content: bytes, content_type: Optional[str]) -> Image.Image:
    """Check type, size and dimensions; returns the decoded image."""
    if (content_type or "").lower() not in ALLOWED_CONTENT_TYPES:
        raise AvatarValidationError("Invalid file type. Please upload JPG, PNG, or WebP images only.")
    if len(content) > MAX_FILE_SIZE:
        raise AvatarValidationError("File too large. Please upload images smaller than 5MB.")

    try:
        image = Image.open(io.BytesIO(content))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise AvatarValidationError("Invalid image file") from e

    if image.width < MIN_DIMENSION or image.height < MIN_DIMENSION:
        raise AvatarValidationError(f"Image too small. Minimum size is {MIN_DIMENSION}x{MIN_DIMENSION} pixels.")
    return image


def process_avatar(image: Image.Image, original_size: int, crop: Optional[CropBox] = None) -> ProcessedAvatar:
    image = ImageOps.exif_transpose(image)
    if crop is not None:
        image = image.crop((crop.x, crop.y, crop.x + crop.width, crop.y + crop.height))
    image = image.convert("RGB")
    image.thumbnail((AVATAR_MAX_SIDE, AVATAR_MAX_SIDE))

    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=AVATAR_QUALITY, optimize=True)
    data = buffer.getvalue()
    return ProcessedAvatar(content=data, original_size=original_size, compressed_size=len(data))


def avatar_path(avatar_dir: str, registrant_id: str) -> str:
    return os.path.join(avatar_dir, f"{registrant_id}.jpg")


def save_avatar(avatar_dir: str, registrant_id: str, content: bytes) -> str:
    os.makedirs(avatar_dir, exist_ok=True)
    path = avatar_path(avatar_dir, registrant_id)
    with open(path, "wb") as f:
        f.write(content)
    logger.info(f"Saved avatar for {registrant_id} ({len(content)} bytes)")
    return path


def delete_avatar_file(avatar_dir: str, registrant_id: str) -> bool:
    path = avatar_path(avatar_dir, registrant_id)
    if not os.path.exists(path):
        return False
    os.remove(path)
    return True
