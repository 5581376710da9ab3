"""QR Code generation and payload parsing."""
import base64
import io
import json
from typing import Optional

import qrcode

from jubilee.schemas import Registrant


def build_qr_payload(registrant: Registrant, event_name: str) -> str:
    """Build QR payload as a JSON object: {"id", "name", "event"}.

    The scanner only needs the id; name and event make the code readable by
    generic phone scanners.
    """
    return json.dumps(
        {"id": registrant.id, "name": registrant.full_name, "event": event_name},
        ensure_ascii=False,
    )


def parse_qr_payload(qr_text: Optional[str]) -> Optional[str]:
    """Return the registrant id carried by a decoded QR text.

    Accepts the JSON payload built above (``id`` or ``registrantId``) or a
    bare identifier string.
    """
    if qr_text is None:
        return None
    text = qr_text.strip()
    if not text:
        return None
    try:
        data = json.loads(text)
    except ValueError:
        return text
    if isinstance(data, dict):
        registrant_id = data.get("id") or data.get("registrantId")
        if registrant_id is None or str(registrant_id).strip() == "":
            return None
        return str(registrant_id)
    # JSON scalars ("abc", 123) are treated as bare identifiers
    if isinstance(data, (str, int)) and not isinstance(data, bool):
        return str(data)
    return None


def generate_qr_code_image(payload: str, box_size: int = 10, border: int = 2):
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(payload)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    if hasattr(img, "get_image"):
        img = img.get_image()
    return img.convert("RGB")


def generate_qr_code_blob(payload: str) -> bytes:
    img = generate_qr_code_image(payload)
    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    buffer.seek(0)
    return buffer.getvalue()


def generate_qr_code_data_uri(payload: str) -> str:
    blob = generate_qr_code_blob(payload)
    return "data:image/png;base64," + base64.b64encode(blob).decode("ascii")


def generate_qr_code_file(payload: str, filepath: str) -> None:
    img = generate_qr_code_image(payload)
    img.save(filepath)
