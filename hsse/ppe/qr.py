"""
HSSE PPE - QR label generation
"""
import io

import qrcode

QR_PREFIX = "HSSE:PPE:"


def qr_payload(item: dict) -> str:
    return f"{QR_PREFIX}{item['item_code']}"


def generate_qr_png(data: str, size: int = 300) -> bytes:
    """Render data as a square PNG QR code."""
    qr = qrcode.QRCode(version=1, error_correction=qrcode.constants.ERROR_CORRECT_M, box_size=10, border=2)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white").resize((size, size))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
