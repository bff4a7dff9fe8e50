from __future__ import annotations
from io import BytesIO
import base64
import qrcode
from qrcode.constants import ERROR_CORRECT_H


def render_png(data: str, *, box_size: int = 10, border: int = 2) -> bytes:
    # level H so printed codes survive wear at the mess entrance
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_H, box_size=box_size, border=border)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    b = BytesIO(); img.save(b, format="PNG")
    return b.getvalue()


def render_data_url(data: str, *, box_size: int = 10, border: int = 2) -> str:
    """Embeddable ``data:image/png;base64,...`` rendering of ``data``."""
    png = render_png(data, box_size=box_size, border=border)
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")
