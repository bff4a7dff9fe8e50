from __future__ import annotations
import cv2
from pyzbar.pyzbar import ZBarSymbol, decode


def decode_frame(frame) -> str | None:
    """Return the text of the first QR code in ``frame``, or None.

    Tries the frame as captured, then inverted, for codes shown on screens or
    under poor lighting.
    """
    gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY) if frame.ndim == 3 else frame
    for img in (gray, cv2.bitwise_not(gray)):
        for symbol in decode(img, symbols=[ZBarSymbol.QRCODE]):
            try:
                return symbol.data.decode("utf-8")
            except UnicodeDecodeError:
                continue
    return None
