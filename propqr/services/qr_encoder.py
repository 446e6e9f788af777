import io
import logging

import qrcode
from qrcode.constants import ERROR_CORRECT_M

logger = logging.getLogger(__name__)


class QrEncoder:
    """페이로드 문자열을 QR PNG 바이트로 렌더링"""

    def __init__(self, box_size: int = 10, border: int = 4):
        self.box_size = box_size
        self.border = border

    def encode(self, payload: str) -> bytes:
        qr = qrcode.QRCode(
            version=None,
            error_correction=ERROR_CORRECT_M,
            box_size=self.box_size,
            border=self.border,
        )
        qr.add_data(payload)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        data = buf.getvalue()
        logger.debug(f"[QR] Encoded payload ({len(payload)} chars) -> {len(data)} bytes, version={qr.version}")
        return data
