import base64
from io import BytesIO

import qrcode
from qrcode.constants import ERROR_CORRECT_H
from qrcode.image.pil import PilImage
from PIL import Image

from .errors import EncodingError

WIDTH_PX = 400
BORDER_MODULES = 1
DATA_URL_PREFIX = "data:image/png;base64,"


def render(payload: str) -> Image.Image:
    """QR for ``payload``: level H, square modules, black on white, 400px."""
    try:
        qr = qrcode.QRCode(
            version=None,
            error_correction=ERROR_CORRECT_H,
            box_size=1,
            border=BORDER_MODULES,
        )
        qr.add_data(payload)
        qr.make(fit=True)
        side = qr.modules_count + 2 * BORDER_MODULES
        qr.box_size = max(1, WIDTH_PX // side)
        img = qr.make_image(
            image_factory=PilImage, fill_color="black", back_color="white"
        ).get_image().convert("RGB")
    except Exception as e:
        raise EncodingError(f"cannot encode QR payload: {e}") from e
    if img.size != (WIDTH_PX, WIDTH_PX):
        img = img.resize((WIDTH_PX, WIDTH_PX), Image.NEAREST)
    return img


def encode(payload: str) -> str:
    img = render(payload)
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return DATA_URL_PREFIX + base64.b64encode(buffer.getvalue()).decode()


def decode_data_url(data_url: str) -> bytes:
    if not data_url.startswith(DATA_URL_PREFIX):
        raise EncodingError("not a PNG data URL")
    return base64.b64decode(data_url[len(DATA_URL_PREFIX):])
