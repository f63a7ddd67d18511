import base64
from io import BytesIO

import pytest
from PIL import Image

from cicadatix import qr, ticketcode
from cicadatix.errors import EncodingError


def test_encode_returns_png_data_url():
    url = qr.encode("CICADA-LX3K2-ABC1234")
    assert url.startswith("data:image/png;base64,")
    raw = base64.b64decode(url.split(",", 1)[1])
    img = Image.open(BytesIO(raw))
    assert img.format == "PNG"
    assert img.size == (qr.WIDTH_PX, qr.WIDTH_PX)


def test_render_is_black_on_white():
    img = qr.render("CICADA-LX3K2-ABC1234")
    colors = {c for _, c in img.getcolors(maxcolors=16)}
    assert colors == {(0, 0, 0), (255, 255, 255)}


def test_decode_data_url_rejects_other_payloads():
    with pytest.raises(EncodingError):
        qr.decode_data_url("data:image/jpeg;base64,AAAA")


def test_encoded_ticket_number_scans_back():
    zxingcpp = pytest.importorskip("zxingcpp")
    number = ticketcode.generate()
    img = Image.open(BytesIO(qr.decode_data_url(qr.encode(number))))
    results = zxingcpp.read_barcodes(img)
    assert [r.text for r in results] == [number]
