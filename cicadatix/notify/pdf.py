from io import BytesIO
from typing import Optional

from PIL import Image, ImageDraw, ImageFont

from ..model.events import EventDetails

PAGE_SIZE = (620, 877)  # A6 at 150 dpi
QR_SIZE = 360

POLICY_LINES = (
    "Valid for one person only. Please arrive 15-30 minutes early.",
    "This ticket can be scanned once; copies will be refused.",
)


def render_ticket_pdf(ticket_number: str, qr_png: bytes,
                      event: Optional[EventDetails]) -> bytes:
    page = Image.new("RGB", PAGE_SIZE, "white")
    draw = ImageDraw.Draw(page)
    title_font = ImageFont.load_default(size=40)
    body_font = ImageFont.load_default(size=20)
    small_font = ImageFont.load_default(size=14)

    width = PAGE_SIZE[0]
    y = 36
    draw.text((width // 2, y), "CICADA", fill="black", font=title_font,
              anchor="mt")
    y += 64
    draw.text((width // 2, y), ticket_number, fill="black", font=body_font,
              anchor="mt")
    y += 44

    if event is not None:
        for label, value in (
            ("Event", event.title),
            ("Date", event.date),
            ("Time", event.time),
            ("Location", event.location),
        ):
            if value:
                draw.text((48, y), f"{label}: {value}", fill="black",
                          font=body_font)
                y += 30
        y += 10

    qr = Image.open(BytesIO(qr_png)).convert("RGB")
    qr = qr.resize((QR_SIZE, QR_SIZE), Image.NEAREST)
    page.paste(qr, ((width - QR_SIZE) // 2, y))

    y = PAGE_SIZE[1] - 24 - 22 * len(POLICY_LINES)
    draw.line((48, y - 12, width - 48, y - 12), fill="black", width=1)
    for line in POLICY_LINES:
        draw.text((width // 2, y), line, fill="black", font=small_font,
                  anchor="mt")
        y += 22

    out = BytesIO()
    page.save(out, format="PDF", resolution=150.0)
    return out.getvalue()
