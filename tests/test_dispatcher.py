from datetime import date

import pytest

from cicadatix import qr, ticketcode
from cicadatix.infra.timings import counter
from cicadatix.model.events import EventDetails
from cicadatix.notify import NotificationDispatcher, TicketQR
from cicadatix.notify.dispatcher import ticket_subject
from cicadatix.notify.pdf import render_ticket_pdf

EVENT = EventDetails(title="Cicada Night", date=date(2030, 5, 1).isoformat(),
                     time="20:00", location="Munich")


def tickets(n):
    out = []
    for _ in range(n):
        number = ticketcode.generate()
        out.append(TicketQR(number, qr.encode(number)))
    return out


def test_subject_pluralizes():
    assert ticket_subject(1, EVENT) == "Your Ticket for Cicada Night"
    assert ticket_subject(3, EVENT) == "Your 3 Tickets for Cicada Night"
    assert ticket_subject(2, None) == "Your 2 Tickets for Cicada Event"


def test_render_ticket_pdf():
    number = ticketcode.generate()
    pdf = render_ticket_pdf(number, qr.decode_data_url(qr.encode(number)),
                            EVENT)
    assert pdf.startswith(b"%PDF")
    assert render_ticket_pdf(number, qr.decode_data_url(qr.encode(number)),
                             None).startswith(b"%PDF")


@pytest.mark.asyncio
async def test_one_email_for_the_whole_batch(outbox):
    dispatcher = NotificationDispatcher(outbox, "Cicada <noreply@example.com>")
    batch = tickets(3)
    result = await dispatcher.send_tickets("fan@example.com", "Fan", batch,
                                           EVENT)

    assert result.ok and result.ticket_count == 3
    assert len(outbox.sent) == 1
    message = outbox.sent[0]
    assert message.sender == "Cicada <noreply@example.com>"

    inline = [a for a in message.attachments if a.content_id]
    pdfs = [a for a in message.attachments
            if a.content_type == "application/pdf"]
    assert [a.content_id for a in inline] == ["qrcode0", "qrcode1",
                                              "qrcode2"]
    assert all(a.content.startswith(b"\x89PNG") for a in inline)
    assert [a.filename for a in pdfs] == [
        f"ticket-{t.ticket_number}.pdf" for t in batch
    ]
    for i, t in enumerate(batch):
        assert f"cid:qrcode{i}" in message.html
        assert t.ticket_number in message.html
    assert "Munich" in message.html
    assert "Hi Fan" in message.html


@pytest.mark.asyncio
async def test_single_ticket_copy(outbox):
    dispatcher = NotificationDispatcher(outbox, "x@example.com",
                                        attach_pdf=False)
    await dispatcher.send_tickets("fan@example.com", None, tickets(1), None)
    message = outbox.sent[0]
    assert "Your Ticket is Ready" in message.html
    assert "Hi there" in message.html
    assert 'id="event-details"' not in message.html
    assert len(message.attachments) == 1


@pytest.mark.asyncio
async def test_pdf_failure_skips_only_that_ticket(outbox):
    batch = tickets(3)
    bad = batch[1].ticket_number

    def flaky_pdf(number, png, event):
        if number == bad:
            raise RuntimeError("font missing")
        return render_ticket_pdf(number, png, event)

    dispatcher = NotificationDispatcher(outbox, "x@example.com",
                                        pdf_renderer=flaky_pdf)
    result = await dispatcher.send_tickets("fan@example.com", "Fan", batch,
                                           EVENT)

    assert result.ok
    assert result.skipped_pdfs == [bad]
    pdf_names = [a.filename for a in outbox.sent[0].attachments
                 if a.content_type == "application/pdf"]
    assert pdf_names == [f"ticket-{t.ticket_number}.pdf"
                         for t in batch if t.ticket_number != bad]
    assert counter("mail.pdf_failed") == 1


@pytest.mark.asyncio
async def test_unbuildable_message_is_reported_not_raised(outbox):
    dispatcher = NotificationDispatcher(outbox, "x@example.com")
    result = await dispatcher.send_tickets(
        "fan@example.com", "Fan", [TicketQR("CICADA-A-B", "not-a-data-url")]
    )
    assert result.ok is False
    assert outbox.sent == []


@pytest.mark.asyncio
async def test_purchase_fallback(outbox):
    dispatcher = NotificationDispatcher(outbox, "x@example.com")
    result = await dispatcher.send_purchase_fallback(
        "fan@example.com", "Fan", "order-42"
    )
    assert result.ok
    message = outbox.sent[0]
    assert message.subject == "Order Confirmation - Cicada Collective"
    assert "order-42" in message.html
    assert "order-42" in message.text
    assert message.attachments == []
