from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import (
    Column,
    Date,
    ForeignKey,
    Integer,
    String,
    Float,
    Boolean,
)


Base = declarative_base()

# session_id of tickets issued by staff without a payment
ADMIN_SESSION_ID = "admin-created"


# ----------------------------
# ORM models
# ----------------------------
class Event(Base):
    __tablename__ = "events"
    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    date = Column(Date, nullable=False, index=True)
    time = Column(String, nullable=True)
    location = Column(String, nullable=True)
    image = Column(String, nullable=True)

    # processor price plan; unused by MockPay
    price_id = Column(String, nullable=True)
    price = Column(Integer, nullable=True)  # cents
    currency = Column(String, nullable=False, default="eur")
    created_at = Column(Float, nullable=False)


class Ticket(Base):
    __tablename__ = "tickets"
    id = Column(String, primary_key=True)
    ticket_number = Column(String, nullable=False, unique=True)
    event_id = Column(String, ForeignKey("events.id"), nullable=True)
    customer_email = Column(String, nullable=False, index=True)
    customer_name = Column(String, nullable=True)

    # payment session that produced the ticket, or ADMIN_SESSION_ID
    session_id = Column(String, nullable=False, index=True)
    payment_intent = Column(String, nullable=True)
    qr_code_data = Column(String, nullable=False)

    used = Column(Boolean, nullable=False, default=False)
    used_date = Column(Float, nullable=True)
    purchase_date = Column(Float, nullable=False)

    event = relationship(Event, lazy="raise")


class IssuanceClaim(Base):
    # one row per payment session whose ticket batch was committed
    __tablename__ = "issuance_claims"
    session_id = Column(String, primary_key=True)
    ticket_count = Column(Integer, nullable=False)
    created_at = Column(Float, nullable=False)


class MockPaySession(Base):
    __tablename__ = "mockpay_sessions"
    id = Column(String, primary_key=True)
    event_id = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False)
    amount = Column(Integer, nullable=False)  # cents
    currency = Column(String, nullable=False)
    customer_email = Column(String, nullable=True)
    customer_name = Column(String, nullable=True)

    # open | complete | expired
    status = Column(String, nullable=False, default="open")
    # unpaid | paid
    payment_status = Column(String, nullable=False, default="unpaid")
    payment_intent = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
