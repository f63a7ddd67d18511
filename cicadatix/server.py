from __future__ import annotations
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, Form, HTTPException, Request
from fastapi.responses import ORJSONResponse, RedirectResponse
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.sessions import SessionMiddleware
from starlette.status import HTTP_303_SEE_OTHER

from .config import Settings
from .errors import AlreadyUsedError, InvalidPayload, NotFoundError, TicketingError
from .helpers import ct_equal, is_valid_email, positive_int
from .infra.sql import create_schema, make_async_engine
from .infra.timings import incr, snapshot, timeit
from .logs import configure_logging
from .manual import issue_admin_ticket
from .model.events import EventStore, event_to_dict
from .model.orm import ADMIN_SESSION_ID
from .model.tickets import TicketStore, ticket_to_dict
from .notify import NotificationDispatcher, MailTransport, new_transport
from .payments import MockPay, PaymentAdapter, new_adapter
from .reconciler import Reconciler
from .verification import VerificationConsole

MAX_TICKETS_PER_ORDER = 10


# ----------------------------
# Dependencies
# ----------------------------
async def get_db(request: Request) -> AsyncSession:
    async with request.app.state.SessionAsync() as session:
        yield session


def ticket_store(request: Request,
                 db: AsyncSession = Depends(get_db)) -> TicketStore:
    return TicketStore(db=db, gated=request.app.state.gated)


def event_store(request: Request,
                db: AsyncSession = Depends(get_db)) -> EventStore:
    return EventStore(db=db, gated=request.app.state.gated)


def dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


def reconciler(
    store: TicketStore = Depends(ticket_store),
    events: EventStore = Depends(event_store),
    notify: NotificationDispatcher = Depends(dispatcher),
) -> Reconciler:
    return Reconciler(store=store, events=events, dispatcher=notify)


def console(store: TicketStore = Depends(ticket_store)) -> VerificationConsole:
    return VerificationConsole(store)


def payment_adapter(request: Request) -> PaymentAdapter:
    return request.app.state.adapter


# ----------------------------
# Helpers
# ----------------------------
def is_admin(request: Request) -> bool:
    return bool(request.session.get("admin_user"))


def require_admin(request: Request) -> None:
    if not is_admin(request):
        raise HTTPException(status_code=401, detail="staff login required")


async def json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise InvalidPayload("request body must be JSON")
    if not isinstance(body, dict):
        raise InvalidPayload("request body must be a JSON object")
    return body


async def ticketing_error_handler(request: Request, exc: TicketingError):
    if exc.status_code >= 500:
        logger.opt(exception=exc).error(
            "{} {} failed: {}", request.method, request.url.path, exc.message
        )
    else:
        logger.warning("{} {} -> {}: {}", request.method, request.url.path,
                       exc.status_code, exc.message)
    content = {"detail": exc.message}
    if isinstance(exc, AlreadyUsedError):
        content["alreadyUsed"] = True
        content["usedDate"] = exc.used_date
    return ORJSONResponse(status_code=exc.status_code, content=content)


# ----------------------------
# App factory
# ----------------------------
def create_app(
    settings: Optional[Settings] = None, *,
    adapter: Optional[PaymentAdapter] = None,
    transport: Optional[MailTransport] = None,
    http: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """Build the app. Collaborators not passed in are built from settings.

    Run with ``uvicorn cicadatix.server:create_app --factory``.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)

    app = FastAPI(
        title="Cicada Tickets",
        default_response_class=ORJSONResponse,
    )
    app.add_middleware(SessionMiddleware, secret_key=settings.session_secret)
    app.add_exception_handler(TicketingError, ticketing_error_handler)

    engine, SessionAsync, gated = make_async_engine(
        settings.database_url, **settings.engine_options()
    )
    if http is None:
        http = httpx.AsyncClient(
            timeout=5.0,
            limits=httpx.Limits(max_connections=64,
                                max_keepalive_connections=64),
        )
    transport = transport or new_transport(settings, http)

    app.state.settings = settings
    app.state.engine = engine
    app.state.SessionAsync = SessionAsync
    app.state.gated = gated
    app.state.http = http
    app.state.adapter = adapter or new_adapter(settings)
    app.state.transport = transport
    app.state.dispatcher = NotificationDispatcher(
        transport, settings.mail_from, attach_pdf=settings.mail_attach_pdf
    )

    # ---
    # startup / shutdown
    # ---
    @app.on_event("startup")
    async def _say_hello():
        logger.info(
            "Cicada Tickets starting: payments={} mail={} db={}",
            app.state.adapter.name, settings.mail_backend,
            engine.url.get_backend_name(),
        )

    @app.on_event("startup")
    async def _db_init():
        await create_schema(engine)

    @app.on_event("shutdown")
    async def _http_client_stop():
        client = getattr(app.state, "http", None)
        if client is not None:
            await client.aclose()
            app.state.http = None

    @app.on_event("shutdown")
    async def _db_stop():
        await engine.dispose()

    # ----------------------------
    # Webhook endpoint (shared for Mock/Stripe)
    # ----------------------------
    @app.post("/payments/webhook")
    async def payments_webhook(
        request: Request,
        adapter: PaymentAdapter = Depends(payment_adapter),
        rec: Reconciler = Depends(reconciler),
    ):
        payload = await request.body()
        try:
            event = adapter.verify_webhook(payload, request.headers)
        except TicketingError:
            incr("webhook.rejected")
            raise
        incr("webhook.received")
        async with timeit("webhook.handle"):
            result = await rec.handle_event(event)
        return result.to_dict()

    # ----------------------------
    # API: tickets by session (polled by the success page)
    # ----------------------------
    @app.get("/api/tickets")
    async def tickets_by_session(
        session_id: Optional[str] = None,
        store: TicketStore = Depends(ticket_store),
    ):
        if not session_id:
            raise InvalidPayload("Session ID is required")
        # staff-issued tickets are only listed under /api/admin/tickets
        if session_id == ADMIN_SESSION_ID:
            return {"tickets": [], "count": 0}
        tickets = await store.find_by_session(session_id)
        # empty until the webhook has run; the client keeps polling
        return {
            "tickets": [ticket_to_dict(t) for t in tickets],
            "count": len(tickets),
        }

    # ----------------------------
    # API: staff verification console
    # ----------------------------
    @app.post("/api/verify-ticket", dependencies=[Depends(require_admin)])
    async def verify_ticket(
        request: Request,
        vc: VerificationConsole = Depends(console),
    ):
        body = await json_body(request)
        return await vc.verify_by_code(body.get("ticketNumber"))

    @app.get("/api/verify-ticket", dependencies=[Depends(require_admin)])
    async def verify_by_email(
        email: Optional[str] = None,
        vc: VerificationConsole = Depends(console),
    ):
        return await vc.verify_by_email(email)

    @app.put("/api/verify-ticket", dependencies=[Depends(require_admin)])
    async def mark_ticket_used(
        request: Request,
        vc: VerificationConsole = Depends(console),
    ):
        body = await json_body(request)
        return await vc.mark_used(body.get("ticketId"))

    # ----------------------------
    # API: manual issuance
    # ----------------------------
    @app.post("/api/admin/generate-ticket",
              dependencies=[Depends(require_admin)])
    async def generate_ticket(
        request: Request,
        store: TicketStore = Depends(ticket_store),
        events: EventStore = Depends(event_store),
        notify: NotificationDispatcher = Depends(dispatcher),
    ):
        body = await json_body(request)
        return await issue_admin_ticket(
            body.get("email"), body.get("customerName"),
            store=store, events=events, dispatcher=notify,
        )

    # ----------------------------
    # API: events
    # ----------------------------
    @app.get("/api/events")
    async def list_events(events: EventStore = Depends(event_store)):
        items = await events.list_upcoming()
        return {"items": [event_to_dict(e) for e in items]}

    @app.post("/api/events", status_code=201,
              dependencies=[Depends(require_admin)])
    async def create_event(
        request: Request, events: EventStore = Depends(event_store),
    ):
        event = await events.create(await json_body(request))
        return event_to_dict(event)

    @app.put("/api/events/{event_id}", dependencies=[Depends(require_admin)])
    async def update_event(
        event_id: str, request: Request,
        events: EventStore = Depends(event_store),
    ):
        event = await events.update(event_id, await json_body(request))
        return event_to_dict(event)

    # ----------------------------
    # API: checkout
    # ----------------------------
    @app.post("/api/checkout")
    async def create_checkout(
        request: Request,
        db: AsyncSession = Depends(get_db),
        events: EventStore = Depends(event_store),
        adapter: PaymentAdapter = Depends(payment_adapter),
    ):
        body = await json_body(request)
        quantity = positive_int(body.get("quantity", 1))
        if quantity is None or quantity > MAX_TICKETS_PER_ORDER:
            raise InvalidPayload(
                f"quantity must be between 1 and {MAX_TICKETS_PER_ORDER}"
            )
        customer_email = (body.get("customer_email") or "").strip() or None
        if customer_email is not None and not is_valid_email(customer_email):
            raise InvalidPayload("customer_email must be a valid email")
        event_id = body.get("event_id")
        event = await events.get(event_id) if event_id else None
        if event is None:
            raise NotFoundError("Event not found")

        base = settings.public_base_url
        session = await adapter.create_checkout(
            db, event, quantity,
            success_url=f"{base}/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base}/events",
            customer_email=customer_email,
            customer_name=body.get("customer_name"),
        )
        return {
            "session_id": session["payment_session_id"],
            "redirect_url": session["redirect_url"],
        }

    @app.get("/api/checkout-session")
    async def checkout_session(
        session_id: Optional[str] = None,
        db: AsyncSession = Depends(get_db),
        adapter: PaymentAdapter = Depends(payment_adapter),
    ):
        if not session_id:
            raise InvalidPayload("Session ID is required")
        ps = await adapter.retrieve_session(db, session_id)
        if ps is None:
            raise NotFoundError("payment session not found")
        return {
            "status": ps.status,
            "payment_status": ps.payment_status,
            "customer_email": ps.customer_email,
        }

    # ----------------------------
    # MockPay: complete a checkout and deliver its webhook
    # ----------------------------
    def mockpay(adapter: PaymentAdapter = Depends(payment_adapter)) -> MockPay:
        if not isinstance(adapter, MockPay):
            raise HTTPException(404, detail="MockPay is not enabled")
        return adapter

    @app.get("/mockpay/{psid}")
    async def mockpay_session(
        psid: str,
        db: AsyncSession = Depends(get_db),
        mp: MockPay = Depends(mockpay),
    ):
        ps = await mp.retrieve_session(db, psid)
        if ps is None:
            raise NotFoundError("payment session not found")
        return {
            "id": ps.id,
            "status": ps.status,
            "payment_status": ps.payment_status,
            "quantity": ps.quantity(),
            "event_id": ps.event_ref,
            "customer_email": ps.customer_email,
            "webhook_url": settings.mock_webhook_url,
        }

    @app.post("/mockpay/{psid}/emit")
    async def mockpay_emit(
        psid: str,
        t: str = Form(...),
        email: Optional[str] = Form(None),
        name: Optional[str] = Form(None),
        db: AsyncSession = Depends(get_db),
        mp: MockPay = Depends(mockpay),
    ):
        payload, sig = await mp.complete(db, psid, t, email, name)
        client_http: httpx.AsyncClient = app.state.http
        try:
            r = await client_http.post(
                settings.mock_webhook_url,
                content=payload,
                headers={
                    "x-mockpay-signature": sig,
                    "content-type": "application/json",
                },
            )
            delivered, status_code = r.status_code < 300, r.status_code
        except httpx.HTTPError as e:
            # the checkout stays settled; emitting again redelivers
            logger.warning("mock webhook delivery failed: {}", e)
            delivered, status_code = False, None
        return {"session_id": psid, "kind": t, "delivered": delivered,
                "webhook_status": status_code}

    # ----------------------------
    # Staff login
    # ----------------------------
    @app.post("/admin/login")
    async def admin_login_post(
        request: Request,
        username: str = Form(...),
        password: str = Form(...),
        next: str = Form("/api/admin/metrics"),
    ):
        ok_user = ct_equal(username.strip(), settings.admin_username)
        ok_pass = ct_equal(password, settings.admin_password)
        if ok_user and ok_pass:
            request.session["admin_user"] = username.strip()
            return RedirectResponse(url=(next or "/"),
                                    status_code=HTTP_303_SEE_OTHER)
        logger.warning("failed staff login for {!r}", username)
        return ORJSONResponse({"detail": "Invalid credentials."},
                              status_code=401)

    @app.get("/admin/logout")
    async def admin_logout(request: Request):
        request.session.clear()
        return RedirectResponse(url="/", status_code=HTTP_303_SEE_OTHER)

    @app.get("/api/admin/metrics", dependencies=[Depends(require_admin)])
    async def admin_metrics(store: TicketStore = Depends(ticket_store)):
        out = snapshot()
        out["tickets_total"] = await store.count()
        return out

    @app.get("/api/admin/tickets", dependencies=[Depends(require_admin)])
    async def admin_tickets(limit: int = 200,
                            store: TicketStore = Depends(ticket_store)):
        limit = store.clamp_limit(limit)
        items = await store.recent(limit)
        return {"items": [ticket_to_dict(t) for t in items], "limit": limit}

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    return app
