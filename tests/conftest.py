import httpx
import pytest
import pytest_asyncio

from cicadatix.config import Settings
from cicadatix.infra.sql import create_schema, make_async_engine
from cicadatix.infra.timings import reset
from cicadatix.model import EventStore, TicketStore
from cicadatix.notify import NotificationDispatcher, OutboxTransport
from cicadatix.reconciler import Reconciler
from cicadatix.server import create_app

from tests.factories import TEST_SECRET


@pytest.fixture(autouse=True)
def _reset_metrics():
    reset()
    yield
    reset()


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cicada-test.db'}"


@pytest_asyncio.fixture
async def engine_parts(database_url):
    engine, SessionAsync, gated = make_async_engine(database_url)
    await create_schema(engine)
    yield engine, SessionAsync, gated
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine_parts):
    _, SessionAsync, _ = engine_parts
    async with SessionAsync() as session:
        yield session


@pytest.fixture
def store(db, engine_parts) -> TicketStore:
    return TicketStore(db=db, gated=engine_parts[2])


@pytest.fixture
def events(db, engine_parts) -> EventStore:
    return EventStore(db=db, gated=engine_parts[2])


@pytest.fixture
def outbox() -> OutboxTransport:
    return OutboxTransport()


@pytest.fixture
def dispatcher(outbox) -> NotificationDispatcher:
    # PDFs are exercised in test_dispatcher; keep reconciler tests fast
    return NotificationDispatcher(outbox, "Cicada <noreply@example.com>",
                                  attach_pdf=False)


@pytest.fixture
def reconciler(store, events, dispatcher) -> Reconciler:
    return Reconciler(store=store, events=events, dispatcher=dispatcher)


@pytest.fixture
def settings(database_url) -> Settings:
    return Settings(
        database_url=database_url,
        mock_secret=TEST_SECRET,
        mock_webhook_url="http://testserver/payments/webhook",
        mail_attach_pdf=False,
        session_secret="test-session-secret",
        admin_username="admin",
        admin_password="supasecret",
        public_base_url="http://testserver",
    )


@pytest_asyncio.fixture
async def app(settings, outbox):
    app = create_app(settings, transport=outbox)
    await create_schema(app.state.engine)
    yield app
    await app.state.engine.dispose()


@pytest_asyncio.fixture
async def client(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        # MockPay's emit delivers its webhook back into the same app
        await app.state.http.aclose()
        app.state.http = client
        yield client


@pytest_asyncio.fixture
async def staff_client(client):
    resp = await client.post(
        "/admin/login", data={"username": "admin", "password": "supasecret"}
    )
    assert resp.status_code == 303
    return client
