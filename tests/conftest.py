import httpx
import pytest

from swiftslot.db import get_engine, get_session, init_models
from swiftslot.main import create_app
from swiftslot.models import Vendor
from swiftslot.publisher import RabbitPublisher


class RecordingPublisher(RabbitPublisher):
    def __init__(self):
        super().__init__(url=None)
        self.events = []

    async def publish_event(self, event_type: str, data: dict):
        self.events.append((event_type, data))


async def add_vendor(sessions, name="Maes Dining", tz_name="Africa/Lagos") -> int:
    async with sessions.begin() as session:
        vendor = Vendor(name=name, timezone=tz_name)
        session.add(vendor)
        await session.flush()
        return vendor.id


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'swiftslot.db'}"


@pytest.fixture
async def engine(database_url):
    engine = get_engine(database_url)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessions(engine):
    return get_session(engine)


@pytest.fixture
async def vendor_id(sessions):
    return await add_vendor(sessions)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
async def app(database_url, publisher):
    app = create_app(database_url=database_url, publisher=publisher)
    await init_models(app.state.engine)
    await add_vendor(app.state.session_factory)
    yield app
    await app.state.engine.dispose()


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
