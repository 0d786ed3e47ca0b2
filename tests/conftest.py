import pytest
from sqlalchemy.pool import StaticPool

from concierge.store import ConversationStore, SettingsStore, make_engine
from tests.factories import FakeClock


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def engine():
    return make_engine("sqlite://", poolclass=StaticPool)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(engine, clock):
    return ConversationStore(engine, clock=clock)


@pytest.fixture
def settings_store(engine):
    return SettingsStore(engine)
