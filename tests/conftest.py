import pytest
import pytest_asyncio
from sqlalchemy.orm import sessionmaker

import app.models  # noqa: F401  registers every table on Base.metadata
from app.database import Base, build_engine
from app.services.aggregator import NotificationAggregator
from app.services.action_coordinator import ActionCoordinator
from app.services.identity import IdentityProvider
from tests.fakes import ALICE, FakeStore


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest_asyncio.fixture
async def identity():
    return IdentityProvider(ALICE)


@pytest_asyncio.fixture
async def aggregator(fake_store, identity):
    agg = NotificationAggregator(fake_store, identity)
    agg.start()
    await agg.wait_ready(timeout=1)
    yield agg
    agg.close()


@pytest_asyncio.fixture
async def coordinator(fake_store, aggregator, identity):
    coord = ActionCoordinator(fake_store, aggregator, identity)
    yield coord
    coord.close()


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()
