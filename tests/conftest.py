import pytest

from card_identity.memory.identity_record_store import SQLIdentityRecordStore
from card_identity.models.base import (create_schema, make_engine,
                                       make_session_maker)
from card_identity.services.card_identity_service import CardIdentityService
from card_identity.services.memory_cache import InMemoryCacheProvider


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_maker(engine):
    return make_session_maker(engine)


@pytest.fixture
def store(session_maker):
    return SQLIdentityRecordStore(session_maker)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return InMemoryCacheProvider(max_size=100, default_ttl=60, clock=clock)


@pytest.fixture
def service(store, cache):
    return CardIdentityService(store, cache, cfg={"cache": {"ttl_seconds": 60}})
