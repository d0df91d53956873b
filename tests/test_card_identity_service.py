import threading
import uuid

import pytest

from card_identity.core.logging import JSONLogger
from card_identity.errors import ConflictError, NotFoundError, ValidationError
from card_identity.memory.identity_record_store import SQLIdentityRecordStore
from card_identity.models.base import (create_schema, make_engine,
                                       make_session_maker)
from card_identity.services.card_identity_service import CardIdentityService
from card_identity.services.memory_cache import InMemoryCacheProvider
from card_identity.utils.cache_keys import card_key, owner_list_key


class BrokenCache:
    def get(self, key):
        raise RuntimeError("cache down")

    def set(self, key, value, ttl_seconds=None, tags=()):
        raise RuntimeError("cache down")

    def invalidate_key(self, key):
        raise RuntimeError("cache down")

    def invalidate_tag(self, tag):
        raise RuntimeError("cache down")


class StaleReadStore(SQLIdentityRecordStore):
    """find_active misses the first `stale_reads` times, as if another writer slipped in."""

    def __init__(self, session_maker, stale_reads=1):
        super().__init__(session_maker)
        self.stale_reads = stale_reads

    def find_active(self, owner_type, owner_id, flag):
        if self.stale_reads > 0:
            self.stale_reads -= 1
            return None
        return super().find_active(owner_type, owner_id, flag)


class HeldReadStore(SQLIdentityRecordStore):
    """The next armed read returns its rows, then waits for `release` before handing them back."""

    def __init__(self, session_maker):
        super().__init__(session_maker)
        self.armed = False
        self.read_done = threading.Event()
        self.release = threading.Event()

    def _hold(self, result):
        if self.armed:
            self.armed = False
            self.read_done.set()
            self.release.wait(5)
        return result

    def find_active(self, owner_type, owner_id, flag):
        return self._hold(super().find_active(owner_type, owner_id, flag))

    def find_all_active(self, owner_type, owner_id, *, order_by=None, desc=False):
        return self._hold(super().find_all_active(owner_type, owner_id, order_by=order_by, desc=desc))


def _file_store(tmp_path, cls=SQLIdentityRecordStore):
    engine = make_engine(f"sqlite:///{tmp_path / 'cards.db'}", statement_timeout_ms=10_000)
    create_schema(engine)
    return engine, cls(make_session_maker(engine))

def test_ktp_scenario_keeps_one_active_card(service):
    service.set_card("patient", "p1", "KTP", "3201234567890001")
    service.set_card("patient", "p1", "KTP", "3201234567890099")

    cards = service.list_cards("patient", "p1")
    assert len(cards) == 1
    assert cards[0].value == "3201234567890099"
    assert service.get_card("patient", "p1", "KTP").value == "3201234567890099"


def test_repeated_set_card_updates_in_place(service, store):
    first = service.set_card("patient", "p1", "KTP", "A")
    for value in ("B", "C", "D"):
        rec = service.set_card("patient", "p1", "KTP", value)
        assert rec.id == first.id

    assert store.count_active("patient", "p1") == 1
    assert len(service.card_history("patient", "p1", "KTP")) == 1
    assert service.get_card_value("patient", "p1", "KTP") == "D"


def test_numeric_value_is_stored_as_string(service):
    rec = service.set_card("patient", "p1", "NIK", 12345)
    assert rec.value == "12345"
    assert service.get_card("patient", "p1", "NIK").value == "12345"


@pytest.mark.parametrize(
    "args",
    [
        ("", "p1", "KTP", "x"),
        ("patient", None, "KTP", "x"),
        ("patient", "p1", "", "x"),
        ("patient", "p1", "KTP", ""),
        ("patient", "p1", "KTP", None),
    ],
)
def test_set_card_validates_before_touching_store(service, args):
    with pytest.raises(ValidationError):
        service.set_card(*args)
    assert service.health_check()["metrics"]["misses"] == 0


def test_get_card_is_read_through(service, cache):
    service.set_card("patient", "p1", "KTP", "A")

    first = service.get_card("patient", "p1", "KTP")
    assert cache.get(card_key("patient", "p1", "KTP")) is not None
    second = service.get_card("patient", "p1", "KTP")

    assert first == second
    assert service.health_check()["metrics"]["hits"] >= 1


def test_get_card_for_unknown_triple_returns_none(service):
    assert service.get_card("patient", "nobody", "KTP") is None
    assert service.get_card_value("patient", "nobody", "KTP", default="-") == "-"


def test_write_replaces_stale_cached_value(service, store):
    rec = service.set_card("patient", "p1", "KTP", "A")
    assert service.get_card("patient", "p1", "KTP").value == "A"

    # out-of-band write: the cache keeps serving the old value until TTL or next write
    store.update(rec.id, "B")
    assert service.get_card("patient", "p1", "KTP").value == "A"

    service.set_card("patient", "p1", "KTP", "X")
    assert service.get_card("patient", "p1", "KTP").value == "X"


def test_cached_entry_expires_after_ttl(service, store, clock):
    rec = service.set_card("patient", "p1", "KTP", "A")
    service.get_card("patient", "p1", "KTP")
    store.update(rec.id, "B")

    clock.advance(61)
    assert service.get_card("patient", "p1", "KTP").value == "B"


def test_write_leaves_other_triples_cached(service, cache):
    service.set_card("patient", "p1", "KTP", "k1")
    service.set_card("patient", "p1", "SIM", "s1")
    service.set_card("patient", "p2", "KTP", "k2")

    service.get_card("patient", "p1", "SIM")
    service.get_card("patient", "p2", "KTP")
    service.list_cards("patient", "p2")

    service.set_card("patient", "p1", "KTP", "k1-new")

    assert cache.get(card_key("patient", "p1", "SIM"))["value"] == "s1"
    assert cache.get(card_key("patient", "p2", "KTP"))["value"] == "k2"
    assert cache.get(owner_list_key("patient", "p2")) is not None
    assert cache.get(card_key("patient", "p1", "KTP")) is None
    assert cache.get(owner_list_key("patient", "p1")) is None


def test_list_cards_sees_new_cards_after_write(service):
    service.set_card("patient", "p1", "KTP", "1")
    assert [c.flag for c in service.list_cards("patient", "p1")] == ["KTP"]

    service.set_card("patient", "p1", "SIM", "2")
    assert [c.flag for c in service.list_cards("patient", "p1")] == ["KTP", "SIM"]


def test_list_cards_for_owner_without_cards_is_empty(service, cache):
    assert service.list_cards("patient", "p9") == []
    assert cache.get(owner_list_key("patient", "p9")) == []
    assert service.list_cards("patient", "p9") == []


def test_delete_card_soft_deletes(service):
    rec = service.set_card("patient", "p1", "KTP", "A")
    service.set_card("patient", "p1", "SIM", "B")
    service.list_cards("patient", "p1")
    service.get_card("patient", "p1", "KTP")

    service.delete_card(rec.id)

    assert service.get_card("patient", "p1", "KTP") is None
    assert [c.flag for c in service.list_cards("patient", "p1")] == ["SIM"]
    history = service.card_history("patient", "p1", "KTP")
    assert len(history) == 1 and history[0].id == rec.id and history[0].is_deleted

    with pytest.raises(NotFoundError):
        service.delete_card(rec.id)


def test_set_card_after_delete_creates_new_record(service):
    old = service.set_card("patient", "p1", "KTP", "A")
    service.delete_card(old.id)
    new = service.set_card("patient", "p1", "KTP", "B")

    assert new.id != old.id
    assert len(service.card_history("patient", "p1")) == 2
    assert len(service.list_cards("patient", "p1")) == 1


def test_stale_cached_record_deleted_out_of_band(service, store):
    old = service.set_card("patient", "p1", "KTP", "A")
    service.get_card("patient", "p1", "KTP")
    store.soft_delete(old.id)

    new = service.set_card("patient", "p1", "KTP", "B")

    assert new.id != old.id
    assert new.value == "B"
    assert store.count_active("patient", "p1") == 1


def test_lost_create_race_retries_as_update(session_maker, store):
    winner = store.create("patient", "p1", "KTP", "winner")
    racing = StaleReadStore(session_maker, stale_reads=1)
    svc = CardIdentityService(racing, cache=None)

    rec = svc.set_card("patient", "p1", "KTP", "mine")

    assert rec.id == winner.id
    assert rec.value == "mine"
    assert store.count_active("patient", "p1") == 1
    assert svc.health_check()["metrics"]["conflict_retries"] == 1


def test_lost_race_twice_raises_conflict(session_maker, store):
    store.create("patient", "p1", "KTP", "winner")
    racing = StaleReadStore(session_maker, stale_reads=2)
    svc = CardIdentityService(racing, cache=None)

    with pytest.raises(ConflictError):
        svc.set_card("patient", "p1", "KTP", "mine")
    assert store.find_active("patient", "p1", "KTP").value == "winner"


def test_concurrent_writers_leave_one_active_card(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'cards.db'}", statement_timeout_ms=10_000)
    create_schema(engine)
    store = SQLIdentityRecordStore(make_session_maker(engine))
    svc = CardIdentityService(store, cache=None)

    errors = []
    barrier = threading.Barrier(8)

    def writer(n):
        try:
            barrier.wait()
            svc.set_card("patient", "p1", "KTP", f"value-{n}")
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    active = store.find_all_active("patient", "p1")
    assert len(active) == 1
    assert active[0].value.startswith("value-")
    engine.dispose()


def test_cache_failures_never_fail_calls(store):
    svc = CardIdentityService(store, cache=BrokenCache())

    rec = svc.set_card("patient", "p1", "KTP", "A")
    assert svc.get_card("patient", "p1", "KTP").id == rec.id
    assert len(svc.list_cards("patient", "p1")) == 1
    svc.delete_card(rec.id)
    assert svc.flush_cache() == 0

    health = svc.health_check()
    assert health["status"] == "degraded"
    assert health["metrics"]["cache_errors"] > 0


def test_undecodable_cache_entry_is_treated_as_miss(service, cache):
    service.set_card("patient", "p1", "KTP", "A")
    cache.set(card_key("patient", "p1", "KTP"), {"garbage": True})

    assert service.get_card("patient", "p1", "KTP").value == "A"


def test_set_cards_applies_each_flag(service):
    out = service.set_cards("employee", "e-7", {"KTP": "1", "SIM": "2", "BPJS": 3})
    assert set(out) == {"KTP", "SIM", "BPJS"}
    assert out["BPJS"].value == "3"
    assert len(service.list_cards("employee", "e-7")) == 3


def test_flush_cache_drops_tagged_entries(service, cache):
    service.set_card("patient", "p1", "KTP", "A")
    service.get_card("patient", "p1", "KTP")
    service.list_cards("patient", "p1")
    assert len(cache) == 2

    assert service.flush_cache() == 2
    assert len(cache) == 0


def test_service_logs_card_events(tmp_path, store, cache):
    log = JSONLogger(
        log_path=str(tmp_path / "cards.jsonl"),
        logger_name=f"card_identity.test.{uuid.uuid4().hex}",
        enable_console=False,
    )
    svc = CardIdentityService(store, cache, logger=log)
    svc.initialize(ttl_seconds=30)

    rec = svc.set_card("patient", "p1", "KTP", "A")
    svc.set_card("patient", "p1", "KTP", "B")
    svc.delete_card(rec.id)
    log.close()

    assert svc.ttl_seconds == 30
    assert len(log.get_logs_by_type("CardCreated")) == 1
    assert len(log.get_logs_by_type("CardUpdated")) == 1
    assert log.get_logs_by_type("CardDeleted")[0]["data"]["id"] == rec.id
    assert log.get_logs_by_type("CardIdentityServiceInit")


def _read_overlapping_write(svc, store, read):
    """Run `read` in a thread, let a write of the same owner finish while its store read is held."""
    result = {}
    store.armed = True
    reader = threading.Thread(target=lambda: result.setdefault("value", read()))
    reader.start()
    assert store.read_done.wait(5)

    svc.set_card("patient", "p1", "KTP", "new")

    store.release.set()
    reader.join(5)
    return result["value"]


def test_slow_get_card_does_not_recache_replaced_value(tmp_path):
    engine, store = _file_store(tmp_path, HeldReadStore)
    cache = InMemoryCacheProvider(max_size=100, default_ttl=60)
    svc = CardIdentityService(store, cache)
    svc.set_card("patient", "p1", "KTP", "old")

    seen = _read_overlapping_write(svc, store, lambda: svc.get_card("patient", "p1", "KTP"))

    assert seen.value == "old"
    assert cache.get(card_key("patient", "p1", "KTP")) is None
    assert svc.get_card("patient", "p1", "KTP").value == "new"
    assert svc.health_check()["metrics"]["skipped_fills"] == 1
    engine.dispose()


def test_slow_list_cards_does_not_recache_replaced_list(tmp_path):
    engine, store = _file_store(tmp_path, HeldReadStore)
    cache = InMemoryCacheProvider(max_size=100, default_ttl=60)
    svc = CardIdentityService(store, cache)
    svc.set_card("patient", "p1", "KTP", "old")

    seen = _read_overlapping_write(svc, store, lambda: svc.list_cards("patient", "p1"))

    assert [r.value for r in seen] == ["old"]
    assert cache.get(owner_list_key("patient", "p1")) is None
    assert [r.value for r in svc.list_cards("patient", "p1")] == ["new"]
    engine.dispose()


def test_writes_of_other_owners_do_not_block_fills(service, cache):
    service.set_card("patient", "p1", "KTP", "A")
    service.get_card("patient", "p1", "KTP")
    service.set_card("patient", "p2", "KTP", "B")

    assert cache.get(card_key("patient", "p1", "KTP")) is not None
    assert service.health_check()["metrics"]["skipped_fills"] == 0


def test_cache_failures_are_logged_as_card_cache_errors(tmp_path, store):
    log = JSONLogger(
        log_path=str(tmp_path / "cards.jsonl"),
        logger_name=f"card_identity.test.{uuid.uuid4().hex}",
        enable_console=False,
    )
    svc = CardIdentityService(store, cache=BrokenCache(), logger=log)

    svc.get_card("patient", "p1", "KTP")
    log.close()

    errors = log.get_logs_by_type("CardCacheError")
    assert errors
    assert errors[0]["level"] == "WARNING"
    assert errors[0]["data"]["op"] == "get"
    assert "cache down" in errors[0]["data"]["error"]
