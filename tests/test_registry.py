import threading

import pytest

from relay_registry.errors import AlreadyRegistered, NotFound
from relay_registry.registry import LIVENESS_RECORDED, RegistryService
from relay_registry.storage import JsonFileStore, MemoryStore


def test_register_twice_keeps_first_record(service):
    first = service.register("alpha", "srv1", "pubA", "10.0.0.5", now=1000)

    with pytest.raises(AlreadyRegistered):
        service.register("alpha", "other", "pubB", "10.0.0.9", now=1005)

    assert service.get_record("alpha") == first
    assert first.reputation == 0
    assert first.last_active == 1000


def test_same_name_may_be_registered_by_different_identities(service):
    service.register("alpha", "srv1", "pubA", "10.0.0.5")
    service.register("beta", "srv1", "pubB", "10.0.0.6")

    names = [entry[0] for entry in service.active_servers()]
    assert names == ["srv1", "srv1"]


@pytest.mark.parametrize("deltas", [[5, -2], [-3, -4, 1], [0], [10, -10, 7, -20]])
def test_reputation_is_the_sum_of_deltas(service, deltas):
    service.register("alpha", "srv1", "pubA", "10.0.0.5")
    score = None
    for delta in deltas:
        score = service.adjust_reputation("alpha", delta)

    assert score == sum(deltas)
    assert service.get_record("alpha").reputation == sum(deltas)


def test_assignment_is_delivered_exactly_once(service):
    service.register("alpha", "srv1", "pubA", "10.0.0.5", now=1000)

    assert service.select_server("srv1", "pubClientX") == ("pubA", "10.0.0.5")
    assert service.pending_assignments() == {"srv1": "pubClientX"}

    outcome = service.heartbeat("alpha", now=1010)
    assert outcome.assignment_delivered
    assert outcome.client_public_key == "pubClientX"
    assert service.pending_assignments() == {}
    # delivery does not refresh liveness
    assert service.get_record("alpha").last_active == 1000

    assert service.heartbeat("alpha", now=1020) == LIVENESS_RECORDED
    assert service.get_record("alpha").last_active == 1020


def test_heartbeat_without_assignment_refreshes_liveness(service):
    service.register("alpha", "srv1", "pubA", "10.0.0.5", now=1000)

    outcome = service.heartbeat("alpha", now=1025)

    assert not outcome.assignment_delivered
    assert service.get_record("alpha").last_active == 1025


def test_heartbeat_never_moves_last_active_backwards(service):
    service.register("alpha", "srv1", "pubA", "10.0.0.5", now=1000)
    service.heartbeat("alpha", now=1050)
    service.heartbeat("alpha", now=1040)

    assert service.get_record("alpha").last_active == 1050


def test_newer_selection_overwrites_unconsumed_one(service):
    service.register("alpha", "srv1", "pubA", "10.0.0.5")
    service.select_server("srv1", "pubClientX")
    service.select_server("srv1", "pubClientY")

    assert service.pending_assignments() == {"srv1": "pubClientY"}
    assert service.heartbeat("alpha").client_public_key == "pubClientY"


def test_liveness_window_boundary_is_inclusive(service):
    service.register("alpha", "srv1", "pubA", "10.0.0.5", now=1000)

    assert service.active_servers(now=1010) == [("srv1", "pubA", "10.0.0.5", 0)]
    assert service.active_servers(now=1030) == [("srv1", "pubA", "10.0.0.5", 0)]
    assert service.active_servers(now=1031) == []
    assert service.active_servers(now=1032) == []


def test_active_servers_uses_the_clock_by_default(service, clock):
    service.register("alpha", "srv1", "pubA", "10.0.0.5")
    clock.advance(30)
    assert len(service.active_servers()) == 1
    clock.advance(1)
    assert service.active_servers() == []


def test_active_servers_is_ordered_independent_of_insertion(clock):
    entries = [("c", "srv3"), ("a", "srv1"), ("b", "srv2")]
    results = []
    for order in (entries, list(reversed(entries))):
        store = MemoryStore()
        store.initialize()
        service = RegistryService(store, clock=clock)
        for identity, name in order:
            service.register(identity, name, f"pub-{name}", f"addr-{name}")
        results.append(service.active_servers())

    assert results[0] == results[1]
    assert [entry[0] for entry in results[0]] == ["srv1", "srv2", "srv3"]


def test_unknown_targets_fail_without_mutation(service):
    service.register("alpha", "srv1", "pubA", "10.0.0.5", now=1000)
    before = service.store.load()

    with pytest.raises(NotFound):
        service.select_server("ghost", "pubY")
    with pytest.raises(NotFound):
        service.adjust_reputation("nobody", 3)
    with pytest.raises(NotFound):
        service.heartbeat("nobody", now=1010)

    assert service.store.load() == before
    assert service.pending_assignments() == {}


def test_duplicate_names_select_most_recently_active(service):
    service.register("alpha", "srv1", "pubA", "10.0.0.5", now=1000)
    service.register("beta", "srv1", "pubB", "10.0.0.6", now=1000)
    service.heartbeat("alpha", now=1020)

    assert service.select_server("srv1", "pubClientX") == ("pubA", "10.0.0.5")


def test_duplicate_names_tie_break_on_reputation_then_identity(service):
    service.register("gamma", "srv1", "pubG", "10.0.0.7", now=1000)
    service.register("beta", "srv1", "pubB", "10.0.0.6", now=1000)

    assert service.select_server("srv1", "k1") == ("pubB", "10.0.0.6")

    service.adjust_reputation("gamma", 1)
    assert service.select_server("srv1", "k2") == ("pubG", "10.0.0.7")


def test_evict_stale_removes_old_records_and_orphaned_assignments(service):
    service.register("alpha", "srv1", "pubA", "10.0.0.5", now=1000)
    service.register("beta", "srv2", "pubB", "10.0.0.6", now=1100)
    service.select_server("srv1", "pubClientX")

    evicted = service.evict_stale(max_age=60, now=1120)

    assert evicted == ["alpha"]
    with pytest.raises(NotFound):
        service.get_record("alpha")
    assert service.get_record("beta").name == "srv2"
    assert service.pending_assignments() == {}


def test_evict_stale_keeps_assignments_for_surviving_names(service):
    service.register("alpha", "srv1", "pubA", "10.0.0.5", now=1000)
    service.register("beta", "srv1", "pubB", "10.0.0.6", now=1100)
    service.select_server("srv1", "pubClientX")

    assert service.evict_stale(max_age=60, now=1120) == ["alpha"]
    assert service.pending_assignments() == {"srv1": "pubClientX"}


def test_evict_stale_rejects_window_shorter_than_liveness(service):
    with pytest.raises(ValueError):
        service.evict_stale(max_age=10)


def test_concurrent_calls_do_not_lose_updates(tmp_path):
    store = JsonFileStore(str(tmp_path / "registry_data.json"))
    store.initialize()
    service = RegistryService(store, clock=lambda: 1000)
    service.register("alpha", "srv1", "pubA", "10.0.0.5")
    threads_count, calls = 8, 25

    def bump():
        for _ in range(calls):
            service.adjust_reputation("alpha", 1)

    def select(worker):
        for call in range(calls):
            service.select_server("srv1", f"client-{worker}-{call}")

    threads = [threading.Thread(target=bump) for _ in range(threads_count)]
    threads += [threading.Thread(target=select, args=(worker,)) for worker in range(threads_count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert service.get_record("alpha").reputation == threads_count * calls
    pending = service.pending_assignments()
    assert list(pending) == ["srv1"]
    assert pending["srv1"].startswith("client-")
    assert RegistryService(JsonFileStore(store.path)).get_record("alpha").reputation == threads_count * calls


def test_assignment_goes_to_first_heartbeat_of_that_name(service):
    service.register("alpha", "srv1", "pubA", "10.0.0.5", now=1000)
    service.register("beta", "srv1", "pubB", "10.0.0.6", now=990)

    assert service.select_server("srv1", "pubClientX") == ("pubA", "10.0.0.5")

    assert service.heartbeat("beta", now=1005).client_public_key == "pubClientX"
    assert service.heartbeat("alpha", now=1005) == LIVENESS_RECORDED
