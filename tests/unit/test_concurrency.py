from __future__ import annotations

import threading

import pytest

from provenance import GENESIS_HASH
from provenance.core.exceptions import LockTimeoutError, StaleHeadError
from provenance.core.hashchain import validate_chain
from provenance.core.stages import BatchStage, Role
from provenance.ledger import KeyedLock, StageRecorder
from tests.unit._ledger_helpers import advance_to, create, step


def _race(n: int, fn) -> list[object]:
    """Run ``fn`` in ``n`` threads released together; collect results or exceptions."""

    barrier = threading.Barrier(n)
    results: list[object] = [None] * n

    def run(i: int) -> None:
        barrier.wait()
        try:
            results[i] = fn(i)
        except Exception as e:  # noqa: BLE001
            results[i] = e

    threads = [threading.Thread(target=run, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    return results


def test_two_appends_on_same_head_one_wins(ledger) -> None:
    create(ledger, batch_id="B001")
    advance_to(ledger, "B001", BatchStage.PROCESSING)
    head = ledger.registry.get("B001").head_hash

    def append(i: int):
        return ledger.recorder.append(
            "B001",
            actor_id="FAC1",
            role=Role.FACILITY,
            proposed_stage="drying" if i == 0 else "cleaning",
            payload={"worker": i},
            expected_head_hash=head,
        )

    results = _race(2, append)
    stale = [r for r in results if isinstance(r, StaleHeadError)]
    won = [r for r in results if not isinstance(r, Exception)]
    assert len(won) == 1
    assert len(stale) == 1
    assert ledger.registry.get("B001").sequence_number == 3

    # The loser re-reads the head and succeeds.
    loser = 1 if won[0].sub_stage == "drying" else 0
    r = step(ledger, "B001", "FAC1", Role.FACILITY, "cleaning" if loser else "drying")
    assert r.sequence_number == 4
    assert r.head_hash == ledger.registry.get("B001").head_hash


def test_contending_writers_produce_gapless_chain(ledger) -> None:
    create(ledger, batch_id="B001")
    advance_to(ledger, "B001", BatchStage.PROCESSING)
    n = 8

    def append_until_accepted(i: int):
        while True:
            head = ledger.registry.head("B001").head_hash
            try:
                return ledger.recorder.append(
                    "B001",
                    actor_id="FAC1",
                    role=Role.FACILITY,
                    proposed_stage="storage",
                    payload={"worker": i},
                    expected_head_hash=head,
                )
            except StaleHeadError:
                continue

    results = _race(n, append_until_accepted)
    assert not [r for r in results if isinstance(r, Exception)]
    assert sorted(r.sequence_number for r in results) == list(range(3, 3 + n))

    events = ledger.registry.events("B001")
    assert [e.sequence_number for e in events] == list(range(3 + n))
    assert validate_chain(GENESIS_HASH, events).valid


def test_batches_progress_independently(ledger) -> None:
    ids = [f"B{i:03d}" for i in range(6)]
    for bid in ids:
        create(ledger, batch_id=bid)

    results = _race(len(ids), lambda i: advance_to(ledger, ids[i], BatchStage.DELIVERED))
    assert not [r for r in results if isinstance(r, Exception)]
    for bid in ids:
        b = ledger.registry.get(bid)
        assert b.current_stage == BatchStage.DELIVERED
        assert validate_chain(GENESIS_HASH, ledger.registry.events(bid)).valid


def test_lock_timeout_leaves_batch_untouched(ledger, metrics) -> None:
    create(ledger, batch_id="B001")
    head = ledger.registry.get("B001").head_hash
    locks = KeyedLock(timeout_s=0.05)
    recorder = StageRecorder(registry=ledger.registry, access=ledger.access, locks=locks, metrics=metrics)

    held = threading.Event()
    release = threading.Event()

    def holder() -> None:
        with locks.hold("B001"):
            held.set()
            release.wait(5)

    t = threading.Thread(target=holder)
    t.start()
    try:
        assert held.wait(5)
        with pytest.raises(LockTimeoutError):
            recorder.append(
                "B001", actor_id="F1", role="farmer", proposed_stage="harvested", payload={}, expected_head_hash=head
            )
    finally:
        release.set()
        t.join()

    assert ledger.registry.get("B001").head_hash == head
    assert metrics.counter("lock_timeout").value == 1

    # Once the lock is free the same request goes through.
    r = recorder.append(
        "B001", actor_id="F1", role="farmer", proposed_stage="harvested", payload={}, expected_head_hash=head
    )
    assert r.sequence_number == 1


def test_recorder_uses_configured_lock_timeout(ledger, test_config) -> None:
    assert ledger.recorder.locks.timeout_s == test_config.ledger.lock_timeout_seconds

    # An empty lock map is still the one handed in.
    locks = KeyedLock(timeout_s=0.25)
    assert len(locks) == 0
    recorder = StageRecorder(registry=ledger.registry, access=ledger.access, locks=locks)
    assert recorder.locks is locks


def test_readers_never_see_partial_events(ledger) -> None:
    create(ledger, batch_id="B001")
    advance_to(ledger, "B001", BatchStage.PROCESSING)
    stop = threading.Event()
    problems: list[str] = []

    def reader() -> None:
        while not stop.is_set():
            b = ledger.registry.get("B001")
            events = ledger.registry.events("B001")
            if len(events) < b.sequence_number + 1:
                problems.append(f"head at {b.sequence_number} but {len(events)} events")
            if not validate_chain(GENESIS_HASH, events).valid:
                problems.append("invalid chain observed")

    t = threading.Thread(target=reader)
    t.start()
    try:
        for _ in range(20):
            step(ledger, "B001", "FAC1", Role.FACILITY, "storage")
    finally:
        stop.set()
        t.join()
    assert problems == []
