"""Inventory ledger: mutation rules, invariants, persistence and locking."""

import random
import threading
from datetime import date

import pytest

from bloodbank.errors import Failure, NotFoundError, PreconditionFailed, StorageError, ValidationError
from bloodbank.ledger import InventoryLedger, StockWarning
from bloodbank.models import BloodType, Component, StockStatus


def make_ledger(tmp_path, *lines):
    path = tmp_path / "inventory.csv"
    if lines:
        path.write_text("".join(f"{line}\n" for line in lines))
    return InventoryLedger(path)


def file_text(ledger):
    return ledger._file.path.read_text()


# ── restock ─────────────────────────────────────────────────────────


def test_restock_creates_available_record(tmp_path):
    ledger = make_ledger(tmp_path)
    record = ledger.restock("O+", "WholeBlood", 10, "2030-01-01")
    assert record.status is StockStatus.AVAILABLE
    assert record.reserved == 0
    assert file_text(ledger) == "O+,WholeBlood,10,2030-01-01,0,AVAILABLE\n"


def test_restock_adds_units_and_overwrites_expiration(tmp_path):
    ledger = make_ledger(tmp_path, "A-,Plasma,4,2030-06-01,1,AVAILABLE")
    record = ledger.restock(BloodType.A_NEG, Component.PLASMA, 6, date(2029, 1, 1))
    assert record.units == 10
    assert record.reserved == 1
    # last write wins, even when the new date is earlier
    assert record.expiration == date(2029, 1, 1)


def test_restock_keeps_blocked_status(tmp_path):
    ledger = make_ledger(tmp_path, "B+,Platelets,2,2030-01-01,0,BLOCKED")
    record = ledger.restock("B+", "Platelets", 3, "2030-02-01")
    assert record.units == 5
    assert record.is_blocked


def test_restock_accepts_spelled_out_component(tmp_path):
    ledger = make_ledger(tmp_path)
    record = ledger.restock("AB-", "Whole Blood", 1, "2030-01-01")
    assert record.component is Component.WHOLE_BLOOD


@pytest.mark.parametrize(
    "args",
    [
        ("O+", "WholeBlood", -1, "2030-01-01"),
        ("O+", "WholeBlood", 5, "01/01/2030"),
        ("C+", "WholeBlood", 5, "2030-01-01"),
        ("UNKNOWN", "WholeBlood", 5, "2030-01-01"),
        ("O+", "Serum", 5, "2030-01-01"),
    ],
)
def test_restock_rejects_malformed_input_without_writing(tmp_path, args):
    ledger = make_ledger(tmp_path)
    with pytest.raises(ValidationError):
        ledger.restock(*args)
    assert len(ledger) == 0
    assert not ledger._file.path.exists()


# ── reserve / release ───────────────────────────────────────────────


def test_reserve_more_than_on_hand_fails_unchanged(tmp_path):
    ledger = make_ledger(tmp_path, "O-,WholeBlood,3,2025-01-01,0,AVAILABLE")
    before = ledger.get("O-", "WholeBlood")

    outcome = ledger.reserve("O-", "WholeBlood", 5)

    assert not outcome
    assert outcome.failure is Failure.INSUFFICIENT_UNITS
    assert ledger.get("O-", "WholeBlood") == before
    assert file_text(ledger) == "O-,WholeBlood,3,2025-01-01,0,AVAILABLE\n"


def test_reserve_earmarks_units_without_exceeding_stock(tmp_path):
    ledger = make_ledger(tmp_path, "A+,Plasma,10,2030-01-01,0,AVAILABLE")

    first = ledger.reserve("A+", "Plasma", 4)
    assert first
    assert first.value.units == 10
    assert first.value.reserved == 4
    assert first.value.available == 6

    assert ledger.reserve("A+", "Plasma", 7).failure is Failure.INSUFFICIENT_UNITS
    assert ledger.reserve("A+", "Plasma", 6)
    record = ledger.get("A+", "Plasma")
    assert record.reserved == record.units == 10
    assert file_text(ledger) == "A+,Plasma,10,2030-01-01,10,AVAILABLE\n"


def test_reserve_on_blocked_record_fails(tmp_path):
    ledger = make_ledger(tmp_path, "AB+,Platelets,20,2030-01-01,2,BLOCKED")
    before = ledger.get("AB+", "Platelets")

    outcome = ledger.reserve("AB+", "Platelets", 1)

    assert outcome.failure is Failure.BLOCKED
    assert ledger.get("AB+", "Platelets") == before


def test_reserve_missing_record_is_not_found(tmp_path):
    ledger = make_ledger(tmp_path)
    outcome = ledger.reserve("O+", "Plasma", 1)
    assert outcome.failure is Failure.NOT_FOUND
    with pytest.raises(NotFoundError):
        outcome.raise_for_failure()


def test_reserve_rejects_zero_units(tmp_path):
    ledger = make_ledger(tmp_path, "O+,Plasma,5,2030-01-01,0,AVAILABLE")
    with pytest.raises(ValidationError):
        ledger.reserve("O+", "Plasma", 0)


def test_release_returns_reserved_units(tmp_path):
    ledger = make_ledger(tmp_path, "O+,Plasma,5,2030-01-01,3,AVAILABLE")
    assert ledger.release("O+", "Plasma", 4).failure is Failure.INSUFFICIENT_UNITS
    outcome = ledger.release("O+", "Plasma", 2)
    assert outcome.value.reserved == 1
    assert outcome.value.available == 4


# ── consume ─────────────────────────────────────────────────────────


def test_consume_decrements_units_only(tmp_path):
    ledger = make_ledger(tmp_path, "B-,WholeBlood,10,2030-01-01,8,AVAILABLE")

    assert ledger.consume("B-", "WholeBlood", 3).failure is Failure.INSUFFICIENT_UNITS
    outcome = ledger.consume("B-", "WholeBlood", 2)

    assert outcome.value.units == 8
    assert outcome.value.reserved == 8


def test_consume_any_component_takes_first_record_with_enough(tmp_path):
    ledger = make_ledger(
        tmp_path,
        "A+,WholeBlood,2,2030-01-01,0,AVAILABLE",
        "A+,Plasma,10,2030-01-01,0,AVAILABLE",
        "A+,Platelets,10,2030-01-01,0,AVAILABLE",
    )

    outcome = ledger.consume("A+", None, 4)

    assert outcome.value.component is Component.PLASMA
    assert [r.units for r in ledger.records()] == [2, 6, 10]


def test_consume_any_component_failure_reasons(tmp_path):
    ledger = make_ledger(tmp_path, "O-,Plasma,10,2030-01-01,0,BLOCKED")
    assert ledger.consume("O-", None, 1).failure is Failure.BLOCKED
    assert ledger.consume("A-", None, 1).failure is Failure.NOT_FOUND
    ledger.restock("O-", "Platelets", 1, "2030-01-01")
    assert ledger.consume("O-", None, 2).failure is Failure.INSUFFICIENT_UNITS


def test_random_reserve_consume_release_keeps_invariants(tmp_path):
    ledger = make_ledger(
        tmp_path,
        "O+,WholeBlood,15,2030-01-01,0,AVAILABLE",
        "O+,Plasma,8,2030-01-01,0,AVAILABLE",
        "A-,Platelets,5,2030-01-01,0,BLOCKED",
    )
    keys = [("O+", "WholeBlood"), ("O+", "Plasma"), ("A-", "Platelets")]
    rng = random.Random(1234)

    for _ in range(300):
        blood_type, component = rng.choice(keys)
        op = rng.choice([ledger.reserve, ledger.consume, ledger.release])
        op(blood_type, component, rng.randint(1, 6))
        if rng.random() < 0.1:
            ledger.restock(blood_type, component, rng.randint(0, 4), "2030-01-01")
        for record in ledger.records():
            assert 0 <= record.reserved <= record.units

    # blocked stock can be restocked but never reserved or consumed
    blocked = ledger.get("A-", "Platelets")
    assert blocked.reserved == 0
    assert blocked.units >= 5
    assert InventoryLedger(ledger._file.path).records() == ledger.records()


# ── block ───────────────────────────────────────────────────────────


def test_block_checks_quantity_but_keeps_units(tmp_path):
    ledger = make_ledger(tmp_path, "A+,WholeBlood,3,2030-01-01,1,AVAILABLE")

    assert ledger.block("A+", "WholeBlood", 3).failure is Failure.INSUFFICIENT_UNITS
    outcome = ledger.block("A+", "WholeBlood", 2)

    assert outcome.value.status is StockStatus.BLOCKED
    assert (outcome.value.units, outcome.value.reserved) == (3, 1)
    assert ledger.block("A+", "WholeBlood", 0).failure is Failure.ALREADY_BLOCKED
    assert ledger.block("A-", "WholeBlood", 0).failure is Failure.NOT_FOUND


def test_block_type_then_reserve_fails(tmp_path):
    ledger = make_ledger(
        tmp_path,
        "B+,Plasma,12,2030-01-01,0,AVAILABLE",
        "O+,Plasma,12,2030-01-01,0,AVAILABLE",
    )

    assert ledger.block_type("B+")
    assert ledger.get("B+", "Plasma").is_blocked
    assert not ledger.get("O+", "Plasma").is_blocked

    outcome = ledger.reserve("B+", "Plasma", 1)
    assert outcome.failure is Failure.BLOCKED
    with pytest.raises(PreconditionFailed):
        outcome.raise_for_failure()


def test_block_type_needs_available_stock(tmp_path):
    ledger = make_ledger(tmp_path, "B+,Plasma,12,2030-01-01,0,BLOCKED")
    assert ledger.block_type("B+").failure is Failure.NOT_FOUND
    assert ledger.block_type("AB-").failure is Failure.NOT_FOUND


def test_block_all_and_fully_blocked(tmp_path):
    ledger = make_ledger(
        tmp_path,
        "B+,Plasma,12,2030-01-01,0,AVAILABLE",
        "O-,Platelets,0,2030-01-01,0,AVAILABLE",
    )
    assert not ledger.is_fully_blocked()
    assert ledger.block_all() == 2
    assert ledger.is_fully_blocked()
    assert ledger.is_blocked("O-")


def test_empty_ledger_is_never_fully_blocked(tmp_path):
    ledger = make_ledger(tmp_path)
    assert ledger.block_all() == 0
    assert not ledger.is_fully_blocked()


def test_is_blocked_when_any_component_blocked(tmp_path):
    ledger = make_ledger(
        tmp_path,
        "A-,Plasma,12,2030-01-01,0,AVAILABLE",
        "A-,Platelets,12,2030-01-01,0,BLOCKED",
    )
    assert ledger.is_blocked("A-")
    assert not ledger.is_blocked("A+")


def test_unblock(tmp_path):
    ledger = make_ledger(tmp_path, "A-,Plasma,12,2030-01-01,0,BLOCKED")
    assert ledger.unblock("A-", "Plasma").value.status is StockStatus.AVAILABLE
    assert ledger.unblock("A-", "Plasma").failure is Failure.NOT_BLOCKED
    assert ledger.reserve("A-", "Plasma", 2)


# ── snapshot ────────────────────────────────────────────────────────


def test_snapshot_derives_warnings(tmp_path):
    ledger = make_ledger(
        tmp_path,
        "O+,WholeBlood,20,2026-01-08,0,AVAILABLE",
        "O+,Plasma,20,2026-01-09,0,AVAILABLE",
        "A+,Plasma,4,2025-12-31,0,AVAILABLE",
        "B+,Plasma,9,2026-06-01,3,BLOCKED",
    )

    lines = ledger.snapshot(today=date(2026, 1, 1))

    assert [line.record.label for line in lines] == ["O+ WholeBlood", "O+ Plasma", "A+ Plasma", "B+ Plasma"]
    assert lines[0].warnings == (StockWarning.EXPIRING_SOON,)
    assert lines[0].days_to_expiry == 7
    assert lines[1].warnings == ()
    # already expired units are not "expiring soon"
    assert lines[2].warnings == (StockWarning.LOW_STOCK,)
    assert lines[3].warnings == (StockWarning.BLOCKED, StockWarning.RESERVED)


def test_snapshot_is_stable_and_read_only(tmp_path):
    ledger = make_ledger(tmp_path, "O+,WholeBlood,20,2026-01-08,2,AVAILABLE")
    first = ledger.snapshot(today=date(2026, 1, 1))
    assert first == ledger.snapshot(today=date(2026, 1, 1))
    assert isinstance(first, tuple)
    assert file_text(ledger) == "O+,WholeBlood,20,2026-01-08,2,AVAILABLE\n"


def test_totals(tmp_path):
    ledger = make_ledger(
        tmp_path,
        "O+,WholeBlood,20,2030-01-01,2,AVAILABLE",
        "B+,Plasma,9,2030-01-01,3,BLOCKED",
    )
    assert ledger.totals() == {
        "records": 2,
        "units": 29,
        "reserved": 5,
        "available": 24,
        "blocked_units": 9,
    }


# ── persistence ─────────────────────────────────────────────────────


def test_failed_precondition_does_not_rewrite(tmp_path, monkeypatch):
    ledger = make_ledger(tmp_path, "O-,WholeBlood,3,2025-01-01,0,AVAILABLE")

    def boom(rows):
        raise AssertionError("unexpected write")

    monkeypatch.setattr(ledger._file, "write_rows", boom)
    assert not ledger.reserve("O-", "WholeBlood", 4)
    assert not ledger.block("O-", "WholeBlood", 4)
    assert not ledger.consume("O-", "Plasma", 1)


def test_storage_failure_leaves_memory_matching_disk(tmp_path, monkeypatch):
    ledger = make_ledger(tmp_path, "O-,WholeBlood,3,2025-01-01,0,AVAILABLE")
    before = ledger.get("O-", "WholeBlood")

    def fail(rows):
        raise StorageError("disk full")

    monkeypatch.setattr(ledger._file, "write_rows", fail)
    with pytest.raises(StorageError):
        ledger.reserve("O-", "WholeBlood", 2)
    with pytest.raises(StorageError):
        ledger.restock("A+", "Plasma", 2, "2030-01-01")

    assert ledger.get("O-", "WholeBlood") == before
    assert ledger.get("A+", "Plasma") is None
    assert file_text(ledger) == "O-,WholeBlood,3,2025-01-01,0,AVAILABLE\n"


def test_restore_puts_previous_record_back(tmp_path):
    ledger = make_ledger(tmp_path, "O-,WholeBlood,3,2025-01-01,1,AVAILABLE")
    before = ledger.get("O-", "WholeBlood")
    ledger.consume("O-", "WholeBlood", 2)

    ledger.restore(before)

    assert ledger.get("O-", "WholeBlood") == before
    assert file_text(ledger) == "O-,WholeBlood,3,2025-01-01,1,AVAILABLE\n"


def test_legacy_rows_load_alongside_current_ones(tmp_path, caplog):
    ledger = make_ledger(
        tmp_path,
        "O-,WholeBlood,0,2030-01-01,3,AVAILABLE",
        "A+,Plasma,10,2030-01-01,0,AVAILABLE",
    )

    legacy = ledger.get("O-", "WholeBlood")
    assert (legacy.units, legacy.reserved) == (3, 3)
    assert ledger.get("A+", "Plasma").units == 10
    assert not ledger.reserve("O-", "WholeBlood", 1)
    assert "reading 3 on hand" in caplog.text


def test_reload_picks_up_file_changes(tmp_path):
    ledger = make_ledger(tmp_path, "O-,WholeBlood,3,2025-01-01,0,AVAILABLE")
    ledger._file.path.write_text("O-,WholeBlood,9,2025-01-01,0,AVAILABLE\n")
    ledger.reload()
    assert ledger.get("O-", "WholeBlood").units == 9


@pytest.mark.parametrize(
    "lines",
    [
        ("O-,WholeBlood,-3,2025-01-01,0,AVAILABLE",),
        ("O-,WholeBlood,3,2025-01-01,0,AVAILABLE", "O-,WholeBlood,1,2025-01-01,0,AVAILABLE"),
        ("O-,WholeBlood,3,2025-01-01,0",),
        ("O-,WholeBlood,3,2025-01-01,0,RETIRED",),
    ],
)
def test_malformed_inventory_file_is_rejected(tmp_path, lines):
    with pytest.raises(ValidationError, match="line"):
        make_ledger(tmp_path, *lines)


def test_concurrent_reservations_do_not_lose_updates(tmp_path):
    ledger = make_ledger(tmp_path, "O+,WholeBlood,100,2030-01-01,0,AVAILABLE")

    def worker():
        for _ in range(25):
            assert ledger.reserve("O+", "WholeBlood", 1)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert ledger.get("O+", "WholeBlood").reserved == 100
    assert InventoryLedger(ledger._file.path).get("O+", "WholeBlood").reserved == 100
    assert ledger.reserve("O+", "WholeBlood", 1).failure is Failure.INSUFFICIENT_UNITS
