"""Inventory ledger: (blood type, component) stock records and their mutation rules.

The whole record set lives in memory, keyed by (blood type, component), and
is written back in full after every successful mutation. Each mutation runs
inside one lock: build the new table, persist it, then swap it in. A failed
write raises StorageError and leaves memory equal to what is on disk.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from pathlib import Path

from bloodbank import config
from bloodbank.errors import Failure, Outcome, ValidationError
from bloodbank.models import (
    BloodType,
    Component,
    InventoryRecord,
    StockStatus,
    parse_count,
    parse_date,
    parse_positive,
)
from bloodbank.storage import TableFile

logger = logging.getLogger("bloodbank.ledger")

Key = tuple[BloodType, Component]


class StockWarning(str, Enum):
    LOW_STOCK = "low_stock"
    EXPIRING_SOON = "expiring_soon"
    BLOCKED = "blocked"
    RESERVED = "reserved"


@dataclass(frozen=True)
class StockLine:
    """One record as shown in an inventory listing, with derived warnings."""

    record: InventoryRecord
    days_to_expiry: int
    warnings: tuple[StockWarning, ...]

    def to_dict(self) -> dict:
        return self.record.to_dict() | {
            "days_to_expiry": self.days_to_expiry,
            "warnings": [w.value for w in self.warnings],
        }


class InventoryLedger:
    def __init__(
        self,
        path: str | Path,
        low_stock_threshold: int = config.LOW_STOCK_THRESHOLD,
        expiry_warning_days: int = config.EXPIRY_WARNING_DAYS,
    ):
        self._file = TableFile(path)
        self._lock = threading.RLock()
        self._records: dict[Key, InventoryRecord] = {}
        self.low_stock_threshold = low_stock_threshold
        self.expiry_warning_days = expiry_warning_days
        self.reload()

    def __len__(self) -> int:
        return len(self._records)

    @property
    def lock(self) -> threading.RLock:
        """The ledger's critical section, for callers composing several steps atomically."""
        return self._lock

    # -- persistence --

    def reload(self) -> None:
        """Re-read the inventory file, replacing the in-memory table."""
        records: dict[Key, InventoryRecord] = {}
        with self._lock:
            for lineno, row in enumerate(self._file.read_rows(), start=1):
                try:
                    record = InventoryRecord.from_row(row)
                except ValidationError as exc:
                    raise ValidationError(f"{self._file.path} line {lineno}: {exc}") from exc
                if record.key in records:
                    raise ValidationError(f"{self._file.path} line {lineno}: duplicate record for {record.label}")
                records[record.key] = record
            self._records = records
        logger.debug("Loaded %d inventory records from %s", len(records), self._file.path)

    def _commit(self, records: dict[Key, InventoryRecord]) -> None:
        self._file.write_rows([r.to_row() for r in records.values()])
        self._records = records

    def _put(self, record: InventoryRecord) -> None:
        self._commit({**self._records, record.key: record})

    # -- mutations --

    def restock(self, blood_type, component, units, expiration) -> InventoryRecord:
        """Add units to a record, creating it AVAILABLE if absent. Expiration is last-write-wins."""
        key = _key(blood_type, component)
        units = parse_count(units)
        expiration = parse_date(expiration, "expiration")
        with self._lock:
            current = self._records.get(key)
            if current is None:
                record = InventoryRecord(key[0], key[1], units=units, expiration=expiration)
            else:
                record = replace(current, units=current.units + units, expiration=expiration)
            self._put(record)
        logger.info("Restocked %s: +%d units (now %d), expires %s", record.label, units, record.units, expiration)
        return record

    def reserve(self, blood_type, component, units) -> Outcome:
        """Earmark ``units`` of an AVAILABLE record; they stay on hand but stop being allocable."""
        key = _key(blood_type, component)
        units = parse_positive(units)
        with self._lock:
            current = self._records.get(key)
            failure = _check_usable(current, units)
            if failure:
                logger.info("Reserve %d of %s refused: %s", units, _label(key), failure.value)
                return Outcome.fail(failure)
            record = replace(current, reserved=current.reserved + units)
            self._put(record)
        logger.info("Reserved %d units of %s (reserved now %d)", units, record.label, record.reserved)
        return Outcome.success(record)

    def release(self, blood_type, component, units) -> Outcome:
        """Return previously reserved units to availability."""
        key = _key(blood_type, component)
        units = parse_positive(units)
        with self._lock:
            current = self._records.get(key)
            if current is None:
                return Outcome.fail(Failure.NOT_FOUND)
            if current.reserved < units:
                return Outcome.fail(
                    Failure.INSUFFICIENT_UNITS,
                    f"only {current.reserved} units reserved for {current.label}",
                )
            record = replace(current, reserved=current.reserved - units)
            self._put(record)
        logger.info("Released %d reserved units of %s", units, record.label)
        return Outcome.success(record)

    def consume(self, blood_type, component, units) -> Outcome:
        """Take units out of stock.

        With ``component=None`` the first AVAILABLE record of the type (in
        storage order) holding enough available units is used; other
        records are left untouched.
        """
        units = parse_positive(units)
        with self._lock:
            if component is None:
                bt = BloodType.parse_known(blood_type)
                candidates = [r for r in self._records.values() if r.blood_type is bt]
                current = next((r for r in candidates if _check_usable(r, units) is None), None)
                if current is None:
                    failure = _consume_any_failure(candidates, units)
                    logger.info("Consume %d of %s refused: %s", units, bt.value, failure.value)
                    return Outcome.fail(failure)
            else:
                key = _key(blood_type, component)
                current = self._records.get(key)
                failure = _check_usable(current, units)
                if failure:
                    logger.info("Consume %d of %s refused: %s", units, _label(key), failure.value)
                    return Outcome.fail(failure)
            record = replace(current, units=current.units - units)
            self._put(record)
        logger.info("Consumed %d units of %s (%d left)", units, record.label, record.units)
        return Outcome.success(record)

    def block(self, blood_type, component, units) -> Outcome:
        """Put an AVAILABLE record on hold.

        The record must hold at least ``units`` available units, but the
        quantity is only checked: units and reservations stay as they are.
        """
        key = _key(blood_type, component)
        units = parse_count(units)
        with self._lock:
            current = self._records.get(key)
            if current is None:
                return Outcome.fail(Failure.NOT_FOUND)
            if current.is_blocked:
                return Outcome.fail(Failure.ALREADY_BLOCKED)
            if current.available < units:
                return Outcome.fail(
                    Failure.INSUFFICIENT_UNITS,
                    f"{current.label} holds {current.available} available units, {units} requested",
                )
            record = replace(current, status=StockStatus.BLOCKED)
            self._put(record)
        logger.info("Blocked %s", record.label)
        return Outcome.success(record)

    def block_type(self, blood_type) -> Outcome:
        """Block every AVAILABLE record of one blood type, any component."""
        bt = BloodType.parse_known(blood_type)
        with self._lock:
            targets = [k for k, r in self._records.items() if r.blood_type is bt and not r.is_blocked]
            if not targets:
                return Outcome.fail(Failure.NOT_FOUND, f"no available {bt.value} stock to block")
            records = dict(self._records)
            for k in targets:
                records[k] = replace(records[k], status=StockStatus.BLOCKED)
            self._commit(records)
        logger.info("Blocked all %s stock (%d records)", bt.value, len(targets))
        return Outcome.success([records[k] for k in targets])

    def block_all(self) -> int:
        """Block every record. Returns how many records the ledger holds."""
        with self._lock:
            records = {k: replace(r, status=StockStatus.BLOCKED) for k, r in self._records.items()}
            self._commit(records)
        logger.warning("Entire stock blocked (%d records)", len(records))
        return len(records)

    def unblock(self, blood_type, component) -> Outcome:
        key = _key(blood_type, component)
        with self._lock:
            current = self._records.get(key)
            if current is None:
                return Outcome.fail(Failure.NOT_FOUND)
            if not current.is_blocked:
                return Outcome.fail(Failure.NOT_BLOCKED)
            record = replace(current, status=StockStatus.AVAILABLE)
            self._put(record)
        logger.info("Unblocked %s", record.label)
        return Outcome.success(record)

    def restore(self, record: InventoryRecord) -> None:
        """Put a previously read record back verbatim.

        Compensates a mutation whose follow-up write in another file failed.
        """
        with self._lock:
            self._put(record)
        logger.warning("Restored %s to %d units, %d reserved", record.label, record.units, record.reserved)

    # -- queries --

    def get(self, blood_type, component) -> InventoryRecord | None:
        key = _key(blood_type, component)
        with self._lock:
            return self._records.get(key)

    def records(self) -> tuple[InventoryRecord, ...]:
        with self._lock:
            return tuple(self._records.values())

    def is_blocked(self, blood_type) -> bool:
        bt = BloodType.parse_known(blood_type)
        with self._lock:
            return any(r.is_blocked for r in self._records.values() if r.blood_type is bt)

    def is_fully_blocked(self) -> bool:
        with self._lock:
            return bool(self._records) and all(r.is_blocked for r in self._records.values())

    def snapshot(self, today: date | None = None) -> tuple[StockLine, ...]:
        """Ordered, immutable listing of every record with its warnings."""
        today = today or date.today()
        with self._lock:
            records = tuple(self._records.values())
        return tuple(self._stock_line(r, today) for r in records)

    def totals(self) -> dict[str, int]:
        with self._lock:
            units = sum(r.units for r in self._records.values())
            reserved = sum(r.reserved for r in self._records.values())
            blocked = sum(r.units for r in self._records.values() if r.is_blocked)
        return {
            "records": len(self._records),
            "units": units,
            "reserved": reserved,
            "available": units - reserved,
            "blocked_units": blocked,
        }

    def _stock_line(self, record: InventoryRecord, today: date) -> StockLine:
        days = (record.expiration - today).days
        warnings = []
        if record.units < self.low_stock_threshold:
            warnings.append(StockWarning.LOW_STOCK)
        if 0 <= days <= self.expiry_warning_days:
            warnings.append(StockWarning.EXPIRING_SOON)
        if record.is_blocked:
            warnings.append(StockWarning.BLOCKED)
        if record.reserved > 0:
            warnings.append(StockWarning.RESERVED)
        return StockLine(record=record, days_to_expiry=days, warnings=tuple(warnings))


def _key(blood_type, component) -> Key:
    return BloodType.parse_known(blood_type), Component.parse(component, "component")


def _label(key: Key) -> str:
    return f"{key[0].value} {key[1].value}"


def _check_usable(record: InventoryRecord | None, units: int) -> Failure | None:
    """Why ``units`` cannot be taken from ``record`` (None when they can)."""
    if record is None:
        return Failure.NOT_FOUND
    if record.is_blocked:
        return Failure.BLOCKED
    if record.available < units:
        return Failure.INSUFFICIENT_UNITS
    return None


def _consume_any_failure(candidates: list[InventoryRecord], units: int) -> Failure:
    if not candidates:
        return Failure.NOT_FOUND
    if all(r.is_blocked for r in candidates):
        return Failure.BLOCKED
    return Failure.INSUFFICIENT_UNITS
