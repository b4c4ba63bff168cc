"""Domain types: blood types, components, ledger records, requests, tests, profiles."""

import logging
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any

from bloodbank.errors import ValidationError

logger = logging.getLogger("bloodbank.models")


def _norm(value: str) -> str:
    return re.sub(r"[\s_]", "", value).lower()


class _ParseMixin:
    @classmethod
    def parse(cls, value: Any, label: str | None = None):
        """Coerce a member or its (case/space-insensitive) value into a member."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            wanted = _norm(value)
            for member in cls:
                if _norm(member.value) == wanted:
                    return member
        choices = ", ".join(m.value for m in cls)
        raise ValidationError(f"invalid {label or cls.__name__}: {value!r} (expected one of {choices})")


class BloodType(_ParseMixin, str, Enum):
    A_POS = "A+"
    A_NEG = "A-"
    B_POS = "B+"
    B_NEG = "B-"
    AB_POS = "AB+"
    AB_NEG = "AB-"
    O_POS = "O+"
    O_NEG = "O-"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse_known(cls, value: Any, label: str = "blood type") -> "BloodType":
        """Like ``parse`` but rejects UNKNOWN (inventory and requests need a real type)."""
        member = cls.parse(value, label)
        if member is cls.UNKNOWN:
            raise ValidationError(f"{label} must be a known ABO/Rh type, got UNKNOWN")
        return member


KNOWN_BLOOD_TYPES = tuple(t for t in BloodType if t is not BloodType.UNKNOWN)


class Component(_ParseMixin, str, Enum):
    WHOLE_BLOOD = "WholeBlood"
    PLASMA = "Plasma"
    PLATELETS = "Platelets"


class StockStatus(_ParseMixin, str, Enum):
    AVAILABLE = "AVAILABLE"
    BLOCKED = "BLOCKED"


class Urgency(_ParseMixin, str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class RequestStatus(_ParseMixin, str, Enum):
    FULFILLED = "FULFILLED"
    PENDING = "PENDING"


class TestStatus(_ParseMixin, str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class Role(_ParseMixin, str, Enum):
    DONOR = "Donor"
    RECIPIENT = "Recipient"


# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------

def parse_date(value: Any, label: str = "date") -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError(f"invalid {label}: {value!r} (expected YYYY-MM-DD)") from None


def parse_count(value: Any, label: str = "units") -> int:
    """Non-negative integer; accepts ints and digit strings."""
    if isinstance(value, bool):
        raise ValidationError(f"invalid {label}: {value!r}")
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise ValidationError(f"invalid {label}: {value!r}") from None
    if not isinstance(value, int):
        raise ValidationError(f"invalid {label}: {value!r}")
    if value < 0:
        raise ValidationError(f"{label} must be non-negative, got {value}")
    return value


def parse_positive(value: Any, label: str = "units") -> int:
    count = parse_count(value, label)
    if count == 0:
        raise ValidationError(f"{label} must be greater than zero")
    return count


def _expect_fields(row: list[str], count: int, kind: str) -> list[str]:
    if len(row) < count:
        raise ValidationError(f"malformed {kind} row, expected {count} fields: {row!r}")
    return [field.strip() for field in row]


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InventoryRecord:
    blood_type: BloodType
    component: Component
    units: int
    expiration: date
    reserved: int = 0
    status: StockStatus = StockStatus.AVAILABLE

    def __post_init__(self):
        if self.blood_type is BloodType.UNKNOWN:
            raise ValidationError("inventory records need a known blood type")
        if self.units < 0 or self.reserved < 0:
            raise ValidationError(f"negative count on {self.label}")
        if self.reserved > self.units:
            raise ValidationError(
                f"{self.label}: reserved ({self.reserved}) exceeds units on hand ({self.units})"
            )

    @property
    def key(self) -> tuple[BloodType, Component]:
        return self.blood_type, self.component

    @property
    def label(self) -> str:
        return f"{self.blood_type.value} {self.component.value}"

    @property
    def available(self) -> int:
        """Units that may still be reserved or consumed."""
        return self.units - self.reserved

    @property
    def is_blocked(self) -> bool:
        return self.status is StockStatus.BLOCKED

    def to_row(self) -> list[str]:
        return [
            self.blood_type.value,
            self.component.value,
            str(self.units),
            self.expiration.isoformat(),
            str(self.reserved),
            self.status.value,
        ]

    @classmethod
    def from_row(cls, row: list[str]) -> "InventoryRecord":
        blood_type, component, units, expiration, reserved, status = _expect_fields(row, 6, "inventory")[:6]
        units = parse_count(units)
        reserved = parse_count(reserved, "reserved units")
        if reserved > units:
            # Older files stored units left after reserving, not units on hand.
            logger.warning(
                "Inventory row %s counts reserved units outside units; reading %d on hand",
                ",".join(row), units + reserved,
            )
            units += reserved
        return cls(
            blood_type=BloodType.parse_known(blood_type),
            component=Component.parse(component, "component"),
            units=units,
            expiration=parse_date(expiration, "expiration"),
            reserved=reserved,
            status=StockStatus.parse(status, "status"),
        )

    def to_dict(self) -> dict:
        return {
            "blood_type": self.blood_type.value,
            "component": self.component.value,
            "units": self.units,
            "reserved": self.reserved,
            "available": self.available,
            "expiration": self.expiration.isoformat(),
            "status": self.status.value,
        }


# ---------------------------------------------------------------------------
# Requests and tests
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BloodRequest:
    request_id: str
    recipient_id: str
    blood_type: BloodType
    units: int
    urgency: Urgency
    status: RequestStatus

    def to_row(self) -> list[str]:
        return [
            self.request_id,
            self.recipient_id,
            self.blood_type.value,
            str(self.units),
            self.urgency.value,
            self.status.value,
        ]

    @classmethod
    def from_row(cls, row: list[str]) -> "BloodRequest":
        request_id, recipient_id, blood_type, units, urgency, status = _expect_fields(row, 6, "request")[:6]
        return cls(
            request_id=request_id,
            recipient_id=recipient_id,
            blood_type=BloodType.parse_known(blood_type),
            units=parse_count(units),
            urgency=Urgency.parse(urgency, "urgency"),
            status=RequestStatus.parse(status, "request status"),
        )

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "recipient_id": self.recipient_id,
            "blood_type": self.blood_type.value,
            "units": self.units,
            "urgency": self.urgency.value,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class TestRequest:
    __test__ = False  # keep pytest from collecting this as a test class

    test_id: str
    subject_id: str
    role: Role
    requested_on: date
    status: TestStatus = TestStatus.PENDING
    resolved_type: BloodType | None = None

    @property
    def is_completed(self) -> bool:
        return self.status is TestStatus.COMPLETED

    def to_row(self) -> list[str]:
        return [
            self.test_id,
            self.subject_id,
            self.role.value,
            self.requested_on.isoformat(),
            self.status.value,
            self.resolved_type.value if self.resolved_type else "",
        ]

    @classmethod
    def from_row(cls, row: list[str]) -> "TestRequest":
        # Pending rows end with an empty resolved type; tolerate a missing trailing field.
        if len(row) == 5:
            row = [*row, ""]
        test_id, subject_id, role, requested_on, status, resolved = _expect_fields(row, 6, "test")[:6]
        return cls(
            test_id=test_id,
            subject_id=subject_id,
            role=Role.parse(role, "subject role"),
            requested_on=parse_date(requested_on, "request date"),
            status=TestStatus.parse(status, "test status"),
            resolved_type=BloodType.parse(resolved, "resolved type") if resolved else None,
        )

    def to_dict(self) -> dict:
        return {
            "test_id": self.test_id,
            "subject_id": self.subject_id,
            "role": self.role.value,
            "requested_on": self.requested_on.isoformat(),
            "status": self.status.value,
            "resolved_type": self.resolved_type.value if self.resolved_type else None,
        }


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------

_PHONE = re.compile(r"\d{10}")
_EMAIL = re.compile(r"^[A-Za-z0-9+_.-]+@[A-Za-z0-9.-]+$")


def is_valid_contact(contact: str) -> bool:
    return bool(_PHONE.fullmatch(contact) or _EMAIL.match(contact))


@dataclass(frozen=True)
class Profile:
    """A donor or recipient. Role-specific fields are ``None`` for the other role."""

    id: str
    name: str
    age: int
    blood_type: BloodType
    contact: str
    role: Role
    last_donation: date | None = None
    urgency: Urgency | None = None

    def __post_init__(self):
        if not self.id or "," in self.id:
            raise ValidationError(f"invalid profile id: {self.id!r}")
        # Legacy rows may carry an empty contact; anything else must be a phone or e-mail.
        if self.contact and not is_valid_contact(self.contact):
            raise ValidationError("contact must be a 10-digit phone number or a valid e-mail address")
        if self.role is Role.RECIPIENT and self.urgency is None:
            object.__setattr__(self, "urgency", Urgency.MEDIUM)

    @property
    def is_donor(self) -> bool:
        return self.role is Role.DONOR

    @property
    def has_known_type(self) -> bool:
        return self.blood_type is not BloodType.UNKNOWN

    def to_row(self) -> list[str]:
        row = [self.id, self.name, str(self.age), self.blood_type.value, self.contact]
        if self.is_donor:
            row.append(self.last_donation.isoformat() if self.last_donation else "")
        else:
            row.append(self.urgency.value)
        return row

    @classmethod
    def from_row(cls, row: list[str], role: Role) -> "Profile":
        fields = _expect_fields(row, 5, f"{role.value.lower()} profile")
        extra = fields[5] if len(fields) > 5 else ""
        return cls(
            id=fields[0],
            name=fields[1],
            age=parse_count(fields[2], "age"),
            blood_type=BloodType.parse(fields[3], "blood type"),
            contact=fields[4],
            role=role,
            last_donation=parse_date(extra, "last donation date") if role is Role.DONOR and extra else None,
            urgency=Urgency.parse(extra, "urgency") if role is Role.RECIPIENT and extra else None,
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "age": self.age,
            "blood_type": self.blood_type.value,
            "contact": self.contact,
            "role": self.role.value,
        }
        if self.is_donor:
            data["last_donation"] = self.last_donation.isoformat() if self.last_donation else None
        else:
            data["urgency"] = self.urgency.value
        return data
