"""Blood request fulfillment from the ledger, with compatible-donor fallback."""

import logging
import threading
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path

from bloodbank.compat import compatible_donor_types
from bloodbank.errors import StorageError, ValidationError
from bloodbank.ledger import InventoryLedger
from bloodbank.models import (
    BloodRequest,
    BloodType,
    Component,
    Profile,
    RequestStatus,
    Urgency,
    parse_positive,
)
from bloodbank.profiles import ProfileDirectory
from bloodbank.storage import TableFile

logger = logging.getLogger("bloodbank.fulfillment")


def generate_request_id() -> str:
    return f"BR-{uuid.uuid4().hex[:12].upper()}"


class FulfillmentOutcome(str, Enum):
    FULFILLED = "fulfilled"
    PENDING = "pending"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class DonorContact:
    donor_id: str
    name: str
    contact: str
    blood_type: BloodType

    @classmethod
    def from_profile(cls, profile: Profile) -> "DonorContact":
        return cls(profile.id, profile.name, profile.contact, profile.blood_type)

    def to_dict(self) -> dict:
        return {
            "donor_id": self.donor_id,
            "name": self.name,
            "contact": self.contact,
            "blood_type": self.blood_type.value,
        }


@dataclass(frozen=True)
class FulfillmentResult:
    request: BloodRequest
    outcome: FulfillmentOutcome
    component: Component | None = None
    contacts: tuple[DonorContact, ...] = ()

    @property
    def fulfilled(self) -> bool:
        return self.outcome is FulfillmentOutcome.FULFILLED

    def to_dict(self) -> dict:
        return {
            "request": self.request.to_dict(),
            "outcome": self.outcome.value,
            "component": self.component.value if self.component else None,
            "contacts": [c.to_dict() for c in self.contacts],
        }


class RequestLog:
    """Append-only record of every blood request and how it ended."""

    def __init__(self, path: str | Path):
        self._file = TableFile(path)
        self._lock = threading.RLock()

    def append(self, request: BloodRequest) -> None:
        with self._lock:
            self._file.append_row(request.to_row())

    def list(self, recipient_id: str | None = None) -> list[BloodRequest]:
        with self._lock:
            rows = self._file.read_rows()
        requests = []
        for lineno, row in enumerate(rows, start=1):
            try:
                requests.append(BloodRequest.from_row(row))
            except ValidationError as exc:
                raise ValidationError(f"{self._file.path} line {lineno}: {exc}") from exc
        if recipient_id is not None:
            requests = [r for r in requests if r.recipient_id == recipient_id]
        return requests


class FulfillmentEngine:
    def __init__(self, ledger: InventoryLedger, directory: ProfileDirectory, log: RequestLog):
        self.ledger = ledger
        self.directory = directory
        self.log = log

    def fulfill(self, recipient_id: str, blood_type, units, urgency) -> FulfillmentResult:
        """Serve a request from stock, or record it PENDING and suggest compatible donors.

        The blocked check, the consumption and the request record all happen
        under the ledger lock. Suggested donors are contacts only; nothing is
        reserved for them.
        """
        if not recipient_id:
            raise ValidationError("recipient id is required")
        blood_type = BloodType.parse_known(blood_type)
        units = parse_positive(units)
        urgency = Urgency.parse(urgency, "urgency")

        with self.ledger.lock:
            if self.ledger.is_blocked(blood_type) or self.ledger.is_fully_blocked():
                request = self._record(recipient_id, blood_type, units, urgency, RequestStatus.PENDING)
                logger.info("Request %s refused: %s stock is blocked", request.request_id, blood_type.value)
                return FulfillmentResult(request=request, outcome=FulfillmentOutcome.BLOCKED)

            consumed = self.ledger.consume(blood_type, None, units)
            status = RequestStatus.FULFILLED if consumed else RequestStatus.PENDING
            try:
                request = self._record(recipient_id, blood_type, units, urgency, status)
            except StorageError:
                if consumed:
                    taken = consumed.value
                    self.ledger.restore(replace(taken, units=taken.units + units))
                raise

        if consumed:
            logger.info("Request %s fulfilled from %s", request.request_id, consumed.value.label)
            return FulfillmentResult(
                request=request,
                outcome=FulfillmentOutcome.FULFILLED,
                component=consumed.value.component,
            )

        contacts = tuple(DonorContact.from_profile(p) for p in self.compatible_donors(blood_type))
        logger.info(
            "Request %s pending (%s); %d compatible donor(s) suggested",
            request.request_id, consumed.failure.value, len(contacts),
        )
        return FulfillmentResult(request=request, outcome=FulfillmentOutcome.PENDING, contacts=contacts)

    def compatible_donors(self, blood_type) -> list[Profile]:
        return self.directory.find_by_blood_type(compatible_donor_types(blood_type))

    def history(self, recipient_id: str | None = None) -> list[BloodRequest]:
        return self.log.list(recipient_id)

    def _record(self, recipient_id, blood_type, units, urgency, status) -> BloodRequest:
        request = BloodRequest(
            request_id=generate_request_id(),
            recipient_id=recipient_id,
            blood_type=blood_type,
            units=units,
            urgency=urgency,
            status=status,
        )
        self.log.append(request)
        return request
