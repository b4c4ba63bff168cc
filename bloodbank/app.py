"""Blood Bank service. FastAPI wrapper around the inventory ledger and workflows."""

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from bloodbank import __version__, config
from bloodbank.bank import BloodBank, open_bank
from bloodbank.compat import compatible_donor_types
from bloodbank.errors import NotFoundError, PreconditionFailed, StorageError, ValidationError
from bloodbank.models import BloodType, Component, Profile, Role, Urgency

logger = logging.getLogger("bloodbank.app")

_bank: BloodBank | None = None


def get_bank() -> BloodBank:
    global _bank
    if _bank is None:
        _bank = open_bank(config.DATA_DIR)
    return _bank


@asynccontextmanager
async def lifespan(app: FastAPI):
    get_bank()
    logger.info("Blood bank service started")
    yield
    logger.info("Blood bank service stopped")


app = FastAPI(title="Blood Bank", version=__version__, lifespan=lifespan)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

_STATUS_BY_ERROR = [
    (ValidationError, 422),
    (NotFoundError, 404),
    (PreconditionFailed, 409),
    (StorageError, 503),
]


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handler


for _exc_type, _status in _STATUS_BY_ERROR:
    app.add_exception_handler(_exc_type, _error_handler(_status))

# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class StockKey(BaseModel):
    blood_type: BloodType
    component: Component


class RestockBody(StockKey):
    units: int = Field(ge=0)
    expiration: date


class QuantityBody(StockKey):
    units: int = Field(gt=0)


class BlockBody(StockKey):
    units: int = Field(default=0, ge=0)


class BlockTypeBody(BaseModel):
    blood_type: BloodType


class BloodRequestCreate(BaseModel):
    recipient_id: str = Field(min_length=1)
    blood_type: BloodType
    units: int = Field(gt=0)
    urgency: Urgency = Urgency.MEDIUM


class ProfileBody(BaseModel):
    name: str
    age: int = Field(ge=0)
    blood_type: BloodType = BloodType.UNKNOWN
    contact: str
    last_donation: Optional[date] = None
    urgency: Optional[Urgency] = None


class TestCreate(BaseModel):
    subject_id: str
    role: Role


class TestResult(BaseModel):
    blood_type: BloodType


# ---------------------------------------------------------------------------
# Endpoints: inventory
# ---------------------------------------------------------------------------


@app.get("/health")
def health():
    return {"status": "ok", "service": "bloodbank"}


@app.get("/inventory")
def inventory(bank: BloodBank = Depends(get_bank)):
    return {"inventory": [line.to_dict() for line in bank.ledger.snapshot()]}


@app.post("/inventory/restock")
def restock(body: RestockBody, bank: BloodBank = Depends(get_bank)):
    record = bank.ledger.restock(body.blood_type, body.component, body.units, body.expiration)
    return record.to_dict()


@app.post("/inventory/reserve")
def reserve(body: QuantityBody, bank: BloodBank = Depends(get_bank)):
    outcome = bank.ledger.reserve(body.blood_type, body.component, body.units).raise_for_failure()
    return outcome.value.to_dict()


@app.post("/inventory/release")
def release(body: QuantityBody, bank: BloodBank = Depends(get_bank)):
    outcome = bank.ledger.release(body.blood_type, body.component, body.units).raise_for_failure()
    return outcome.value.to_dict()


@app.post("/inventory/block")
def block(body: BlockBody, bank: BloodBank = Depends(get_bank)):
    outcome = bank.ledger.block(body.blood_type, body.component, body.units).raise_for_failure()
    return outcome.value.to_dict()


@app.post("/inventory/block-type")
def block_type(body: BlockTypeBody, bank: BloodBank = Depends(get_bank)):
    outcome = bank.ledger.block_type(body.blood_type).raise_for_failure()
    return {"blocked": [r.to_dict() for r in outcome.value]}


@app.post("/inventory/block-all")
def block_all(bank: BloodBank = Depends(get_bank)):
    return {"blocked_records": bank.ledger.block_all()}


@app.post("/inventory/unblock")
def unblock(body: StockKey, bank: BloodBank = Depends(get_bank)):
    outcome = bank.ledger.unblock(body.blood_type, body.component).raise_for_failure()
    return outcome.value.to_dict()


@app.get("/inventory/blocked")
def fully_blocked(bank: BloodBank = Depends(get_bank)):
    return {"fully_blocked": bank.ledger.is_fully_blocked()}


@app.get("/inventory/blocked/{blood_type}")
def blocked(blood_type: str, bank: BloodBank = Depends(get_bank)):
    bt = BloodType.parse_known(blood_type)
    return {"blood_type": bt.value, "blocked": bank.ledger.is_blocked(bt)}


@app.get("/compatibility/{blood_type}")
def compatibility(blood_type: str):
    recipient = BloodType.parse(blood_type, "blood type")
    return {
        "recipient": recipient.value,
        "donor_types": [t.value for t in compatible_donor_types(recipient)],
    }


# ---------------------------------------------------------------------------
# Endpoints: requests
# ---------------------------------------------------------------------------


@app.post("/requests", status_code=201)
def create_request(body: BloodRequestCreate, bank: BloodBank = Depends(get_bank)):
    result = bank.engine.fulfill(body.recipient_id, body.blood_type, body.units, body.urgency)
    return result.to_dict()


@app.get("/requests")
def list_requests(recipient_id: Optional[str] = None, bank: BloodBank = Depends(get_bank)):
    return {"requests": [r.to_dict() for r in bank.engine.history(recipient_id)]}


# ---------------------------------------------------------------------------
# Endpoints: profiles
# ---------------------------------------------------------------------------


@app.get("/profiles/{role}")
def list_profiles(role: str, bank: BloodBank = Depends(get_bank)):
    return {"profiles": [p.to_dict() for p in bank.directory.list_profiles(Role.parse(role, "role"))]}


@app.get("/profiles/{role}/{profile_id}")
def get_profile(role: str, profile_id: str, bank: BloodBank = Depends(get_bank)):
    profile = bank.directory.load_by_id(profile_id, Role.parse(role, "role"))
    if profile is None:
        raise NotFoundError(f"no {role.lower()} with id {profile_id}")
    return profile.to_dict()


@app.put("/profiles/{role}/{profile_id}")
def put_profile(role: str, profile_id: str, body: ProfileBody, bank: BloodBank = Depends(get_bank)):
    profile = Profile(
        id=profile_id,
        name=body.name,
        age=body.age,
        blood_type=body.blood_type,
        contact=body.contact,
        role=Role.parse(role, "role"),
        last_donation=body.last_donation,
        urgency=body.urgency,
    )
    return bank.directory.save_profile(profile).to_dict()


# ---------------------------------------------------------------------------
# Endpoints: blood-typing tests
# ---------------------------------------------------------------------------


@app.post("/tests", status_code=201)
def create_test(body: TestCreate, bank: BloodBank = Depends(get_bank)):
    outcome = bank.typing.request_test(body.subject_id, body.role).raise_for_failure()
    return outcome.value.to_dict()


@app.get("/tests")
def list_tests(subject_id: Optional[str] = None, bank: BloodBank = Depends(get_bank)):
    tests = bank.typing.tests_for(subject_id) if subject_id else bank.typing.pending()
    return {"tests": [t.to_dict() for t in tests]}


@app.post("/tests/{test_id}/complete")
def complete_test(test_id: str, body: TestResult, bank: BloodBank = Depends(get_bank)):
    outcome = bank.typing.complete_test(test_id, body.blood_type).raise_for_failure()
    return outcome.value.to_dict()


@app.get("/reports")
def reports(bank: BloodBank = Depends(get_bank)):
    return bank.report()


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
