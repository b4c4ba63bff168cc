"""Blood-typing tests: PENDING -> COMPLETED, resolving UNKNOWN profile types."""

import logging
import threading
import uuid
from dataclasses import replace
from datetime import date
from pathlib import Path

from bloodbank.errors import Failure, Outcome, ValidationError
from bloodbank.models import BloodType, Role, TestRequest, TestStatus
from bloodbank.profiles import ProfileDirectory
from bloodbank.storage import TableFile

logger = logging.getLogger("bloodbank.serology")


class TypingWorkflow:
    def __init__(self, path: str | Path, directory: ProfileDirectory):
        self._file = TableFile(path)
        self._lock = threading.RLock()
        self._tests: dict[str, TestRequest] = {}
        self.directory = directory
        self.reload()

    def reload(self) -> None:
        tests: dict[str, TestRequest] = {}
        with self._lock:
            for lineno, row in enumerate(self._file.read_rows(), start=1):
                try:
                    test = TestRequest.from_row(row)
                except ValidationError as exc:
                    raise ValidationError(f"{self._file.path} line {lineno}: {exc}") from exc
                tests[test.test_id] = test
            self._tests = tests

    def request_test(self, subject_id: str, role, today: date | None = None) -> Outcome:
        """Open a PENDING typing test for a subject whose blood type is UNKNOWN.

        Outstanding tests for the same subject are not de-duplicated.
        """
        role = Role.parse(role, "subject role")
        subject = self.directory.load_by_id(subject_id, role)
        if subject is None:
            return Outcome.fail(Failure.NOT_FOUND, f"no {role.value.lower()} with id {subject_id}")
        if subject.has_known_type:
            return Outcome.fail(Failure.TYPE_KNOWN, f"blood type already known: {subject.blood_type.value}")

        test = TestRequest(
            test_id=str(uuid.uuid4()),
            subject_id=subject_id,
            role=role,
            requested_on=today or date.today(),
        )
        with self._lock:
            self._file.append_row(test.to_row())
            self._tests[test.test_id] = test
        logger.info("Typing test %s requested for %s %s", test.test_id, role.value, subject_id)
        return Outcome.success(test)

    def complete_test(self, test_id: str, resolved_type) -> Outcome:
        """Record the typing result once and write it into the subject's profile."""
        resolved = BloodType.parse_known(resolved_type, "resolved blood type")
        with self._lock:
            test = self._tests.get(test_id)
            if test is None:
                return Outcome.fail(Failure.NOT_FOUND, f"no test with id {test_id}")
            if test.is_completed:
                return Outcome.fail(Failure.ALREADY_COMPLETED)
            subject = self.directory.load_by_id(test.subject_id, test.role)
            if subject is None:
                return Outcome.fail(Failure.NOT_FOUND, f"no {test.role.value.lower()} with id {test.subject_id}")

            # Profile first: rewriting it is idempotent, so a failed test-file
            # write leaves the test PENDING and a retry can still complete it.
            self.directory.save_profile(replace(subject, blood_type=resolved))
            completed = replace(test, status=TestStatus.COMPLETED, resolved_type=resolved)
            tests = {**self._tests, test_id: completed}
            self._file.write_rows([t.to_row() for t in tests.values()])
            self._tests = tests
        logger.info("Typing test %s completed: %s %s is %s", test_id, test.role.value, test.subject_id, resolved.value)
        return Outcome.success(completed)

    def get(self, test_id: str) -> TestRequest | None:
        with self._lock:
            return self._tests.get(test_id)

    def tests_for(self, subject_id: str) -> list[TestRequest]:
        with self._lock:
            return [t for t in self._tests.values() if t.subject_id == subject_id]

    def pending(self) -> list[TestRequest]:
        with self._lock:
            return [t for t in self._tests.values() if t.status is TestStatus.PENDING]

    def counts(self) -> dict[str, int]:
        with self._lock:
            pending = sum(1 for t in self._tests.values() if t.status is TestStatus.PENDING)
            return {"tests": len(self._tests), "pending_tests": pending}
