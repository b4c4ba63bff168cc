"""Donor and recipient directory backed by donors.csv / recipients.csv."""

import logging
import threading
from collections.abc import Iterable
from pathlib import Path

from bloodbank import config
from bloodbank.errors import ValidationError
from bloodbank.models import BloodType, Profile, Role
from bloodbank.storage import TableFile

logger = logging.getLogger("bloodbank.profiles")


class ProfileDirectory:
    """Read access for donor matching plus the single write path used by typing tests."""

    def __init__(self, data_dir: str | Path):
        data_dir = Path(data_dir)
        self._files = {
            Role.DONOR: TableFile(data_dir / config.DONORS_FILE),
            Role.RECIPIENT: TableFile(data_dir / config.RECIPIENTS_FILE),
        }
        self._lock = threading.RLock()
        self._profiles: dict[Role, dict[str, Profile]] = {Role.DONOR: {}, Role.RECIPIENT: {}}
        self.reload()

    def reload(self) -> None:
        with self._lock:
            for role, table in self._files.items():
                profiles: dict[str, Profile] = {}
                for lineno, row in enumerate(table.read_rows(), start=1):
                    try:
                        profile = Profile.from_row(row, role)
                    except ValidationError as exc:
                        raise ValidationError(f"{table.path} line {lineno}: {exc}") from exc
                    profiles[profile.id] = profile
                self._profiles[role] = profiles

    def list_profiles(self, role: Role | str) -> list[Profile]:
        role = Role.parse(role, "role")
        with self._lock:
            return list(self._profiles[role].values())

    def load_by_id(self, profile_id: str, role: Role | str | None = None) -> Profile | None:
        """Look a profile up by id, in one role's file or in both (donors first)."""
        roles = [Role.parse(role, "role")] if role is not None else list(Role)
        with self._lock:
            for r in roles:
                profile = self._profiles[r].get(profile_id)
                if profile is not None:
                    return profile
        return None

    def find_by_blood_type(self, blood_types: Iterable[BloodType | str]) -> list[Profile]:
        """Donors typed with any of ``blood_types``, in file order. UNKNOWN never matches."""
        wanted = {BloodType.parse(bt) for bt in blood_types} - {BloodType.UNKNOWN}
        with self._lock:
            return [p for p in self._profiles[Role.DONOR].values() if p.blood_type in wanted]

    def save_profile(self, profile: Profile) -> Profile:
        """Insert or replace a profile and rewrite its role's file."""
        with self._lock:
            profiles = {**self._profiles[profile.role], profile.id: profile}
            self._files[profile.role].write_rows([p.to_row() for p in profiles.values()])
            self._profiles[profile.role] = profiles
        logger.info("Saved %s profile %s", profile.role.value.lower(), profile.id)
        return profile

    def counts(self) -> dict[str, int]:
        with self._lock:
            return {
                "donors": len(self._profiles[Role.DONOR]),
                "recipients": len(self._profiles[Role.RECIPIENT]),
            }
