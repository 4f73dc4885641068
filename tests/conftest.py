from datetime import datetime, timedelta, timezone

import pytest
from werkzeug.security import generate_password_hash

from backend.contracts.models import AppData, Role, User, Ward
from backend.contracts.storage import MemoryStore
from backend.contracts.store import ContractStore, StorePolicy


class FakeClock:
    """Deterministic clock; each call advances by one second."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current

    def set(self, moment: datetime) -> None:
        self.now = moment


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc))


@pytest.fixture()
def app_data() -> AppData:
    return AppData(
        users=(
            User(id=1, username="admin", password=generate_password_hash("admin123"),
                 full_name="Quản trị viên", role=Role.ADMIN),
            # Older backups carry plaintext secrets.
            User(id=2, username="staff", password="staff-pass", full_name="Nhân viên", role=Role.USER),
        ),
        wards=(
            Ward(id=1, ward_name="Phường 1", ward_code="01"),
            Ward(id=2, ward_name="Phường 2", ward_code="02"),
        ),
    )


@pytest.fixture()
def gateway() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def store(gateway, app_data, clock) -> ContractStore:
    return ContractStore(gateway, app_data, policy=StorePolicy(), clock=clock)


@pytest.fixture()
def contract_form():
    return {
        "customerName": "Nguyễn Văn A",
        "mapSheetNumber": "12",
        "plotNumber": "345",
        "wardId": "1",
        "notes": "Đo đạc ranh giới",
    }
