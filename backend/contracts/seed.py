"""Initial register contents used when no ``appData`` has been saved yet."""

from __future__ import annotations

from typing import List, Tuple

from werkzeug.security import generate_password_hash

from .models import AppData, Role, User, Ward

# (id, username, password, full name, role)
INITIAL_USERS: List[Tuple[int, str, str, str, Role]] = [
    (1, "admin", "admin123", "Quản trị viên", Role.ADMIN),
    (2, "user", "user123", "Nhân viên", Role.USER),
]

INITIAL_WARDS: List[Ward] = [
    Ward(id=1, ward_name="Phường 1", ward_code="01"),
    Ward(id=2, ward_name="Phường 2", ward_code="02"),
    Ward(id=3, ward_name="Phường 3", ward_code="03"),
    Ward(id=4, ward_name="Phường 4", ward_code="04"),
    Ward(id=5, ward_name="Xã An Phước", ward_code="05"),
]


def initial_users() -> List[User]:
    """Seed accounts with hashed secrets."""
    return [
        User(
            id=uid,
            username=username,
            password=generate_password_hash(password),
            full_name=full_name,
            role=role,
        )
        for uid, username, password, full_name, role in INITIAL_USERS
    ]


def initial_data() -> AppData:
    return AppData(
        users=tuple(initial_users()),
        wards=tuple(INITIAL_WARDS),
        contracts=(),
        liquidations=(),
    )
