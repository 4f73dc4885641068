from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# ---------------------------------------------------------------------------
# Enumerations (values are the strings stored in appData / backups)
# ---------------------------------------------------------------------------


class Role(str, Enum):
    ADMIN = "Admin"
    USER = "User"


class ContractStatus(str, Enum):
    PROCESSING = "Đang xử lý"
    COMPLETED = "Hoàn thành"
    CANCELLED = "Đã hủy"


class LiquidationType(str, Enum):
    COMPLETE = "Thanh lý hoàn tất"
    CANCEL = "Thanh lý hủy hợp đồng"


def parse_enum(enum_cls, value):
    """Accept either the stored value ('Đã hủy') or the member name ('cancelled')."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        try:
            return enum_cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"{value!r} is not a valid {enum_cls.__name__}") from None


# Fields a contract may change after creation.
EDITABLE_FIELDS: Tuple[str, ...] = (
    "customer_name",
    "map_sheet_number",
    "plot_number",
    "ward_id",
    "notes",
)


@dataclass(frozen=True)
class User:
    """A staff account. ``password`` is either a werkzeug hash or legacy plaintext."""

    id: int
    username: str
    full_name: str
    role: Role
    password: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def to_dict(self, include_password: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "username": self.username,
            "fullName": self.full_name,
            "role": self.role.value,
        }
        if include_password and self.password is not None:
            data["password"] = self.password
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            id=int(data["id"]),
            username=str(data.get("username", "")),
            full_name=str(data.get("fullName", "")),
            role=Role(data.get("role", Role.USER.value)),
            password=data.get("password"),
        )


@dataclass(frozen=True)
class Ward:
    """Administrative sub-district; ``ward_code`` is embedded in contract numbers."""

    id: int
    ward_name: str
    ward_code: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "wardName": self.ward_name, "wardCode": self.ward_code}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Ward":
        return cls(
            id=int(data["id"]),
            ward_name=str(data.get("wardName", "")),
            ward_code=str(data.get("wardCode", "")),
        )


@dataclass(frozen=True)
class Contract:
    """A land-survey contract.

    ``contract_number`` and ``created_at`` are fixed at creation. ``status``
    only moves through the lifecycle rules; editing touches
    :data:`EDITABLE_FIELDS` and nothing else.
    """

    id: int
    contract_number: str
    customer_name: str
    map_sheet_number: int
    plot_number: int
    ward_id: int
    created_at: str  # ISO-8601
    status: ContractStatus = ContractStatus.PROCESSING
    notes: str = ""
    cancellation_reason: Optional[str] = None

    @property
    def is_processing(self) -> bool:
        return self.status == ContractStatus.PROCESSING

    def with_edits(self, **fields: Any) -> "Contract":
        changes = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "contractNumber": self.contract_number,
            "customerName": self.customer_name,
            "mapSheetNumber": self.map_sheet_number,
            "plotNumber": self.plot_number,
            "wardId": self.ward_id,
            "notes": self.notes,
            "createdAt": self.created_at,
            "status": self.status.value,
        }
        if self.cancellation_reason is not None:
            data["cancellationReason"] = self.cancellation_reason
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Contract":
        return cls(
            id=int(data["id"]),
            contract_number=str(data.get("contractNumber", "")),
            customer_name=str(data.get("customerName", "")),
            map_sheet_number=int(data.get("mapSheetNumber", 0) or 0),
            plot_number=int(data.get("plotNumber", 0) or 0),
            ward_id=int(data.get("wardId", 0) or 0),
            notes=data.get("notes") or "",
            created_at=str(data.get("createdAt", "")),
            status=ContractStatus(data.get("status", ContractStatus.PROCESSING.value)),
            cancellation_reason=data.get("cancellationReason"),
        )


@dataclass(frozen=True)
class Liquidation:
    """Settlement document closing out a contract."""

    id: int
    liquidation_number: str
    contract_id: int
    liquidation_type: LiquidationType
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "liquidationNumber": self.liquidation_number,
            "contractId": self.contract_id,
            "liquidationType": self.liquidation_type.value,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Liquidation":
        return cls(
            id=int(data["id"]),
            liquidation_number=str(data.get("liquidationNumber", "")),
            contract_id=int(data["contractId"]),
            liquidation_type=LiquidationType(data["liquidationType"]),
            created_at=str(data.get("createdAt", "")),
        )


@dataclass(frozen=True)
class AppData:
    """The whole register at one point in time.

    Collections are tuples so a published snapshot can be shared with readers
    while the store builds the next one.
    """

    users: Tuple[User, ...] = field(default_factory=tuple)
    wards: Tuple[Ward, ...] = field(default_factory=tuple)
    contracts: Tuple[Contract, ...] = field(default_factory=tuple)
    liquidations: Tuple[Liquidation, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "users": [u.to_dict() for u in self.users],
            "wards": [w.to_dict() for w in self.wards],
            "contracts": [c.to_dict() for c in self.contracts],
            "liquidations": [l.to_dict() for l in self.liquidations],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppData":
        return cls(
            users=tuple(User.from_dict(u) for u in data.get("users") or []),
            wards=tuple(Ward.from_dict(w) for w in data.get("wards") or []),
            contracts=tuple(Contract.from_dict(c) for c in data.get("contracts") or []),
            liquidations=tuple(Liquidation.from_dict(l) for l in data.get("liquidations") or []),
        )
