from __future__ import annotations

"""In-memory contract register backed by a key-value store.

:class:`ContractStore` owns the current :class:`AppData` snapshot. Every
mutation reads the latest snapshot, builds a new one with the lifecycle and
numbering rules, writes it to the gateway and only then publishes it. A failed
write raises :class:`PersistenceError` and leaves the previous snapshot
current, so memory never runs ahead of disk.
"""

import json
import logging
import threading
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, List, Mapping, Optional, Protocol, Union

from . import lifecycle
from .errors import (
    InvalidTransitionError,
    PersistenceError,
    ReferenceNotFoundError,
    RestoreFormatError,
    ValidationError,
)
from .models import (
    EDITABLE_FIELDS,
    AppData,
    Contract,
    ContractStatus,
    Liquidation,
    LiquidationType,
    User,
    Ward,
)
from .numbering import (
    OVERFLOW_POLICIES,
    OVERFLOW_WIDEN,
    find_ward,
    generate_contract_number,
    generate_liquidation_number,
)
from .seed import initial_data
from .storage import APP_DATA_KEY
from .validation import FIELD_ALIASES, clean_contract_form

logger = logging.getLogger(__name__)

REQUIRED_COLLECTIONS = ("users", "wards", "contracts")


class KeyValueGateway(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


@dataclass
class StorePolicy:
    """Behavioural switches for the register."""

    allow_reliquidation: bool = False
    sequence_overflow: str = OVERFLOW_WIDEN

    def __post_init__(self) -> None:
        if self.sequence_overflow not in OVERFLOW_POLICIES:
            raise ValueError(
                f"sequence_overflow must be one of {OVERFLOW_POLICIES}, got {self.sequence_overflow!r}"
            )


@dataclass(frozen=True)
class Backup:
    filename: str
    content: str


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    """``2024-03-01T08:15:00.000Z`` style timestamp."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    text = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def _next_id(items: Iterable[Any]) -> int:
    return max((item.id for item in items), default=0) + 1


def _coerce_edits(fields: Mapping[str, Any]) -> dict:
    edits = {}
    for key, value in fields.items():
        name = FIELD_ALIASES.get(key, key)
        if name not in EDITABLE_FIELDS:
            continue
        if name in ("map_sheet_number", "plot_number", "ward_id"):
            try:
                value = int(str(value).strip())
            except (TypeError, ValueError):
                raise ValidationError([f"{name} must be a whole number."]) from None
        elif name == "notes":
            value = "" if value is None else str(value)
        else:
            value = str(value).strip()
            if not value:
                raise ValidationError([f"{name} must not be empty."])
        edits[name] = value
    return edits


class ContractStore:
    """Authoritative holder of users, wards, contracts and liquidations."""

    def __init__(
        self,
        gateway: KeyValueGateway,
        data: AppData,
        policy: Optional[StorePolicy] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.gateway = gateway
        self.policy = policy or StorePolicy()
        self._clock = clock
        self._data = data
        self._lock = threading.RLock()

    @classmethod
    def load_or_seed(
        cls,
        gateway: KeyValueGateway,
        policy: Optional[StorePolicy] = None,
        clock: Callable[[], datetime] = _utc_now,
        seed: Optional[Callable[[], AppData]] = None,
    ) -> "ContractStore":
        """Read ``appData`` once; use the seed data when nothing usable is stored."""
        seed = seed or initial_data
        raw = gateway.get(APP_DATA_KEY)
        data: Optional[AppData] = None
        if raw is not None:
            try:
                data = AppData.from_dict(raw)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.error("Stored appData is malformed, starting from seed data: %s", e)
        if data is None:
            logger.info("No stored appData found; seeding initial register")
            data = seed()
        logger.info(
            "Loaded register: %d users, %d wards, %d contracts, %d liquidations",
            len(data.users),
            len(data.wards),
            len(data.contracts),
            len(data.liquidations),
        )
        return cls(gateway, data, policy=policy, clock=clock)

    # ----------------------------
    # Snapshot handling
    # ----------------------------
    @property
    def data(self) -> AppData:
        return self._data

    def _now(self) -> datetime:
        moment = self._clock()
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(timezone.utc)

    def _commit(self, new_data: AppData) -> AppData:
        try:
            self.gateway.set(APP_DATA_KEY, new_data.to_dict())
        except PersistenceError:
            logger.exception("Failed to persist appData; keeping previous snapshot")
            raise
        except (OSError, TypeError, ValueError) as e:
            logger.exception("Failed to persist appData; keeping previous snapshot")
            raise PersistenceError(f"Failed to persist appData: {e}", key=APP_DATA_KEY) from e
        self._data = new_data
        return new_data

    def _require_contract(self, data: AppData, contract_id: int) -> Contract:
        for contract in data.contracts:
            if contract.id == contract_id:
                return contract
        raise ReferenceNotFoundError("Contract", contract_id)

    @staticmethod
    def _swap_contract(data: AppData, updated: Contract) -> tuple:
        return tuple(updated if c.id == updated.id else c for c in data.contracts)

    # ----------------------------
    # Mutations
    # ----------------------------
    def add_contract(self, form: Mapping[str, Any]) -> Contract:
        """Create a Processing contract with a freshly generated number."""
        fields = clean_contract_form(form)
        with self._lock:
            data = self._data
            now = self._now()
            number = generate_contract_number(
                data.contracts,
                data.wards,
                fields["ward_id"],
                now,
                overflow=self.policy.sequence_overflow,
            )
            contract = Contract(
                id=_next_id(data.contracts),
                contract_number=number,
                created_at=_iso(now),
                status=ContractStatus.PROCESSING,
                **fields,
            )
            self._commit(replace(data, contracts=data.contracts + (contract,)))
        logger.info("Created contract %s (id=%s)", contract.contract_number, contract.id)
        return contract

    def update_contract(self, contract_id: int, fields: Mapping[str, Any]) -> Optional[Contract]:
        """Apply edits to the editable fields; unknown ids are ignored."""
        edits = _coerce_edits(fields)
        with self._lock:
            data = self._data
            current = self.get_contract_by_id(contract_id)
            if current is None:
                logger.debug("update_contract: no contract with id %s", contract_id)
                return None
            if "ward_id" in edits:
                find_ward(data.wards, edits["ward_id"])
            updated = current.with_edits(**edits)
            self._commit(replace(data, contracts=self._swap_contract(data, updated)))
        logger.info("Updated contract %s", updated.contract_number)
        return updated

    def update_contract_status(
        self,
        contract_id: int,
        status: ContractStatus,
        reason: Optional[str] = None,
    ) -> Contract:
        """Direct status change; only Processing -> Cancelled is legal."""
        status = ContractStatus(status)
        with self._lock:
            data = self._data
            current = self._require_contract(data, contract_id)
            if status != ContractStatus.CANCELLED:
                raise InvalidTransitionError(
                    contract_id,
                    current.status,
                    ContractStatus.PROCESSING,
                    "set status",
                    message=f"Status {status.value!r} is only reachable through a liquidation",
                )
            updated = lifecycle.cancel(current, reason or "")
            self._commit(replace(data, contracts=self._swap_contract(data, updated)))
        logger.info("Cancelled contract %s: %s", updated.contract_number, reason)
        return updated

    def cancel_contract(self, contract_id: int, reason: str) -> Contract:
        return self.update_contract_status(contract_id, ContractStatus.CANCELLED, reason)

    def add_liquidation(self, contract_id: int, kind: LiquidationType) -> Liquidation:
        """Create a liquidation document and move the contract to its terminal state."""
        kind = LiquidationType(kind)
        with self._lock:
            data = self._data
            contract = self._require_contract(data, contract_id)
            number = generate_liquidation_number(data.contracts, contract_id, kind)
            updated, record = lifecycle.liquidate(
                contract,
                kind,
                liquidation_id=_next_id(data.liquidations),
                liquidation_number=number,
                created_at=_iso(self._now()),
                allow_reliquidation=self.policy.allow_reliquidation,
            )
            self._commit(
                replace(
                    data,
                    contracts=self._swap_contract(data, updated),
                    liquidations=data.liquidations + (record,),
                )
            )
        logger.info("Liquidated contract %s as %s (%s)", contract.contract_number,
                    kind.value, record.liquidation_number)
        return record

    # ----------------------------
    # Lookups
    # ----------------------------
    def get_ward_by_id(self, ward_id: int) -> Optional[Ward]:
        return next((w for w in self._data.wards if w.id == ward_id), None)

    def get_contract_by_id(self, contract_id: int) -> Optional[Contract]:
        return next((c for c in self._data.contracts if c.id == contract_id), None)

    def get_liquidations_by_contract_id(self, contract_id: int) -> List[Liquidation]:
        return [l for l in self._data.liquidations if l.contract_id == contract_id]

    def get_user_by_username(self, username: str) -> Optional[User]:
        return next((u for u in self._data.users if u.username == username), None)

    # ----------------------------
    # Backup / restore
    # ----------------------------
    def backup_data(self, today: Optional[date] = None) -> Backup:
        """Serialise the whole register as ``backup-YYYY-MM-DD.json``."""
        today = today or self._now().date()
        content = json.dumps(self._data.to_dict(), indent=2, ensure_ascii=False)
        return Backup(filename=f"backup-{today.isoformat()}.json", content=content)

    def restore_data(self, document: Union[str, bytes, Mapping[str, Any]]) -> AppData:
        """Replace the register wholesale with a backup document.

        ``users``, ``wards`` and ``contracts`` must be present as lists (empty
        lists are fine); ``liquidations`` defaults to empty. On any error the
        current snapshot is kept.
        """
        if isinstance(document, (bytes, bytearray)):
            try:
                document = document.decode("utf-8")
            except UnicodeDecodeError as e:
                raise RestoreFormatError(f"Backup is not UTF-8: {e}") from e
        if isinstance(document, str):
            try:
                document = json.loads(document)
            except ValueError as e:
                raise RestoreFormatError(f"Backup is not valid JSON: {e}") from e
        if not isinstance(document, Mapping):
            raise RestoreFormatError("Backup must be a JSON object")

        missing = [name for name in REQUIRED_COLLECTIONS if document.get(name) is None]
        if missing:
            raise RestoreFormatError(f"Invalid data structure in backup file: missing {', '.join(missing)}")
        not_lists = [name for name in REQUIRED_COLLECTIONS if not isinstance(document[name], list)]
        if not_lists:
            raise RestoreFormatError(f"Invalid data structure in backup file: {', '.join(not_lists)} must be lists")
        liquidations = document.get("liquidations")
        if liquidations is not None and not isinstance(liquidations, list):
            raise RestoreFormatError("Invalid data structure in backup file: liquidations must be a list")

        try:
            restored = AppData.from_dict({**document, "liquidations": document.get("liquidations") or []})
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise RestoreFormatError(f"Backup records are malformed: {e}") from e

        with self._lock:
            self._commit(restored)
        logger.info(
            "Restored register: %d users, %d wards, %d contracts, %d liquidations",
            len(restored.users),
            len(restored.wards),
            len(restored.contracts),
            len(restored.liquidations),
        )
        return restored


__all__ = ["Backup", "ContractStore", "KeyValueGateway", "StorePolicy"]
