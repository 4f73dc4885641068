"""Contract lifecycle rules.

Processing is the only state a contract is created in; Completed and
Cancelled are terminal. The functions here are pure: they take a contract and
return the changed copy (plus the new liquidation record, where one is made)
without touching any store.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, FrozenSet, Optional, Tuple

from .errors import InvalidTransitionError, ValidationError
from .models import Contract, ContractStatus, Liquidation, LiquidationType

MIN_REASON_LENGTH = 8

CANCEL = "cancel"
LIQUIDATE_COMPLETE = "liquidate_complete"
LIQUIDATE_CANCEL = "liquidate_cancel"


@dataclass(frozen=True)
class Transition:
    trigger: str
    source: ContractStatus
    target: ContractStatus


TRANSITIONS: Tuple[Transition, ...] = (
    Transition(CANCEL, ContractStatus.PROCESSING, ContractStatus.CANCELLED),
    Transition(LIQUIDATE_COMPLETE, ContractStatus.PROCESSING, ContractStatus.COMPLETED),
    Transition(LIQUIDATE_CANCEL, ContractStatus.PROCESSING, ContractStatus.CANCELLED),
)

TERMINAL_STATES: FrozenSet[ContractStatus] = frozenset(
    {ContractStatus.COMPLETED, ContractStatus.CANCELLED}
)

_LIQUIDATION_TRIGGERS: Dict[LiquidationType, str] = {
    LiquidationType.COMPLETE: LIQUIDATE_COMPLETE,
    LiquidationType.CANCEL: LIQUIDATE_CANCEL,
}


def _find(trigger: str) -> Transition:
    for t in TRANSITIONS:
        if t.trigger == trigger:
            return t
    raise KeyError(trigger)


def allowed_triggers(status: ContractStatus) -> Tuple[str, ...]:
    """Triggers offered for a contract currently in ``status``."""
    return tuple(t.trigger for t in TRANSITIONS if t.source == status)


def target_status(kind: LiquidationType) -> ContractStatus:
    return _find(_LIQUIDATION_TRIGGERS[LiquidationType(kind)]).target


def require_status(contract: Contract, expected: ContractStatus, action: str) -> None:
    if contract.status != expected:
        raise InvalidTransitionError(contract.id, contract.status, expected, action)


def check_cancellation_reason(reason: Optional[str]) -> str:
    if reason is None or len(reason) < MIN_REASON_LENGTH:
        raise ValidationError(
            [f"Lý do hủy phải có ít nhất {MIN_REASON_LENGTH} ký tự."]
        )
    return reason


def cancel(contract: Contract, reason: str) -> Contract:
    """Direct cancellation: Processing -> Cancelled with the reason recorded."""
    transition = _find(CANCEL)
    require_status(contract, transition.source, "cancel")
    check_cancellation_reason(reason)
    return replace(contract, status=transition.target, cancellation_reason=reason)


def liquidate(
    contract: Contract,
    kind: LiquidationType,
    liquidation_id: int,
    liquidation_number: str,
    created_at: str,
    allow_reliquidation: bool = False,
) -> Tuple[Contract, Liquidation]:
    """Settle ``contract`` and return ``(updated_contract, liquidation)``.

    With ``allow_reliquidation`` a terminal contract may be liquidated again;
    the status then follows the newest liquidation kind.
    """
    kind = LiquidationType(kind)
    transition = _find(_LIQUIDATION_TRIGGERS[kind])
    if not (allow_reliquidation and contract.status in TERMINAL_STATES):
        require_status(contract, transition.source, "liquidate")

    record = Liquidation(
        id=liquidation_id,
        liquidation_number=liquidation_number,
        contract_id=contract.id,
        liquidation_type=kind,
        created_at=created_at,
    )
    return replace(contract, status=transition.target), record


__all__ = [
    "CANCEL",
    "LIQUIDATE_CANCEL",
    "LIQUIDATE_COMPLETE",
    "MIN_REASON_LENGTH",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "Transition",
    "allowed_triggers",
    "cancel",
    "check_cancellation_reason",
    "liquidate",
    "require_status",
    "target_status",
]
