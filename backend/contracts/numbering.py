from __future__ import annotations

"""Contract and liquidation numbering.

Contract numbers look like ``07/2401.HĐ.VPĐKLK``: yearly sequence, two-digit
year, ward code, then the fixed document suffix. Liquidation numbers are the
contract number with that suffix swapped, so the two rules below must change
together.
"""

from datetime import datetime
from typing import Iterable, Optional

from .errors import NumberingError, ReferenceNotFoundError, SequenceOverflowError
from .models import Contract, LiquidationType, Ward

CONTRACT_SUFFIX = ".HĐ.VPĐKLK"

LIQUIDATION_SUFFIXES = {
    LiquidationType.COMPLETE: ".TLHĐ.VPĐKLK",
    LiquidationType.CANCEL: ".TLHHĐ.VPĐKLK",
}

SEQUENCE_WIDTH = 2

OVERFLOW_WIDEN = "widen"
OVERFLOW_REJECT = "reject"
OVERFLOW_POLICIES = (OVERFLOW_WIDEN, OVERFLOW_REJECT)


def parse_timestamp(value: str) -> datetime:
    """Parse the ISO strings stored in ``createdAt`` (``Z`` suffix included)."""
    text = (value or "").strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def created_year(contract: Contract) -> Optional[int]:
    try:
        return parse_timestamp(contract.created_at).year
    except ValueError:
        return None


def next_sequence(contracts: Iterable[Contract], year: int) -> int:
    """1-based sequence for the next contract created in ``year``."""
    return sum(1 for c in contracts if created_year(c) == year) + 1


def format_sequence(seq: int, overflow: str = OVERFLOW_WIDEN) -> str:
    text = str(seq).zfill(SEQUENCE_WIDTH)
    if len(text) > SEQUENCE_WIDTH and overflow == OVERFLOW_REJECT:
        raise SequenceOverflowError(
            f"Sequence {seq} does not fit in {SEQUENCE_WIDTH} digits"
        )
    return text


def find_ward(wards: Iterable[Ward], ward_id: int) -> Ward:
    for ward in wards:
        if ward.id == ward_id:
            return ward
    raise ReferenceNotFoundError("Ward", ward_id)


def format_contract_number(
    seq: int,
    year: int,
    ward_code: str,
    overflow: str = OVERFLOW_WIDEN,
) -> str:
    yy = str(year)[-2:]
    return f"{format_sequence(seq, overflow)}/{yy}{ward_code}{CONTRACT_SUFFIX}"


def generate_contract_number(
    contracts: Iterable[Contract],
    wards: Iterable[Ward],
    ward_id: int,
    now: datetime,
    overflow: str = OVERFLOW_WIDEN,
) -> str:
    """Number for a new contract in ``ward_id`` created at ``now``.

    Raises :class:`ReferenceNotFoundError` when the ward is unknown.
    """
    ward = find_ward(wards, ward_id)
    seq = next_sequence(contracts, now.year)
    return format_contract_number(seq, now.year, ward.ward_code, overflow)


def liquidation_number_for(contract_number: str, kind: LiquidationType) -> str:
    if CONTRACT_SUFFIX not in contract_number:
        raise NumberingError(
            f"Contract number {contract_number!r} lacks the {CONTRACT_SUFFIX!r} suffix"
        )
    # Replace the first occurrence only, like the number was built.
    return contract_number.replace(CONTRACT_SUFFIX, LIQUIDATION_SUFFIXES[LiquidationType(kind)], 1)


def generate_liquidation_number(
    contracts: Iterable[Contract],
    contract_id: int,
    kind: LiquidationType,
) -> str:
    for contract in contracts:
        if contract.id == contract_id:
            return liquidation_number_for(contract.contract_number, kind)
    raise ReferenceNotFoundError("Contract", contract_id)


__all__ = [
    "CONTRACT_SUFFIX",
    "LIQUIDATION_SUFFIXES",
    "OVERFLOW_POLICIES",
    "OVERFLOW_REJECT",
    "OVERFLOW_WIDEN",
    "created_year",
    "find_ward",
    "format_contract_number",
    "format_sequence",
    "generate_contract_number",
    "generate_liquidation_number",
    "liquidation_number_for",
    "next_sequence",
    "parse_timestamp",
]
