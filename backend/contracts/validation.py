from __future__ import annotations

"""Validation helpers for contract forms.

These checks run at the presentation boundary, before the store is called.
``validate_contract_form`` returns ``(is_valid, errors, warnings)`` so that a
caller can show every problem at once; ``clean_contract_form`` is the strict
variant that coerces the form into typed fields or raises
:class:`ValidationError`.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import ValidationError
from .lifecycle import MIN_REASON_LENGTH
from .models import Contract, ContractStatus

REQUIRED_FIELDS = ("customer_name", "map_sheet_number", "plot_number", "ward_id")

# Accept both the wire (camelCase) and the Python (snake_case) spellings.
FIELD_ALIASES = {
    "customerName": "customer_name",
    "mapSheetNumber": "map_sheet_number",
    "plotNumber": "plot_number",
    "wardId": "ward_id",
}

MISSING_FIELDS_MESSAGE = "Vui lòng điền tất cả các trường bắt buộc."


def _normalise_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {FIELD_ALIASES.get(k, k): v for k, v in (data or {}).items()}


def _is_blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _as_int(value: object) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def validate_contract_form(
    data: Mapping[str, Any],
    existing: Iterable[Contract] = (),
    editing_id: Optional[int] = None,
) -> Tuple[bool, List[str], List[str]]:
    """Check a new/edit contract form.

    Errors block the save; warnings are informational (for example another
    open contract already covers the same parcel).
    """
    errors: List[str] = []
    warnings: List[str] = []
    form = _normalise_keys(data)

    if any(_is_blank(form.get(name)) for name in REQUIRED_FIELDS):
        errors.append(MISSING_FIELDS_MESSAGE)
        return False, errors, warnings

    for name in ("map_sheet_number", "plot_number", "ward_id"):
        if _as_int(form.get(name)) is None:
            errors.append(f"{name} must be a whole number.")

    if errors:
        return False, errors, warnings

    sheet = _as_int(form["map_sheet_number"])
    plot = _as_int(form["plot_number"])
    ward = _as_int(form["ward_id"])
    for contract in existing:
        if contract.id == editing_id or contract.status != ContractStatus.PROCESSING:
            continue
        if (contract.map_sheet_number, contract.plot_number, contract.ward_id) == (sheet, plot, ward):
            warnings.append(
                f"Contract {contract.contract_number} is already processing "
                f"sheet {sheet}, plot {plot}."
            )

    return True, errors, warnings


def clean_contract_form(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Return the typed editable fields of a form or raise ValidationError."""
    is_valid, errors, _ = validate_contract_form(data)
    if not is_valid:
        raise ValidationError(errors)
    form = _normalise_keys(data)
    return {
        "customer_name": str(form["customer_name"]).strip(),
        "map_sheet_number": int(str(form["map_sheet_number"]).strip()),
        "plot_number": int(str(form["plot_number"]).strip()),
        "ward_id": int(str(form["ward_id"]).strip()),
        "notes": str(form.get("notes") or ""),
    }


def validate_cancellation_reason(reason: Optional[str]) -> Tuple[bool, List[str]]:
    if reason is None or len(reason) < MIN_REASON_LENGTH:
        return False, [f"Lý do hủy phải có ít nhất {MIN_REASON_LENGTH} ký tự."]
    return True, []


__all__ = [
    "MISSING_FIELDS_MESSAGE",
    "REQUIRED_FIELDS",
    "clean_contract_form",
    "validate_cancellation_reason",
    "validate_contract_form",
]
