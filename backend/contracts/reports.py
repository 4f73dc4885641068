from __future__ import annotations

"""Dashboard filtering, statistics and the statistics workbook.

The dashboard lists contracts newest first, filtered by a free-text search,
status and creation-date range. Statistics count the same filtered set by
status and by ward; :func:`build_statistics_workbook` renders those counts
into an Excel report.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font

from .models import Contract, ContractStatus, Ward, parse_enum
from .numbering import parse_timestamp

UNKNOWN_WARD = "Không xác định"
ALL_LABEL = "Tất cả"

STATUS_ORDER: List[ContractStatus] = [
    ContractStatus.PROCESSING,
    ContractStatus.COMPLETED,
    ContractStatus.CANCELLED,
]

PERIODS = ("week", "month", "quarter", "year")

DateLike = Union[date, str, None]


@dataclass
class ContractFilter:
    search: str = ""
    status: Optional[ContractStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    ward_id: Optional[int] = None

    @classmethod
    def from_params(cls, params) -> "ContractFilter":
        """Build a filter from query-string style parameters (blank means unset)."""
        status = params.get("status") or None
        ward_id = params.get("wardId") or params.get("ward_id") or None
        return cls(
            search=params.get("search") or "",
            status=parse_enum(ContractStatus, status) if status else None,
            start_date=_as_date(params.get("startDate") or params.get("start_date")),
            end_date=_as_date(params.get("endDate") or params.get("end_date")),
            ward_id=int(ward_id) if ward_id else None,
        )


def _as_date(value: DateLike) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())


def _created_at(contract: Contract) -> Optional[datetime]:
    try:
        moment = parse_timestamp(contract.created_at)
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def matches(contract: Contract, flt: ContractFilter) -> bool:
    term = flt.search.strip().lower()
    if term and term not in contract.customer_name.lower() and term not in contract.contract_number.lower():
        return False
    if flt.status is not None and contract.status != flt.status:
        return False
    if flt.ward_id is not None and contract.ward_id != flt.ward_id:
        return False
    if flt.start_date or flt.end_date:
        created = _created_at(contract)
        if created is None:
            return False
        if flt.start_date and created < datetime.combine(flt.start_date, time.min, timezone.utc):
            return False
        # End date is inclusive to the end of that day.
        if flt.end_date and created > datetime.combine(flt.end_date, time.max, timezone.utc):
            return False
    return True


def filter_contracts(contracts: Iterable[Contract], flt: Optional[ContractFilter] = None) -> List[Contract]:
    flt = flt or ContractFilter()
    return [c for c in contracts if matches(c, flt)]


def dashboard(contracts: Iterable[Contract], flt: Optional[ContractFilter] = None) -> List[Contract]:
    """Filtered contracts, newest first."""
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(
        filter_contracts(contracts, flt),
        key=lambda c: _created_at(c) or epoch,
        reverse=True,
    )


def date_range_preset(period: str, today: Optional[date] = None) -> tuple:
    """``(start, end)`` for the quick ranges on the statistics page.

    Weeks start on Sunday.
    """
    today = today or date.today()
    if period == "week":
        # date.weekday(): Monday=0 .. Sunday=6
        start = today - timedelta(days=(today.weekday() + 1) % 7)
    elif period == "month":
        start = today.replace(day=1)
    elif period == "quarter":
        start = date(today.year, (today.month - 1) // 3 * 3 + 1, 1)
    elif period == "year":
        start = date(today.year, 1, 1)
    else:
        raise ValueError(f"Unknown period {period!r}; expected one of {PERIODS}")
    return start, today


def status_counts(contracts: Iterable[Contract]) -> Dict[str, int]:
    items = list(contracts)
    return {
        "total": len(items),
        "processing": sum(1 for c in items if c.status == ContractStatus.PROCESSING),
        "completed": sum(1 for c in items if c.status == ContractStatus.COMPLETED),
        "cancelled": sum(1 for c in items if c.status == ContractStatus.CANCELLED),
    }


def counts_by_ward(contracts: Iterable[Contract], wards: Iterable[Ward]) -> pd.DataFrame:
    """Ward name x status counts, wards sorted by name.

    Contracts pointing at an unknown ward are grouped under
    :data:`UNKNOWN_WARD`.
    """
    names = {w.id: w.ward_name for w in wards}
    columns = [s.value for s in STATUS_ORDER]
    rows = [
        {"ward": names.get(c.ward_id, UNKNOWN_WARD), "status": c.status.value}
        for c in contracts
    ]
    if not rows:
        return pd.DataFrame(columns=columns, dtype=int).rename_axis("ward")

    df = pd.DataFrame(rows)
    table = pd.crosstab(df["ward"], df["status"])
    table = table.reindex(columns=columns, fill_value=0).sort_index()
    table.columns.name = None
    return table.astype(int)


def statistics(
    contracts: Iterable[Contract],
    wards: Sequence[Ward],
    flt: Optional[ContractFilter] = None,
) -> Dict[str, object]:
    """JSON-friendly statistics for the filtered contract set."""
    selected = filter_contracts(contracts, flt)
    table = counts_by_ward(selected, wards)
    return {
        "counts": status_counts(selected),
        "by_status": {s.value: int((table[s.value].sum() if len(table) else 0)) for s in STATUS_ORDER},
        "by_ward": {
            ward: {col: int(table.loc[ward, col]) for col in table.columns}
            for ward in table.index
        },
    }


def describe_filter(flt: ContractFilter, wards: Sequence[Ward]) -> str:
    ward_name = ALL_LABEL
    if flt.ward_id is not None:
        ward_name = next((w.ward_name for w in wards if w.id == flt.ward_id), UNKNOWN_WARD)
    return (
        f"Bộ lọc: Từ {flt.start_date.isoformat() if flt.start_date else ALL_LABEL}"
        f" - Đến {flt.end_date.isoformat() if flt.end_date else ALL_LABEL}"
        f" | Trạng thái: {flt.status.value if flt.status else ALL_LABEL}"
        f" | Phường/Xã: {ward_name}"
    )


def build_statistics_workbook(
    contracts: Iterable[Contract],
    wards: Sequence[Ward],
    flt: Optional[ContractFilter] = None,
) -> Workbook:
    """Statistics report: summary sheet plus the filtered contract list."""
    flt = flt or ContractFilter()
    selected = dashboard(contracts, flt)
    counts = status_counts(selected)
    table = counts_by_ward(selected, wards)
    ward_names = {w.id: w.ward_name for w in wards}

    wb = Workbook()
    ws = wb.active
    ws.title = "Thống kê"

    ws.append(["Báo cáo Thống kê Hợp đồng"])
    ws["A1"].font = Font(bold=True, size=14)
    ws.append([describe_filter(flt, wards)])
    ws.append([])

    ws.append(["Tổng số", counts["total"]])
    ws.append([ContractStatus.PROCESSING.value, counts["processing"]])
    ws.append([ContractStatus.COMPLETED.value, counts["completed"]])
    ws.append([ContractStatus.CANCELLED.value, counts["cancelled"]])
    ws.append([])

    header = ["Phường/Xã"] + [s.value for s in STATUS_ORDER]
    ws.append(header)
    header_row = ws.max_row
    for cell in ws[header_row]:
        cell.font = Font(bold=True)
        cell.alignment = Alignment(horizontal="center")
    for ward, row in table.iterrows():
        ws.append([ward] + [int(row[s.value]) for s in STATUS_ORDER])

    ws_list = wb.create_sheet("Hợp đồng")
    ws_list.append(["Số hợp đồng", "Ngày tạo", "Họ và tên", "Phường/Xã", "Trạng thái"])
    for cell in ws_list[1]:
        cell.font = Font(bold=True)
    for c in selected:
        created = _created_at(c)
        ws_list.append(
            [
                c.contract_number,
                created.strftime("%d/%m/%Y") if created else c.created_at,
                c.customer_name,
                ward_names.get(c.ward_id, UNKNOWN_WARD),
                c.status.value,
            ]
        )
    if not selected:
        ws_list.append(["Không tìm thấy hợp đồng nào khớp với bộ lọc."])

    return wb


def export_statistics_xlsx(
    contracts: Iterable[Contract],
    wards: Sequence[Ward],
    out_dir: Union[Path, str],
    flt: Optional[ContractFilter] = None,
    today: Optional[date] = None,
) -> Path:
    today = today or date.today()
    out_path = Path(out_dir) / f"thong-ke-{today.isoformat()}.xlsx"
    out_path.parent.mkdir(parents=True, exist_ok=True)
    build_statistics_workbook(contracts, wards, flt).save(out_path)
    return out_path


__all__ = [
    "ContractFilter",
    "PERIODS",
    "UNKNOWN_WARD",
    "build_statistics_workbook",
    "counts_by_ward",
    "dashboard",
    "date_range_preset",
    "describe_filter",
    "export_statistics_xlsx",
    "filter_contracts",
    "matches",
    "statistics",
    "status_counts",
]
