from datetime import date

import pytest
from openpyxl import load_workbook

from backend.contracts.models import Contract, ContractStatus, Ward
from backend.contracts.reports import (
    UNKNOWN_WARD,
    ContractFilter,
    counts_by_ward,
    dashboard,
    date_range_preset,
    export_statistics_xlsx,
    statistics,
    status_counts,
)

WARDS = [Ward(id=1, ward_name="Phường 1", ward_code="01"), Ward(id=2, ward_name="Phường 2", ward_code="02")]


def _c(cid, number, name, created_at, status=ContractStatus.PROCESSING, ward_id=1):
    return Contract(
        id=cid,
        contract_number=number,
        customer_name=name,
        map_sheet_number=1,
        plot_number=cid,
        ward_id=ward_id,
        created_at=created_at,
        status=status,
    )


@pytest.fixture()
def contracts():
    return [
        _c(1, "01/2401.HĐ.VPĐKLK", "Nguyễn Văn A", "2024-01-05T03:00:00.000Z"),
        _c(2, "02/2402.HĐ.VPĐKLK", "Trần Thị B", "2024-02-10T09:30:00.000Z",
           status=ContractStatus.COMPLETED, ward_id=2),
        _c(3, "03/2401.HĐ.VPĐKLK", "Lê Văn C", "2024-02-29T23:59:00.000Z",
           status=ContractStatus.CANCELLED),
        _c(4, "04/2409.HĐ.VPĐKLK", "Phạm D", "2024-03-01T00:00:00.000Z", ward_id=9),
    ]


def test_dashboard_is_newest_first(contracts):
    assert [c.id for c in dashboard(contracts)] == [4, 3, 2, 1]


def test_search_matches_name_or_number(contracts):
    assert [c.id for c in dashboard(contracts, ContractFilter(search="văn"))] == [3, 1]
    assert [c.id for c in dashboard(contracts, ContractFilter(search="2402"))] == [2]


def test_end_date_is_inclusive(contracts):
    flt = ContractFilter(start_date=date(2024, 2, 1), end_date=date(2024, 2, 29))
    assert [c.id for c in dashboard(contracts, flt)] == [3, 2]


def test_filter_from_query_params(contracts):
    flt = ContractFilter.from_params({"status": "cancelled", "startDate": "2024-02-01", "endDate": ""})
    assert flt.status == ContractStatus.CANCELLED
    assert flt.end_date is None
    assert [c.id for c in dashboard(contracts, flt)] == [3]


@pytest.mark.parametrize(
    "period,start",
    [
        ("week", date(2024, 5, 12)),
        ("month", date(2024, 5, 1)),
        ("quarter", date(2024, 4, 1)),
        ("year", date(2024, 1, 1)),
    ],
)
def test_date_range_presets(period, start):
    # 2024-05-15 is a Wednesday; the week starts on the Sunday before.
    assert date_range_preset(period, today=date(2024, 5, 15)) == (start, date(2024, 5, 15))


def test_week_preset_on_sunday():
    assert date_range_preset("week", today=date(2024, 5, 12))[0] == date(2024, 5, 12)


def test_unknown_period():
    with pytest.raises(ValueError):
        date_range_preset("decade", today=date(2024, 1, 1))


def test_status_counts(contracts):
    assert status_counts(contracts) == {"total": 4, "processing": 2, "completed": 1, "cancelled": 1}


def test_counts_by_ward_groups_unknown(contracts):
    table = counts_by_ward(contracts, WARDS)

    assert list(table.index) == sorted(["Phường 1", "Phường 2", UNKNOWN_WARD])
    assert table.loc["Phường 1", ContractStatus.PROCESSING.value] == 1
    assert table.loc["Phường 1", ContractStatus.CANCELLED.value] == 1
    assert table.loc["Phường 2", ContractStatus.COMPLETED.value] == 1
    assert table.loc[UNKNOWN_WARD, ContractStatus.PROCESSING.value] == 1


def test_counts_by_ward_empty():
    table = counts_by_ward([], WARDS)
    assert table.empty
    assert list(table.columns) == [s.value for s in ContractStatus]


def test_statistics_respects_filter(contracts):
    stats = statistics(contracts, WARDS, ContractFilter(ward_id=1))

    assert stats["counts"]["total"] == 2
    assert stats["by_status"][ContractStatus.CANCELLED.value] == 1
    assert set(stats["by_ward"]) == {"Phường 1"}


def test_statistics_on_empty_register():
    stats = statistics([], WARDS)
    assert stats["counts"]["total"] == 0
    assert stats["by_ward"] == {}


def test_export_workbook(contracts, tmp_path):
    path = export_statistics_xlsx(contracts, WARDS, tmp_path, today=date(2024, 3, 2))

    assert path.name == "thong-ke-2024-03-02.xlsx"
    wb = load_workbook(path)
    assert wb.sheetnames == ["Thống kê", "Hợp đồng"]

    summary = [row[:2] for row in wb["Thống kê"].iter_rows(values_only=True)]
    assert ("Tổng số", 4) in summary
    listing = list(wb["Hợp đồng"].iter_rows(min_row=2, values_only=True))
    assert [row[0] for row in listing] == [
        "04/2409.HĐ.VPĐKLK",
        "03/2401.HĐ.VPĐKLK",
        "02/2402.HĐ.VPĐKLK",
        "01/2401.HĐ.VPĐKLK",
    ]
    assert listing[0][3] == UNKNOWN_WARD


def test_export_without_matches(contracts, tmp_path):
    path = export_statistics_xlsx(contracts, WARDS, tmp_path, flt=ContractFilter(search="không có"))
    listing = list(load_workbook(path)["Hợp đồng"].iter_rows(min_row=2, values_only=True))
    assert len(listing) == 1
    assert listing[0][0].startswith("Không tìm thấy")
