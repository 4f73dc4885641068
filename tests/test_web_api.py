import io
import json

from dataclasses import replace

import pytest
from openpyxl import load_workbook

from backend.contracts.models import Contract, ContractStatus, LiquidationType
from backend.contracts.storage import MemoryStore
from backend.contracts.store import ContractStore, StorePolicy
from run_web import create_app


@pytest.fixture()
def client(store):
    app = create_app(store=store)
    app.config["TESTING"] = True
    return app.test_client()


def _login(client, username="admin", password="admin123"):
    resp = client.post("/api/login", json={"username": username, "password": password})
    assert resp.status_code == 200
    return resp


def _create(client, contract_form):
    resp = client.post("/api/contracts", json=contract_form)
    assert resp.status_code == 201
    return resp.get_json()["contract"]


class TestSession:
    def test_requires_login(self, client):
        assert client.get("/api/contracts").status_code == 401

    def test_bad_credentials(self, client):
        resp = client.post("/api/login", json={"username": "admin", "password": "x"})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Tên đăng nhập hoặc mật khẩu không đúng."

    def test_login_and_me(self, client):
        body = _login(client).get_json()
        assert body["user"]["username"] == "admin"
        assert "password" not in body["user"]

        me = client.get("/api/me").get_json()
        assert me["isAdmin"] is True

        client.post("/api/logout")
        assert client.get("/api/me").status_code == 401

    def test_login_is_per_client(self, store):
        app = create_app(store=store)
        admin = app.test_client()
        _login(admin)
        assert admin.get("/api/backup").status_code == 200

        stranger = app.test_client()
        assert stranger.get("/api/backup").status_code == 401
        assert stranger.get("/api/me").status_code == 401

    def test_sessions_are_independent(self, store):
        app = create_app(store=store)
        admin = app.test_client()
        staff = app.test_client()
        _login(admin)
        _login(staff, "staff", "staff-pass")

        assert admin.get("/api/me").get_json()["isAdmin"] is True
        assert staff.get("/api/me").get_json()["isAdmin"] is False
        assert staff.get("/api/backup").status_code == 403


class TestContracts:
    def test_create_and_list(self, client, contract_form):
        _login(client)
        created = _create(client, contract_form)
        assert created["contractNumber"] == "01/2401.HĐ.VPĐKLK"
        assert created["status"] == ContractStatus.PROCESSING.value
        assert created["wardName"] == "Phường 1"

        listing = client.get("/api/contracts", query_string={"search": "nguyễn"}).get_json()
        assert listing["count"] == 1

    def test_duplicate_parcel_warns(self, client, contract_form):
        _login(client)
        _create(client, contract_form)
        second = client.post("/api/contracts", json=contract_form).get_json()
        assert second["contract"]["contractNumber"] == "02/2401.HĐ.VPĐKLK"
        assert second["warnings"]

    def test_missing_fields(self, client, contract_form):
        _login(client)
        resp = client.post("/api/contracts", json={**contract_form, "plotNumber": ""})
        assert resp.status_code == 400
        assert resp.get_json()["errors"] == ["Vui lòng điền tất cả các trường bắt buộc."]

    def test_unknown_ward(self, client, contract_form):
        _login(client)
        assert client.post("/api/contracts", json={**contract_form, "wardId": 99}).status_code == 404

    def test_unknown_contract(self, client):
        _login(client)
        assert client.get("/api/contracts/555").status_code == 404

    def test_staff_cannot_edit_or_cancel(self, client, contract_form):
        _login(client, "staff", "staff-pass")
        created = _create(client, contract_form)

        detail = client.get(f"/api/contracts/{created['id']}").get_json()
        assert detail["actions"] == []
        assert client.put(f"/api/contracts/{created['id']}", json=contract_form).status_code == 403
        resp = client.post(f"/api/contracts/{created['id']}/cancel", json={"reason": "Khách hàng rút hồ sơ"})
        assert resp.status_code == 403
        assert client.get("/api/statistics").status_code == 403

    def test_edit(self, client, contract_form):
        _login(client)
        created = _create(client, contract_form)
        resp = client.put(f"/api/contracts/{created['id']}", json={**contract_form, "customerName": "Đỗ E"})
        assert resp.status_code == 200
        contract = resp.get_json()["contract"]
        assert contract["customerName"] == "Đỗ E"
        assert contract["contractNumber"] == created["contractNumber"]


class TestTransitions:
    def test_cancel(self, client, contract_form):
        _login(client)
        created = _create(client, contract_form)

        short = client.post(f"/api/contracts/{created['id']}/cancel", json={"reason": "ngắn"})
        assert short.status_code == 400

        resp = client.post(f"/api/contracts/{created['id']}/cancel", json={"reason": "Khách hủy"})
        assert resp.status_code == 200
        assert resp.get_json()["contract"]["status"] == ContractStatus.CANCELLED.value
        assert resp.get_json()["contract"]["cancellationReason"] == "Khách hủy"

        again = client.post(f"/api/contracts/{created['id']}/cancel", json={"reason": "Khách hủy lần hai"})
        assert again.status_code == 409

    def test_liquidate(self, client, contract_form):
        _login(client)
        created = _create(client, contract_form)
        actions = client.get(f"/api/contracts/{created['id']}").get_json()["actions"]
        assert "liquidate_complete" in actions

        resp = client.post(
            f"/api/contracts/{created['id']}/liquidations",
            json={"type": LiquidationType.COMPLETE.value},
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["liquidation"]["liquidationNumber"] == "01/2401.TLHĐ.VPĐKLK"
        assert body["contract"]["status"] == ContractStatus.COMPLETED.value

        listing = client.get(f"/api/contracts/{created['id']}/liquidations").get_json()
        assert len(listing["liquidations"]) == 1

        resp = client.post(f"/api/contracts/{created['id']}/liquidations", json={"type": "cancel"})
        assert resp.status_code == 409

    def test_unknown_liquidation_type(self, client, contract_form):
        _login(client)
        created = _create(client, contract_form)
        resp = client.post(f"/api/contracts/{created['id']}/liquidations", json={"type": "partial"})
        assert resp.status_code == 400


class TestStatisticsAndBackup:
    def test_statistics(self, client, contract_form):
        _login(client)
        _create(client, contract_form)
        _create(client, {**contract_form, "wardId": "2"})

        stats = client.get("/api/statistics").get_json()
        assert stats["counts"]["total"] == 2
        assert stats["by_ward"]["Phường 2"][ContractStatus.PROCESSING.value] == 1

        filtered = client.get("/api/statistics", query_string={"wardId": "2"}).get_json()
        assert filtered["counts"]["total"] == 1

    def test_export(self, client, contract_form):
        _login(client)
        _create(client, contract_form)
        resp = client.get("/api/statistics/export")
        assert resp.status_code == 200
        wb = load_workbook(io.BytesIO(resp.data))
        assert "Hợp đồng" in wb.sheetnames

    def test_backup_then_restore(self, client, store, contract_form):
        _login(client)
        _create(client, contract_form)

        resp = client.get("/api/backup")
        assert resp.status_code == 200
        assert 'filename="backup-2024-03-01.json"' in resp.headers["Content-Disposition"]
        saved = resp.data
        snapshot = store.data

        _create(client, contract_form)
        assert len(store.data.contracts) == 2

        restored = client.post(
            "/api/restore",
            data={"file": (io.BytesIO(saved), "backup-2024-03-01.json")},
            content_type="multipart/form-data",
        )
        assert restored.status_code == 200
        assert restored.get_json()["counts"]["contracts"] == 1
        assert store.data == snapshot

    def test_restore_rejects_incomplete_document(self, client, store, contract_form):
        _login(client)
        _create(client, contract_form)
        before = store.data

        resp = client.post(
            "/api/restore",
            data=json.dumps({"users": [], "wards": []}),
            content_type="application/json",
        )
        assert resp.status_code == 400
        assert store.data is before

    def test_backup_of_seeded_register_restores(self, clock):
        store = ContractStore.load_or_seed(MemoryStore(), clock=clock)
        client = create_app(store=store).test_client()
        _login(client, "admin", "admin123")
        before = store.data

        saved = client.get("/api/backup").data
        resp = client.post("/api/restore", data=saved, content_type="application/json")

        assert resp.status_code == 200
        assert resp.get_json()["counts"]["contracts"] == 0
        assert store.data == before


class TestNumberingErrors:
    def test_sequence_overflow_is_a_conflict(self, app_data, clock, contract_form):
        contracts = tuple(
            Contract(
                id=i,
                contract_number=f"{i:02d}/2401.HĐ.VPĐKLK",
                customer_name=f"Khách {i}",
                map_sheet_number=1,
                plot_number=i,
                ward_id=1,
                created_at="2024-01-02T00:00:00.000Z",
            )
            for i in range(1, 100)
        )
        store = ContractStore(
            MemoryStore(),
            replace(app_data, contracts=contracts),
            policy=StorePolicy(sequence_overflow="reject"),
            clock=clock,
        )
        client = create_app(store=store).test_client()
        _login(client)

        resp = client.post("/api/contracts", json={**contract_form, "plotNumber": "9999"})

        assert resp.status_code == 409
        assert len(store.data.contracts) == 99

    def test_number_without_suffix_is_unprocessable(self, app_data, clock):
        legacy = Contract(
            id=1,
            contract_number="01/2401",
            customer_name="Khách cũ",
            map_sheet_number=1,
            plot_number=1,
            ward_id=1,
            created_at="2024-01-02T00:00:00.000Z",
        )
        store = ContractStore(MemoryStore(), replace(app_data, contracts=(legacy,)), clock=clock)
        client = create_app(store=store).test_client()
        _login(client)

        resp = client.post("/api/contracts/1/liquidations", json={"type": "complete"})

        assert resp.status_code == 422
        assert store.get_contract_by_id(1).status == ContractStatus.PROCESSING
