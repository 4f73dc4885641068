#!/usr/bin/env python3
"""
Contract register web server - JSON API over the contract store
"""

import io
import logging
from datetime import date
from typing import Any, Dict, Optional

from flask import Flask, Response, jsonify, request, send_file, session
from flask_cors import CORS
from werkzeug.utils import secure_filename

from backend import config
from backend.contracts.auth import SessionManager, public_projection, require_role
from backend.contracts.errors import (
    AuthorizationError,
    ContractRegisterError,
    InvalidTransitionError,
    LoginRequiredError,
    NumberingError,
    PersistenceError,
    ReferenceNotFoundError,
    RestoreFormatError,
    SequenceOverflowError,
    ValidationError,
)
from backend.contracts.lifecycle import allowed_triggers
from backend.contracts.models import Contract, LiquidationType, Role, parse_enum
from backend.contracts.reports import (
    ContractFilter,
    build_statistics_workbook,
    dashboard,
    date_range_preset,
    statistics,
)
from backend.contracts.storage import JsonFileStore
from backend.contracts.store import ContractStore
from backend.contracts.validation import validate_cancellation_reason, validate_contract_form

# Set up logging
logging.basicConfig(level=logging.DEBUG if config.DEBUG else logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _status_for(error: ContractRegisterError) -> int:
    if isinstance(error, LoginRequiredError):
        return 401
    if isinstance(error, AuthorizationError):
        return 403
    if isinstance(error, ReferenceNotFoundError):
        return 404
    if isinstance(error, InvalidTransitionError):
        return 409
    if isinstance(error, SequenceOverflowError):
        return 409
    if isinstance(error, NumberingError):
        return 422
    if isinstance(error, (ValidationError, RestoreFormatError)):
        return 400
    if isinstance(error, PersistenceError):
        return 500
    return 400


class CookieSessionCache:
    """Key-value view over Flask's signed session cookie, one per client."""

    def get(self, key: str) -> Optional[Any]:
        return session.get(key)

    def set(self, key: str, value: Any) -> None:
        session[key] = value

    def delete(self, key: str) -> None:
        session.pop(key, None)


def _contract_payload(store: ContractStore, contract: Contract) -> Dict[str, Any]:
    ward = store.get_ward_by_id(contract.ward_id)
    payload = contract.to_dict()
    payload["wardName"] = ward.ward_name if ward else None
    return payload


def create_app(store: Optional[ContractStore] = None, gateway=None) -> Flask:
    """Build the Flask app around ``store`` (loaded from ``gateway`` or the data folder)."""
    if gateway is None:
        gateway = store.gateway if store is not None else JsonFileStore(config.DATA_FOLDER)
    if store is None:
        store = ContractStore.load_or_seed(gateway, policy=config.store_policy())
    sessions = SessionManager(CookieSessionCache(), store)

    app = Flask(__name__)
    app.secret_key = config.SECRET_KEY
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_BYTES
    app.config["CONTRACT_STORE"] = store
    app.config["SESSIONS"] = sessions
    CORS(app, origins=config.CORS_ORIGINS, supports_credentials=True)

    def current_user(*roles: Role):
        return require_role(sessions.current_user(), *roles)

    def existing_contract(contract_id: int) -> Contract:
        contract = store.get_contract_by_id(contract_id)
        if contract is None:
            raise ReferenceNotFoundError("Contract", contract_id)
        return contract

    @app.errorhandler(ContractRegisterError)
    def handle_register_error(error: ContractRegisterError):
        status = _status_for(error)
        if status >= 500:
            logger.error("Request failed: %s", error)
        body: Dict[str, Any] = {"error": str(error)}
        if isinstance(error, ValidationError):
            body["errors"] = error.errors
        return jsonify(body), status

    # ============================================================
    # SESSION
    # ============================================================

    @app.route('/api/login', methods=['POST'])
    def login():
        data = request.get_json(silent=True) or {}
        user = sessions.login(data.get('username') or '', data.get('password') or '')
        if user is None:
            return jsonify({"error": "Tên đăng nhập hoặc mật khẩu không đúng."}), 401
        return jsonify({"status": "success", "user": public_projection(user)})

    @app.route('/api/logout', methods=['POST'])
    def logout():
        sessions.logout()
        return jsonify({"status": "success"})

    @app.route('/api/me', methods=['GET'])
    def me():
        user = current_user()
        return jsonify({"user": public_projection(user), "isAdmin": user.is_admin})

    # ============================================================
    # REFERENCE DATA
    # ============================================================

    @app.route('/api/wards', methods=['GET'])
    def list_wards():
        current_user()
        return jsonify({"wards": [w.to_dict() for w in store.data.wards]})

    # ============================================================
    # CONTRACTS
    # ============================================================

    @app.route('/api/contracts', methods=['GET'])
    def list_contracts():
        current_user()
        try:
            flt = ContractFilter.from_params(request.args)
        except ValueError as e:
            raise ValidationError([str(e)]) from e
        contracts = dashboard(store.data.contracts, flt)
        return jsonify({
            "contracts": [_contract_payload(store, c) for c in contracts],
            "count": len(contracts),
        })

    @app.route('/api/contracts', methods=['POST'])
    def create_contract():
        current_user()
        data = request.get_json(silent=True) or {}
        is_valid, errors, warnings = validate_contract_form(data, store.data.contracts)
        if not is_valid:
            raise ValidationError(errors)
        contract = store.add_contract(data)
        return jsonify({
            "status": "success",
            "contract": _contract_payload(store, contract),
            "warnings": warnings,
        }), 201

    @app.route('/api/contracts/<int:contract_id>', methods=['GET'])
    def get_contract(contract_id: int):
        user = current_user()
        contract = existing_contract(contract_id)
        actions = list(allowed_triggers(contract.status)) if user.is_admin else []
        return jsonify({
            "contract": _contract_payload(store, contract),
            "liquidations": [l.to_dict() for l in store.get_liquidations_by_contract_id(contract_id)],
            "actions": actions,
        })

    @app.route('/api/contracts/<int:contract_id>', methods=['PUT'])
    def edit_contract(contract_id: int):
        current_user(Role.ADMIN)
        existing_contract(contract_id)
        data = request.get_json(silent=True) or {}
        is_valid, errors, warnings = validate_contract_form(data, store.data.contracts, editing_id=contract_id)
        if not is_valid:
            raise ValidationError(errors)
        contract = store.update_contract(contract_id, data)
        return jsonify({
            "status": "success",
            "contract": _contract_payload(store, contract),
            "warnings": warnings,
        })

    @app.route('/api/contracts/<int:contract_id>/cancel', methods=['POST'])
    def cancel_contract(contract_id: int):
        current_user(Role.ADMIN)
        data = request.get_json(silent=True) or {}
        reason = data.get('reason')
        is_valid, errors = validate_cancellation_reason(reason)
        if not is_valid:
            raise ValidationError(errors)
        contract = store.cancel_contract(contract_id, reason)
        return jsonify({"status": "success", "contract": _contract_payload(store, contract)})

    @app.route('/api/contracts/<int:contract_id>/liquidations', methods=['GET'])
    def list_liquidations(contract_id: int):
        current_user()
        existing_contract(contract_id)
        return jsonify({
            "liquidations": [l.to_dict() for l in store.get_liquidations_by_contract_id(contract_id)],
        })

    @app.route('/api/contracts/<int:contract_id>/liquidations', methods=['POST'])
    def liquidate_contract(contract_id: int):
        current_user(Role.ADMIN)
        data = request.get_json(silent=True) or {}
        try:
            kind = parse_enum(LiquidationType, data.get('type') or data.get('liquidationType'))
        except ValueError as e:
            raise ValidationError([str(e)]) from e
        liquidation = store.add_liquidation(contract_id, kind)
        contract = store.get_contract_by_id(contract_id)
        return jsonify({
            "status": "success",
            "liquidation": liquidation.to_dict(),
            "contract": _contract_payload(store, contract),
        }), 201

    # ============================================================
    # STATISTICS
    # ============================================================

    def _statistics_filter() -> ContractFilter:
        try:
            flt = ContractFilter.from_params(request.args)
            period = request.args.get('period')
            if period:
                flt.start_date, flt.end_date = date_range_preset(period)
        except ValueError as e:
            raise ValidationError([str(e)]) from e
        return flt

    @app.route('/api/statistics', methods=['GET'])
    def get_statistics():
        current_user(Role.ADMIN)
        flt = _statistics_filter()
        return jsonify(statistics(store.data.contracts, store.data.wards, flt))

    @app.route('/api/statistics/export', methods=['GET'])
    def export_statistics():
        current_user(Role.ADMIN)
        flt = _statistics_filter()
        wb = build_statistics_workbook(store.data.contracts, store.data.wards, flt)
        buffer = io.BytesIO()
        wb.save(buffer)
        buffer.seek(0)
        return send_file(
            buffer,
            mimetype=XLSX_MIMETYPE,
            as_attachment=True,
            download_name=f"thong-ke-{date.today().isoformat()}.xlsx",
        )

    # ============================================================
    # BACKUP / RESTORE
    # ============================================================

    @app.route('/api/backup', methods=['GET'])
    def backup():
        current_user(Role.ADMIN)
        snapshot = store.backup_data()
        return Response(
            snapshot.content,
            mimetype="application/json; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{snapshot.filename}"'},
        )

    @app.route('/api/restore', methods=['POST'])
    def restore():
        current_user(Role.ADMIN)
        uploaded = request.files.get('file') if 'file' in request.files else None
        if uploaded is not None:
            logger.info("Restoring from uploaded file %s", secure_filename(uploaded.filename or "") or "<unnamed>")
            document = uploaded.read()
        else:
            document = request.get_data()
        if not document:
            raise RestoreFormatError("Vui lòng chọn một tệp để phục hồi.")
        restored = store.restore_data(document)
        return jsonify({
            "status": "success",
            "counts": {
                "users": len(restored.users),
                "wards": len(restored.wards),
                "contracts": len(restored.contracts),
                "liquidations": len(restored.liquidations),
            },
        })

    return app


if __name__ == '__main__':
    print("=" * 60)
    print("Contract Register Web Server Starting")
    print("=" * 60)
    print(f"Data Folder: {config.DATA_FOLDER}")
    print(f"Re-liquidation allowed: {config.ALLOW_RELIQUIDATION}")
    print(f"Sequence overflow policy: {config.SEQUENCE_OVERFLOW}")
    print("=" * 60)
    print(f"\nServer running at: http://{config.HOST}:{config.PORT}")
    print("\nPress Ctrl+C to stop")
    print("=" * 60)

    app = create_app()
    app.run(host=config.HOST, port=config.PORT, debug=False, use_reloader=False, threaded=True)
