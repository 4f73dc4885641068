"""Environment-driven settings for the contract register."""

from __future__ import annotations

import os
import secrets
from pathlib import Path

from backend.contracts.numbering import OVERFLOW_POLICIES, OVERFLOW_WIDEN
from backend.contracts.storage import DATA_DIR
from backend.contracts.store import StorePolicy


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DATA_FOLDER = Path(os.getenv("CONTRACTS_DATA_DIR", str(DATA_DIR))).expanduser()
EXPORT_FOLDER = DATA_FOLDER / "exports"

ALLOW_RELIQUIDATION = _env_flag("CONTRACTS_ALLOW_RELIQUIDATION")
SEQUENCE_OVERFLOW = os.getenv("CONTRACTS_SEQUENCE_OVERFLOW", OVERFLOW_WIDEN).strip().lower()
if SEQUENCE_OVERFLOW not in OVERFLOW_POLICIES:
    raise RuntimeError(
        f"CONTRACTS_SEQUENCE_OVERFLOW must be one of {OVERFLOW_POLICIES}, got {SEQUENCE_OVERFLOW!r}"
    )

DEBUG = _env_flag("CONTRACTS_DEBUG")
HOST = os.getenv("CONTRACTS_HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "5000"))
MAX_UPLOAD_BYTES = int(os.getenv("CONTRACTS_MAX_UPLOAD_BYTES", str(16 * 1024 * 1024)))

# Signs the per-client session cookie. Without a configured key, sessions end
# when the server restarts.
SECRET_KEY = os.getenv("CONTRACTS_SECRET_KEY") or secrets.token_hex(32)

# Browser origins allowed to call the API with credentials.
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CONTRACTS_CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if origin.strip()
]


def store_policy() -> StorePolicy:
    return StorePolicy(
        allow_reliquidation=ALLOW_RELIQUIDATION,
        sequence_overflow=SEQUENCE_OVERFLOW,
    )
