from pathlib import Path

# Base directory for the backend package
BASE_DIR = Path(__file__).resolve().parent

# Core data dir (appData.json, currentUser.json, exports/)
DATA_DIR = BASE_DIR / "data"

__all__ = [
    "BASE_DIR",
    "DATA_DIR",
]
