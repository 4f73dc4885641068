#!/usr/bin/env python3
"""Offline maintenance for the contract register: backup, restore, statistics export."""
import json
import sys
from datetime import date
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from backend import config  # noqa: E402
from backend.contracts.errors import ContractRegisterError  # noqa: E402
from backend.contracts.reports import export_statistics_xlsx, status_counts  # noqa: E402
from backend.contracts.storage import JsonFileStore  # noqa: E402
from backend.contracts.store import ContractStore  # noqa: E402


def _open_store(data_dir):
    gateway = JsonFileStore(data_dir)
    return ContractStore.load_or_seed(gateway, policy=config.store_policy())


def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description="Contract register maintenance")
    parser.add_argument("--data-dir", default=str(config.DATA_FOLDER), help="Folder holding appData.json")
    sub = parser.add_subparsers(dest="command", required=True)

    p_backup = sub.add_parser("backup", help="Write backup-YYYY-MM-DD.json")
    p_backup.add_argument("--out-dir", default=".", help="Where to write the backup file")

    p_restore = sub.add_parser("restore", help="Replace the register with a backup file")
    p_restore.add_argument("backup_file")

    p_export = sub.add_parser("export", help="Write the statistics workbook")
    p_export.add_argument("--out-dir", default=str(config.EXPORT_FOLDER))

    sub.add_parser("summary", help="Print status counts")

    args = parser.parse_args(argv)
    store = _open_store(args.data_dir)

    try:
        if args.command == "backup":
            snapshot = store.backup_data()
            out_path = Path(args.out_dir) / snapshot.filename
            out_path.parent.mkdir(parents=True, exist_ok=True)
            out_path.write_text(snapshot.content, encoding="utf-8")
            print(f"Saved backup to {out_path}")
        elif args.command == "restore":
            restored = store.restore_data(Path(args.backup_file).read_bytes())
            print(f"Restored {len(restored.contracts)} contracts, {len(restored.liquidations)} liquidations")
        elif args.command == "export":
            out_path = export_statistics_xlsx(store.data.contracts, store.data.wards, args.out_dir, today=date.today())
            print(f"Saved statistics to {out_path}")
        elif args.command == "summary":
            print(json.dumps(status_counts(store.data.contracts), indent=2))
    except (ContractRegisterError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
