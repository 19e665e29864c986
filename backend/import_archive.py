#!/usr/bin/env python3
"""
Import one or more ZIP archives from disk without going through HTTP.

Each archive is imported exactly like an upload: all-or-nothing, with the
same duplicate policy options.

Usage (from backend/):
  python import_archive.py exports/ana.zip exports/bob.zip --on-duplicate skip
"""
import argparse
import logging
import sys
from pathlib import Path

from ledger import config
from ledger.db import init_db
from ledger.errors import LedgerError
from ledger.services.importer import DUPLICATE_POLICIES, import_archive


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("archives", nargs="+", type=Path, help="ZIP archives to import")
    parser.add_argument("--on-duplicate", choices=DUPLICATE_POLICIES, default=None)
    args = parser.parse_args(argv)

    logging.basicConfig(level=config.LOG_LEVEL.upper(), format="%(levelname)s %(name)s: %(message)s")
    init_db()

    failures = 0
    for path in args.archives:
        try:
            result = import_archive(path.read_bytes(), path.name, args.on_duplicate)
        except (LedgerError, OSError) as exc:
            failures += 1
            print(f"  {path.name}: FAILED - {exc}")
            for detail in getattr(exc, "details", []):
                print(f"    {detail}")
            continue
        print(f"  {path.name}: {result.message} (userId={result.user_id})")
        for reference in result.conflicts:
            print(f"    duplicate skipped: {reference}")

    print(f"\nImported {len(args.archives) - failures} of {len(args.archives)} archive(s).")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
