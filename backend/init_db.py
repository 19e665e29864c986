"""
Tiny DB bootstrap script for the ledger service.

- Reads LEDGER_DB_URL (or falls back to a local SQLite file).
- Creates all tables defined in ledger.models.

Usage (from backend/):
  python init_db.py
"""

from ledger.db import engine, init_db


def main() -> None:
    init_db()
    print(f"Ledger tables created (or already exist) in {engine.url}.")


if __name__ == "__main__":
    main()
