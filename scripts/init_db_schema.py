"""
Database schema initialization
------------------------------
Creates missing tables and lists what exists afterwards.
"""

import sys
from pathlib import Path

# Environment
from dotenv import load_dotenv

BACKEND_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(BACKEND_ROOT / ".env")

# Make the app package importable when run from a checkout
sys.path.insert(0, str(BACKEND_ROOT))

from sqlalchemy import inspect  # noqa: E402

from app.db.init_db import init_db  # noqa: E402
from app.db.session import engine  # noqa: E402


def init_db_schema() -> None:
    """Create tables and print the resulting table list."""
    print("Initializing database schema...")

    init_db(engine)
    print("Tables created")

    print("\nTables:")
    for table_name in sorted(inspect(engine).get_table_names()):
        print(f"  - {table_name}")


if __name__ == "__main__":
    init_db_schema()
