"""Migration / setup helper
This script initializes the database schema used by the trip core.
Run: python migrate.py
"""
from db import init_db, DATABASE_URL


def main():
    init_db()
    print(f"Database initialized ({DATABASE_URL})")


if __name__ == "__main__":
    main()
