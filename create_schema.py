#!/usr/bin/env python3
"""
Create the PostgreSQL schema and seed default categories and titles.
"""
import os
import uuid

import psycopg2

from chesscircuit.datastore_pg import create_tables

DEFAULT_CATEGORIES = ["Absoluto", "Feminino", "U18"]
DEFAULT_TITLES = ["GM", "IM", "FM", "NM", "AFM", "ACM", "CMN", "CM"]


def seed_lookup(conn, table, names):
    """Insert ``names`` into an empty lookup table; returns rows added."""
    with conn.cursor() as cur:
        cur.execute(f"SELECT COUNT(*) FROM {table}")
        if cur.fetchone()[0]:
            return 0
        for name in names:
            cur.execute(
                f"INSERT INTO {table} (id, name) VALUES (%s, %s)",
                (str(uuid.uuid4()), name),
            )
        conn.commit()
    return len(names)


def main():
    database_url = os.environ.get('DATABASE_URL')
    if not database_url:
        print("ERROR: DATABASE_URL environment variable not set")
        return 1

    conn = psycopg2.connect(database_url)
    try:
        create_tables(conn)
        print("Database schema created successfully")
        added_categories = seed_lookup(conn, "categories", DEFAULT_CATEGORIES)
        added_titles = seed_lookup(conn, "titles", DEFAULT_TITLES)
        print(f"Seeded {added_categories} categories and {added_titles} titles")
    finally:
        conn.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
