"""
Migration helper for an existing planner SQLite DB.
Run:  python migrate.py [path/to/planner.db]

What it does (idempotent):
- Create task_series if missing
- Add series_master_id INTEGER to task
- Add is_exception BOOLEAN (default 0) to task and backfill NULLs
- Add duration_minutes INTEGER to task and task_series
- Add dissolved_on DATE to task_series
"""
import sqlite3
import sys
from pathlib import Path

DB_PATH = Path("instance") / "planner.db"


def table_exists(cursor, table):
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,))
    return cursor.fetchone() is not None


def column_exists(cursor, table, column):
    cursor.execute(f"PRAGMA table_info({table})")
    return any(row[1] == column for row in cursor.fetchall())


def add_column(cursor, table, column, col_type):
    if column_exists(cursor, table, column):
        print(f"[skip] {column} already exists on {table}")
        return False
    cursor.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}")
    print(f"[add] {column} added to {table}")
    return True


def create_series_table(cur):
    if table_exists(cur, "task_series"):
        print("[skip] task_series already exists")
        return
    cur.execute(
        """
        CREATE TABLE task_series (
            id INTEGER PRIMARY KEY,
            title VARCHAR(200) NOT NULL,
            description TEXT,
            status VARCHAR(20),
            priority VARCHAR(10),
            start_time TIME,
            anchor_day DATE NOT NULL,
            recurrence JSON NOT NULL,
            created_at DATETIME,
            updated_at DATETIME
        )
        """
    )
    print("[add] task_series table created")


def add_series_columns(cur):
    add_column(cur, "task_series", "duration_minutes", "INTEGER")
    add_column(cur, "task_series", "dissolved_on", "DATE")


def add_task_columns(cur):
    add_column(cur, "task", "series_master_id", "INTEGER REFERENCES task_series(id)")
    add_column(cur, "task", "duration_minutes", "INTEGER")
    add_column(cur, "task", "is_exception", "BOOLEAN DEFAULT 0")
    cur.execute("UPDATE task SET is_exception=0 WHERE is_exception IS NULL")
    cur.execute("CREATE INDEX IF NOT EXISTS ix_task_series_master_id ON task (series_master_id)")
    print("[update] backfilled is_exception and indexed series_master_id")


def run(db_path=DB_PATH):
    conn = sqlite3.connect(str(db_path))
    cur = conn.cursor()
    try:
        if not table_exists(cur, "task"):
            print(f"[skip] no task table in {db_path}; nothing to migrate")
            return
        create_series_table(cur)
        add_series_columns(cur)
        add_task_columns(cur)
        conn.commit()
        print("Migration complete.")
    finally:
        conn.close()


def main():
    run(Path(sys.argv[1]) if len(sys.argv) > 1 else DB_PATH)


if __name__ == "__main__":
    main()
