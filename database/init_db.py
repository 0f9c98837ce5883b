import argparse
import os
import sqlite3

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# schema.sql is inside this folder
SCHEMA_PATH = os.path.join(BASE_DIR, "schema.sql")

# maiware.db lives in the project root unless told otherwise
DEFAULT_DB_PATH = os.path.join(BASE_DIR, "..", "maiware.db")


def init_db(db_path=DEFAULT_DB_PATH):
    """Create every table that does not exist yet. Safe to run repeatedly."""
    with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
        schema_sql = f.read()

    conn = sqlite3.connect(db_path)
    try:
        conn.executescript(schema_sql)
        conn.commit()
    finally:
        conn.close()
    return db_path


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the mAIware database")
    parser.add_argument("db_path", nargs="?", default=os.environ.get(
        "MAIWARE_DB_PATH", DEFAULT_DB_PATH))
    path = init_db(parser.parse_args().db_path)
    print("Database initialized successfully at:", os.path.abspath(path))
