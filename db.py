import sqlite3

from flask import current_app, g


def get_db():
    """
    Get the database connection for the current request, creating it (and
    storing it in 'g') on first use.
    """
    if "db" not in g:
        conn = sqlite3.connect(current_app.config["DB_PATH"])
        conn.row_factory = sqlite3.Row  # rows behave like dictionaries
        conn.execute("PRAGMA foreign_keys = ON")
        g.db = conn
    return g.db


def close_db(e=None):
    """Close the connection at the end of the request (registered on the app)."""
    db = g.pop("db", None)
    if db is not None:
        db.close()
