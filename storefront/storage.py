# storefront/storage.py
import datetime
import json
import os
import sqlite3
from typing import Any, Optional

import pytz

from .logger import get_logger

logger = get_logger(__name__)

DB_PATH = os.getenv("DB_PATH", "data/storefront_state.sqlite3")


def _connect():
    db_dir = os.path.dirname(DB_PATH)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    return sqlite3.connect(DB_PATH)


def now_utc_iso() -> str:
    return datetime.datetime.now(tz=pytz.UTC).isoformat()


def ensure_db():
    with _connect() as con:
        cur = con.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT
            )
        """
        )
        con.commit()


def get_value(key: str) -> Optional[str]:
    """
    Return the raw stored string for key, or None if absent.
    """
    ensure_db()
    with _connect() as con:
        cur = con.cursor()
        cur.execute("SELECT value FROM kv_store WHERE key=?", (key,))
        row = cur.fetchone()
    return row[0] if row else None


def set_value(key: str, value: str):
    ensure_db()
    with _connect() as con:
        cur = con.cursor()
        cur.execute(
            """
            INSERT INTO kv_store (key, value, updated_at)
            VALUES (?,?,?)
            ON CONFLICT(key) DO UPDATE SET
                value=excluded.value,
                updated_at=excluded.updated_at
        """,
            (key, value, now_utc_iso()),
        )
        con.commit()


def delete_value(key: str):
    ensure_db()
    with _connect() as con:
        cur = con.cursor()
        cur.execute("DELETE FROM kv_store WHERE key=?", (key,))
        con.commit()


def get_json(key: str, default: Any = None) -> Any:
    """
    Decode the JSON stored under key. Missing or corrupt values yield default.
    """
    raw = get_value(key)
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except ValueError as e:
        logger.warning("Discarding corrupt value stored under %s: %s", key, e)
        return default


def set_json(key: str, value: Any):
    set_value(key, json.dumps(value, ensure_ascii=False))
