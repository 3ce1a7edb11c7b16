"""Database access for the Beelancer API.

One SQLite connection per request, committed when the request succeeds and
rolled back when it raises. Route modules keep their own query helpers; the
helpers here are shared across resource groups.
"""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Annotated, Any, AsyncIterator, Iterator

from fastapi import Depends

from .config import Settings, get_settings
from .logging_config import get_logger
from .schema import init_db, validate_table_name

logger = get_logger("beelancer.database")

# Table names
USERS_TABLE = "users"
BEES_TABLE = "bees"
GIGS_TABLE = "gigs"
HONEY_TX_TABLE = "honey_transactions"

# Columns stored as JSON text, decoded to lists on read
JSON_LIST_COLUMNS = frozenset({"skills", "capabilities", "tools", "languages"})


def utcnow() -> str:
    """Current UTC time as an ISO-8601 string (the format stored in every *_at column)."""
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


def connect(settings: Settings | None = None) -> sqlite3.Connection:
    """Open a configured connection to the application database."""
    settings = settings or get_settings()
    conn = sqlite3.connect(settings.database_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


@contextmanager
def transaction(settings: Settings | None = None) -> Iterator[sqlite3.Connection]:
    """Context manager that handles transactions AND closes connection.

    - Transaction commit on success
    - Transaction rollback on exception
    - Connection close in all cases
    """
    conn = connect(settings)
    try:
        yield conn
        conn.commit()
    except Exception as e:
        logger.debug(f"Transaction failed, rolling back: {e}")
        conn.rollback()
        raise
    finally:
        conn.close()


def initialize_database(settings: Settings | None = None) -> None:
    """Create the schema if needed."""
    with transaction(settings) as conn:
        init_db(conn)


async def get_db(settings: Annotated[Settings, Depends(get_settings)]) -> AsyncIterator[sqlite3.Connection]:
    """Per-request database connection dependency."""
    with transaction(settings) as conn:
        yield conn


# Type alias for dependency injection
Database = Annotated[sqlite3.Connection, Depends(get_db)]


# =============================================================================
# Row helpers
# =============================================================================


def decode_json_list(value: Any) -> list:
    """Decode a JSON list column; anything unparseable reads as empty."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    try:
        decoded = json.loads(value)
    except (TypeError, ValueError):
        return []
    return decoded if isinstance(decoded, list) else []


def encode_json_list(value: list | None) -> str:
    return json.dumps(list(value or []))


def row_to_dict(row: sqlite3.Row | None) -> dict | None:
    if row is None:
        return None
    data = dict(row)
    for key in JSON_LIST_COLUMNS.intersection(data):
        data[key] = decode_json_list(data[key])
    return data


def fetch_one(db: sqlite3.Connection, sql: str, params: tuple | list = ()) -> dict | None:
    return row_to_dict(db.execute(sql, params).fetchone())


def fetch_all(db: sqlite3.Connection, sql: str, params: tuple | list = ()) -> list[dict]:
    return [row_to_dict(r) for r in db.execute(sql, params).fetchall()]


def fetch_value(db: sqlite3.Connection, sql: str, params: tuple | list = ()) -> Any:
    row = db.execute(sql, params).fetchone()
    return row[0] if row else None


def insert_row(db: sqlite3.Connection, table: str, data: dict) -> dict:
    """Insert a row and return it as stored.

    ``id``, ``created_at`` and (where the table has it) ``updated_at`` are
    filled in when missing. Raises sqlite3.IntegrityError on constraint
    violations so callers can map duplicates to 409.
    """
    table = validate_table_name(table)
    data = dict(data)
    data.setdefault("id", new_id())
    now = utcnow()
    data.setdefault("created_at", now)
    if table in (USERS_TABLE, BEES_TABLE, GIGS_TABLE, "bids"):
        data.setdefault("updated_at", now)
    for key in JSON_LIST_COLUMNS.intersection(data):
        if not isinstance(data[key], str):
            data[key] = encode_json_list(data[key])
    columns = ", ".join(data)
    placeholders = ", ".join("?" for _ in data)
    db.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", list(data.values()))
    return fetch_one(db, f"SELECT * FROM {table} WHERE id = ?", (data["id"],))


def update_row(
    db: sqlite3.Connection,
    table: str,
    row_id: str,
    updates: dict,
    where: dict | None = None,
) -> dict | None:
    """Update a row by id, optionally guarded by extra equality conditions.

    Returns the updated row, or None when nothing matched.
    """
    table = validate_table_name(table)
    updates = dict(updates)
    if table in (USERS_TABLE, BEES_TABLE, GIGS_TABLE, "bids"):
        updates.setdefault("updated_at", utcnow())
    for key in JSON_LIST_COLUMNS.intersection(updates):
        if not isinstance(updates[key], str):
            updates[key] = encode_json_list(updates[key])
    assignments = ", ".join(f"{k} = ?" for k in updates)
    sql = f"UPDATE {table} SET {assignments} WHERE id = ?"
    params = [*updates.values(), row_id]
    for key, value in (where or {}).items():
        sql += f" AND {key} = ?"
        params.append(value)
    cur = db.execute(sql, params)
    if cur.rowcount == 0:
        return None
    return fetch_one(db, f"SELECT * FROM {table} WHERE id = ?", (row_id,))


def is_unique_violation(exc: Exception) -> bool:
    """True if an exception is a unique-constraint failure."""
    msg = str(exc).lower()
    return isinstance(exc, sqlite3.IntegrityError) and ("unique" in msg or "duplicate" in msg)


# =============================================================================
# Shared lookups
# =============================================================================


async def get_user(db: sqlite3.Connection, user_id: str) -> dict | None:
    return fetch_one(db, "SELECT * FROM users WHERE id = ?", (user_id,))


async def get_user_by_email(db: sqlite3.Connection, email: str) -> dict | None:
    return fetch_one(db, "SELECT * FROM users WHERE email = ?", (email.strip().lower(),))


async def get_bee(db: sqlite3.Connection, bee_id: str) -> dict | None:
    return fetch_one(db, "SELECT * FROM bees WHERE id = ?", (bee_id,))


async def get_bee_by_id_or_name(db: sqlite3.Connection, id_or_name: str) -> dict | None:
    """Look a bee up by id first, then by case-insensitive name."""
    bee = await get_bee(db, id_or_name)
    if bee:
        return bee
    return fetch_one(db, "SELECT * FROM bees WHERE name = ? COLLATE NOCASE", (id_or_name,))


async def get_gig(db: sqlite3.Connection, gig_id: str) -> dict | None:
    return fetch_one(db, "SELECT * FROM gigs WHERE id = ?", (gig_id,))


async def get_skill_claims(db: sqlite3.Connection, bee_id: str) -> list[dict]:
    """A bee's skill claims, most endorsed first."""
    return fetch_all(
        db,
        "SELECT * FROM skill_claims WHERE bee_id = ? ORDER BY endorsement_count DESC, created_at DESC",
        (bee_id,),
    )


async def get_quest_quotes(db: sqlite3.Connection, bee_id: str, quote_type: str | None = None) -> list[dict]:
    """Reflections and testimonials for a bee, featured first."""
    sql = "SELECT * FROM quest_quotes WHERE bee_id = ?"
    params: list = [bee_id]
    if quote_type:
        sql += " AND quote_type = ?"
        params.append(quote_type)
    rows = fetch_all(db, sql + " ORDER BY is_featured DESC, created_at DESC", params)
    for row in rows:
        row["is_featured"] = bool(row["is_featured"])
    return rows


# =============================================================================
# Honey balances
# =============================================================================


async def record_honey_transaction(
    db: sqlite3.Connection,
    kind: str,
    amount: int,
    user_id: str | None = None,
    bee_id: str | None = None,
    gig_id: str | None = None,
    note: str | None = None,
) -> dict:
    """Append a row to the honey ledger."""
    return insert_row(
        db,
        HONEY_TX_TABLE,
        {
            "kind": kind,
            "amount": amount,
            "user_id": user_id,
            "bee_id": bee_id,
            "gig_id": gig_id,
            "note": note,
        },
    )


async def debit_user_honey(db: sqlite3.Connection, user_id: str, amount: int) -> bool:
    """Debit a user's balance if it covers ``amount``. Returns False otherwise."""
    cur = db.execute(
        "UPDATE users SET honey = honey - ?, updated_at = ? WHERE id = ? AND honey >= ?",
        (amount, utcnow(), user_id, amount),
    )
    return cur.rowcount == 1


async def credit_user_honey(db: sqlite3.Connection, user_id: str, amount: int) -> None:
    db.execute(
        "UPDATE users SET honey = honey + ?, updated_at = ? WHERE id = ?",
        (amount, utcnow(), user_id),
    )


async def credit_bee_honey(db: sqlite3.Connection, bee_id: str, amount: int) -> None:
    db.execute(
        "UPDATE bees SET honey = honey + ?, updated_at = ? WHERE id = ?",
        (amount, utcnow(), bee_id),
    )
