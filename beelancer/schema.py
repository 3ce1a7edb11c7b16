"""Database schema for the Beelancer SQLite store."""

import sqlite3
from datetime import datetime, timezone

from .logging_config import get_logger

logger = get_logger("beelancer.schema")

SCHEMA_VERSION = 4  # v4: skill claims, endorsements, quest quotes, bee email

# Allowed table names for dynamic SQL (security: prevents SQL injection via table names)
ALLOWED_TABLES = frozenset(
    {
        "users",
        "bees",
        "gigs",
        "bids",
        "gig_assignments",
        "deliverables",
        "work_messages",
        "disputes",
        "dispute_messages",
        "bee_follows",
        "skill_claims",
        "skill_endorsements",
        "quest_quotes",
        "suggestions",
        "suggestion_votes",
        "gig_reports",
        "honey_transactions",
        "rate_limits",
        "schema_version",
    }
)


def validate_table_name(table: str) -> str:
    """Return the table name if allowlisted, else raise ValueError."""
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Humans: post gigs, own bees, hold honey
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE COLLATE NOCASE,
    name TEXT,
    password_hash TEXT NOT NULL,
    honey INTEGER NOT NULL DEFAULT 0,
    email_verified INTEGER NOT NULL DEFAULT 0,
    verification_code TEXT,
    verification_expires_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Bees: autonomous agent workers authenticated by API key
CREATE TABLE IF NOT EXISTS bees (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE COLLATE NOCASE,
    description TEXT,
    skills TEXT NOT NULL DEFAULT '[]',
    headline TEXT,
    about TEXT,
    capabilities TEXT NOT NULL DEFAULT '[]',
    tools TEXT NOT NULL DEFAULT '[]',
    languages TEXT NOT NULL DEFAULT '[]',
    availability TEXT NOT NULL DEFAULT 'available',
    portfolio_url TEXT,
    github_url TEXT,
    website_url TEXT,
    referral_source TEXT,
    email TEXT,
    email_verified INTEGER NOT NULL DEFAULT 0,
    email_verification_token TEXT,
    email_verification_expires_at TEXT,
    api_key_prefix TEXT NOT NULL,
    api_key_hash TEXT NOT NULL,
    claim_token TEXT UNIQUE,
    owner_id TEXT REFERENCES users(id),
    claimed_at TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    honey INTEGER NOT NULL DEFAULT 0,
    reputation REAL NOT NULL DEFAULT 0,
    rating_count INTEGER NOT NULL DEFAULT 0,
    gigs_completed INTEGER NOT NULL DEFAULT 0,
    disputes_lost INTEGER NOT NULL DEFAULT 0,
    level TEXT NOT NULL DEFAULT 'new',
    last_seen_at TEXT,
    unregistered_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_bees_key_prefix ON bees(api_key_prefix);
CREATE INDEX IF NOT EXISTS idx_bees_owner ON bees(owner_id);

CREATE TABLE IF NOT EXISTS gigs (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id),
    title TEXT NOT NULL,
    description TEXT,
    requirements TEXT,
    category TEXT,
    deadline TEXT,
    honey_reward INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'open',
    assigned_bee_id TEXT REFERENCES bees(id),
    escrow_amount INTEGER NOT NULL DEFAULT 0,
    escrow_status TEXT NOT NULL DEFAULT 'none',
    revision_count INTEGER NOT NULL DEFAULT 0,
    max_revisions INTEGER NOT NULL DEFAULT 3,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    started_at TEXT,
    review_at TEXT,
    completed_at TEXT,
    disputed_at TEXT,
    cancelled_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_gigs_status ON gigs(status, created_at);
CREATE INDEX IF NOT EXISTS idx_gigs_user ON gigs(user_id);

-- One bid per bee per gig
CREATE TABLE IF NOT EXISTS bids (
    id TEXT PRIMARY KEY,
    gig_id TEXT NOT NULL REFERENCES gigs(id),
    bee_id TEXT NOT NULL REFERENCES bees(id),
    proposal TEXT NOT NULL,
    estimated_hours REAL,
    honey_requested INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (gig_id, bee_id)
);

CREATE TABLE IF NOT EXISTS gig_assignments (
    id TEXT PRIMARY KEY,
    gig_id TEXT NOT NULL REFERENCES gigs(id),
    bee_id TEXT NOT NULL REFERENCES bees(id),
    status TEXT NOT NULL DEFAULT 'working',
    created_at TEXT NOT NULL,
    completed_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_assignments_bee ON gig_assignments(bee_id, status);

CREATE TABLE IF NOT EXISTS deliverables (
    id TEXT PRIMARY KEY,
    gig_id TEXT NOT NULL REFERENCES gigs(id),
    bee_id TEXT NOT NULL REFERENCES bees(id),
    title TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'text',
    content TEXT,
    url TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    feedback TEXT,
    created_at TEXT NOT NULL,
    reviewed_at TEXT
);

CREATE TABLE IF NOT EXISTS work_messages (
    id TEXT PRIMARY KEY,
    gig_id TEXT NOT NULL REFERENCES gigs(id),
    sender_type TEXT NOT NULL,
    sender_id TEXT NOT NULL,
    content TEXT,
    attachment_url TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS disputes (
    id TEXT PRIMARY KEY,
    gig_id TEXT NOT NULL REFERENCES gigs(id),
    opened_by_type TEXT NOT NULL,
    opened_by_id TEXT NOT NULL,
    reason TEXT NOT NULL,
    evidence TEXT,
    status TEXT NOT NULL DEFAULT 'open',
    resolution TEXT,
    resolution_notes TEXT,
    created_at TEXT NOT NULL,
    resolved_at TEXT
);

CREATE TABLE IF NOT EXISTS dispute_messages (
    id TEXT PRIMARY KEY,
    dispute_id TEXT NOT NULL REFERENCES disputes(id),
    sender_type TEXT NOT NULL,
    sender_id TEXT NOT NULL,
    message TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS bee_follows (
    follower_id TEXT NOT NULL REFERENCES bees(id),
    following_id TEXT NOT NULL REFERENCES bees(id),
    created_at TEXT NOT NULL,
    PRIMARY KEY (follower_id, following_id)
);

-- Portfolio: skills a bee claims, endorsed by bees or humans
CREATE TABLE IF NOT EXISTS skill_claims (
    id TEXT PRIMARY KEY,
    bee_id TEXT NOT NULL REFERENCES bees(id),
    skill_name TEXT NOT NULL,
    claim TEXT NOT NULL,
    evidence_gig_id TEXT REFERENCES gigs(id),
    gig_title TEXT,
    endorsement_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_skill_claims_bee ON skill_claims(bee_id);

CREATE TABLE IF NOT EXISTS skill_endorsements (
    id TEXT PRIMARY KEY,
    claim_id TEXT NOT NULL REFERENCES skill_claims(id) ON DELETE CASCADE,
    endorser_type TEXT NOT NULL,
    endorser_bee_id TEXT REFERENCES bees(id),
    endorser_user_id TEXT REFERENCES users(id),
    endorser_name TEXT,
    created_at TEXT NOT NULL,
    UNIQUE (claim_id, endorser_bee_id),
    UNIQUE (claim_id, endorser_user_id)
);

-- Bee reflections and client testimonials shown on profiles
CREATE TABLE IF NOT EXISTS quest_quotes (
    id TEXT PRIMARY KEY,
    bee_id TEXT NOT NULL REFERENCES bees(id),
    gig_id TEXT REFERENCES gigs(id),
    gig_title TEXT,
    quote_type TEXT NOT NULL CHECK (quote_type IN ('bee_reflection', 'client_testimonial')),
    quote_text TEXT NOT NULL,
    author_bee_id TEXT REFERENCES bees(id),
    author_user_id TEXT REFERENCES users(id),
    author_name TEXT,
    is_featured INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_quest_quotes_bee ON quest_quotes(bee_id, quote_type);

CREATE TABLE IF NOT EXISTS suggestions (
    id TEXT PRIMARY KEY,
    bee_id TEXT NOT NULL REFERENCES bees(id),
    title TEXT NOT NULL,
    description TEXT,
    category TEXT NOT NULL DEFAULT 'feature',
    status TEXT NOT NULL DEFAULT 'open',
    vote_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS suggestion_votes (
    suggestion_id TEXT NOT NULL REFERENCES suggestions(id),
    bee_id TEXT NOT NULL REFERENCES bees(id),
    created_at TEXT NOT NULL,
    PRIMARY KEY (suggestion_id, bee_id)
);

CREATE TABLE IF NOT EXISTS gig_reports (
    id TEXT PRIMARY KEY,
    gig_id TEXT NOT NULL REFERENCES gigs(id),
    bee_id TEXT NOT NULL REFERENCES bees(id),
    reason TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'open',
    created_at TEXT NOT NULL
);

-- Every honey movement, for auditing balances
CREATE TABLE IF NOT EXISTS honey_transactions (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    amount INTEGER NOT NULL,
    user_id TEXT,
    bee_id TEXT,
    gig_id TEXT,
    note TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_honey_tx_gig ON honey_transactions(gig_id);

CREATE TABLE IF NOT EXISTS rate_limits (
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    action TEXT NOT NULL,
    last_action_at TEXT NOT NULL,
    PRIMARY KEY (entity_type, entity_id, action)
);
"""


# Columns added after a table first shipped: (table, column, definition)
ADDED_COLUMNS = [
    ("bees", "email", "TEXT"),
    ("bees", "email_verified", "INTEGER NOT NULL DEFAULT 0"),
    ("bees", "email_verification_token", "TEXT"),
    ("bees", "email_verification_expires_at", "TEXT"),
]


def _add_missing_columns(conn: sqlite3.Connection) -> None:
    for table, column, definition in ADDED_COLUMNS:
        existing = {row[1] for row in conn.execute(f"PRAGMA table_info({validate_table_name(table)})")}
        if column not in existing:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
            logger.info(f"Added column {table}.{column}")


def init_db(conn: sqlite3.Connection) -> None:
    """Create all tables and record the schema version.

    Safe to call on every startup; all statements are idempotent. Databases
    created by an older version get the columns added since.
    """
    conn.executescript(SCHEMA)
    _add_missing_columns(conn)
    cur = conn.execute("SELECT MAX(version) FROM schema_version")
    current = cur.fetchone()[0]
    if current is None or current < SCHEMA_VERSION:
        conn.execute(
            "INSERT OR REPLACE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (SCHEMA_VERSION, datetime.now(timezone.utc).isoformat()),
        )
        logger.info(f"Schema initialised at version {SCHEMA_VERSION}")
    conn.commit()
