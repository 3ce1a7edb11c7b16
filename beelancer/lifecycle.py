"""Gig lifecycle, escrow and bee levels.

Every gig status write goes through :func:`atomic_update_gig_status`, which
only succeeds while the gig still has the status the caller read. Escrow
movements always write a ledger row.
"""

from typing import Literal

from .config import get_settings
from .database import (
    GIGS_TABLE,
    credit_bee_honey,
    credit_user_honey,
    fetch_one,
    get_gig,
    record_honey_transaction,
    update_row,
    utcnow,
)
from .logging_config import get_logger

logger = get_logger("beelancer.lifecycle")

GigStatus = Literal["draft", "open", "in_progress", "review", "completed", "disputed", "cancelled"]
EscrowStatus = Literal["none", "held", "released", "refunded"]

# Valid state transitions
VALID_TRANSITIONS = {
    "draft": {"open", "cancelled"},
    "open": {"draft", "in_progress", "cancelled"},
    "in_progress": {"review", "disputed"},
    "review": {"completed", "in_progress", "disputed"},
    "disputed": {"completed", "cancelled"},
}

# Timestamp column set when a gig enters a status
_STATUS_TIMESTAMPS = {
    "in_progress": "started_at",
    "review": "review_at",
    "completed": "completed_at",
    "disputed": "disputed_at",
    "cancelled": "cancelled_at",
}


def can_transition(from_status: str, to_status: str) -> bool:
    """Check if a status transition is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, set())


async def atomic_update_gig_status(
    db,
    gig_id: str,
    expected_status: str,
    new_status: str,
    actor_id: str,
    **updates,
) -> tuple[dict | None, str | None]:
    """Atomically update gig status with optimistic locking.

    Returns:
        Tuple of (updated_gig, error).
        - If successful: (gig_dict, None)
        - If gig not found: (None, "not_found")
        - If the transition is not allowed: (None, "invalid_transition")
        - If status changed underneath us: (None, "conflict")
    """
    if not can_transition(expected_status, new_status):
        return None, "invalid_transition"

    update_data = {"status": new_status, **updates}
    column = _STATUS_TIMESTAMPS.get(new_status)
    # Revisions send a gig back to in_progress; keep its original start time.
    if column and not (new_status == "in_progress" and expected_status != "open"):
        update_data[column] = utcnow()

    updated = update_row(db, GIGS_TABLE, gig_id, update_data, where={"status": expected_status})
    if updated:
        logger.info(f"Gig {gig_id}: {expected_status} -> {new_status} | actor={actor_id}")
        return updated, None

    gig = await get_gig(db, gig_id)
    if not gig:
        return None, "not_found"

    logger.warning(
        f"Race condition detected on gig {gig_id}: "
        f"expected status '{expected_status}', found '{gig['status']}'"
    )
    return None, "conflict"


# =============================================================================
# Escrow
# =============================================================================


def bee_payout(amount: int, fee_percent: int | None = None) -> int:
    """What a bee receives for ``amount`` after the platform fee, rounded down."""
    if fee_percent is None:
        fee_percent = get_settings().platform_fee_percent
    return amount * (100 - fee_percent) // 100


def platform_fee(amount: int, fee_percent: int | None = None) -> int:
    """Platform's cut of an escrow release: whatever the bee does not receive."""
    return amount - bee_payout(amount, fee_percent)


async def hold_escrow(db, gig: dict, amount: int, bee_id: str) -> None:
    """Record the hold for honey already debited from the owner."""
    await record_honey_transaction(
        db, "escrow_hold", -amount, user_id=gig["user_id"], bee_id=bee_id, gig_id=gig["id"]
    )


async def release_escrow(db, gig: dict) -> dict:
    """Pay the assigned bee from escrow, minus the platform fee.

    Returns a summary of the payout. Escrow must be held.
    """
    amount = gig["escrow_amount"] or 0
    bee_id = gig["assigned_bee_id"]
    payout = bee_payout(amount)
    fee = platform_fee(amount)

    await credit_bee_honey(db, bee_id, payout)
    update_row(db, GIGS_TABLE, gig["id"], {"escrow_status": "released"})
    await record_honey_transaction(db, "escrow_release", payout, bee_id=bee_id, gig_id=gig["id"])
    if fee:
        await record_honey_transaction(db, "platform_fee", fee, gig_id=gig["id"])

    logger.info(f"Escrow released | gig={gig['id']} | bee={bee_id} | payout={payout} | fee={fee}")
    return {"escrow_amount": amount, "platform_fee": fee, "bee_received": payout}


async def refund_escrow(db, gig: dict) -> dict:
    """Return the full escrow to the gig owner."""
    amount = gig["escrow_amount"] or 0
    await credit_user_honey(db, gig["user_id"], amount)
    update_row(db, GIGS_TABLE, gig["id"], {"escrow_status": "refunded"})
    await record_honey_transaction(db, "escrow_refund", amount, user_id=gig["user_id"], gig_id=gig["id"])
    logger.info(f"Escrow refunded | gig={gig['id']} | owner={gig['user_id']} | amount={amount}")
    return {"escrow_amount": amount, "refunded": amount}


async def complete_work(db, gig: dict, rating: int | None = None) -> dict:
    """Bookkeeping after a gig completes in the bee's favour.

    Releases escrow, bumps the bee's completed count, folds in the rating,
    recomputes the level and closes the assignment.
    """
    payout = await release_escrow(db, gig)
    bee_id = gig["assigned_bee_id"]
    if rating is not None:
        db.execute(
            """
            UPDATE bees SET
                reputation = (reputation * rating_count + ?) / (rating_count + 1),
                rating_count = rating_count + 1
            WHERE id = ?
            """,
            (rating, bee_id),
        )
    db.execute(
        "UPDATE bees SET gigs_completed = gigs_completed + 1, updated_at = ? WHERE id = ?",
        (utcnow(), bee_id),
    )
    db.execute(
        "UPDATE gig_assignments SET status = 'completed', completed_at = ? WHERE gig_id = ? AND bee_id = ? AND status = 'working'",
        (utcnow(), gig["id"], bee_id),
    )
    await refresh_bee_level(db, bee_id)
    return payout


# =============================================================================
# Levels
# =============================================================================

# (level, min gigs completed, min rating, max disputes lost) from highest to lowest
LEVEL_REQUIREMENTS = [
    ("queen", 50, 4.8, 0),
    ("expert", 10, 4.5, None),
    ("worker", 3, 4.0, None),
]

LEVEL_EMOJI = {
    "new": "🐣",
    "worker": "🐝",
    "expert": "⭐",
    "queen": "👑",
}


def compute_level(gigs_completed: int, reputation: float, disputes_lost: int = 0) -> str:
    for level, min_gigs, min_rating, max_disputes in LEVEL_REQUIREMENTS:
        if gigs_completed < min_gigs or reputation < min_rating:
            continue
        if max_disputes is not None and disputes_lost > max_disputes:
            continue
        return level
    return "new"


def level_display(level: str) -> str:
    return f"{LEVEL_EMOJI.get(level, LEVEL_EMOJI['new'])} {level.capitalize()}"


async def refresh_bee_level(db, bee_id: str) -> str | None:
    bee = fetch_one(db, "SELECT gigs_completed, reputation, disputes_lost, level FROM bees WHERE id = ?", (bee_id,))
    if not bee:
        return None
    level = compute_level(bee["gigs_completed"], bee["reputation"], bee["disputes_lost"])
    if level != bee["level"]:
        db.execute("UPDATE bees SET level = ? WHERE id = ?", (level, bee_id))
        logger.info(f"Bee {bee_id} level {bee['level']} -> {level}")
    return level


def format_honey(amount: int) -> str:
    return f"🍯 {amount:,}"
