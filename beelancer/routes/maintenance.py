"""Maintenance routes.

Called periodically (e.g. via cron) with ``Authorization: Bearer <CRON_SECRET>``
to approve work that owners have left unreviewed for too long.
"""

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel

from ..auth import CronAuth
from ..config import get_settings
from ..database import Database, fetch_all, update_row, utcnow
from ..lifecycle import atomic_update_gig_status, complete_work
from ..logging_config import get_logger
from ..rate_limit import limiter

logger = get_logger("beelancer.routes.maintenance")
router = APIRouter(prefix="/cron", tags=["maintenance"])


# =============================================================================
# Request/Response Models
# =============================================================================


class AutoApproveAction(BaseModel):
    """A single auto-approval taken or to be taken."""

    gig_id: str
    deliverable_id: str
    bee_id: str
    submitted_at: str
    escrow_amount: int
    result: str  # "approved", "skipped", "would_approve"


class AutoApproveResponse(BaseModel):
    dry_run: bool
    cutoff: str
    checked: int
    approved: int
    actions: list[AutoApproveAction]


# =============================================================================
# Database Operations
# =============================================================================


async def get_stale_reviews(db, cutoff: str) -> list[dict]:
    """Gigs in review whose newest pending deliverable was submitted before ``cutoff``."""
    return fetch_all(
        db,
        """
        SELECT g.id AS gig_id, g.assigned_bee_id AS bee_id, g.escrow_amount,
               d.id AS deliverable_id, d.created_at AS submitted_at
        FROM gigs g
        JOIN deliverables d ON d.id = (
            SELECT id FROM deliverables
            WHERE gig_id = g.id AND status = 'pending'
            ORDER BY created_at DESC LIMIT 1
        )
        WHERE g.status = 'review' AND d.created_at < ?
        ORDER BY d.created_at ASC
        """,
        (cutoff,),
    )


# =============================================================================
# Routes
# =============================================================================


async def _run_auto_approve(db, dry_run: bool) -> AutoApproveResponse:
    days = get_settings().auto_approve_days
    cutoff = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
    stale = await get_stale_reviews(db, cutoff)
    logger.info(f"Auto-approve run | cutoff={cutoff} | candidates={len(stale)} | dry_run={dry_run}")

    actions = []
    approved = 0
    for row in stale:
        if dry_run:
            result = "would_approve"
        else:
            updated, error = await atomic_update_gig_status(
                db, row["gig_id"], expected_status="review", new_status="completed", actor_id="system"
            )
            if error:
                logger.warning(f"Auto-approve skipped gig {row['gig_id']}: {error}")
                result = "skipped"
            else:
                update_row(
                    db,
                    "deliverables",
                    row["deliverable_id"],
                    {"status": "approved", "feedback": f"Auto-approved after {days} days", "reviewed_at": utcnow()},
                )
                await complete_work(db, updated)
                approved += 1
                result = "approved"
        actions.append(AutoApproveAction(result=result, **row))

    return AutoApproveResponse(
        dry_run=dry_run, cutoff=cutoff, checked=len(stale), approved=approved, actions=actions
    )


@router.get("/auto-approve", response_model=AutoApproveResponse)
@limiter.limit("10/minute")
async def auto_approve_get(
    request: Request,
    _cron: CronAuth,
    db: Database,
    dry_run: bool = Query(False),
):
    return await _run_auto_approve(db, dry_run)


@router.post("/auto-approve", response_model=AutoApproveResponse)
@limiter.limit("10/minute")
async def auto_approve_post(
    request: Request,
    _cron: CronAuth,
    db: Database,
    dry_run: bool = Query(False),
):
    """Approve deliverables left unreviewed past the auto-approve window."""
    return await _run_auto_approve(db, dry_run)
