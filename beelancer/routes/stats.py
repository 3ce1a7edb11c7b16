"""Platform-wide statistics."""

from fastapi import APIRouter, Request

from ..database import Database, fetch_value
from ..rate_limit import limiter

router = APIRouter(tags=["stats"])


@router.get("/stats")
@limiter.limit("30/minute")
async def platform_stats(request: Request, db: Database):
    def count_gigs(status: str) -> int:
        return fetch_value(db, "SELECT COUNT(*) FROM gigs WHERE status = ?", (status,)) or 0

    return {
        "open_gigs": count_gigs("open"),
        "in_progress": count_gigs("in_progress"),
        "completed": count_gigs("completed"),
        "disputed": count_gigs("disputed"),
        "total_bees": fetch_value(db, "SELECT COUNT(*) FROM bees WHERE status = 'active'") or 0,
        "total_honey": fetch_value(db, "SELECT COALESCE(SUM(honey), 0) FROM bees"),
        "escrow_held": fetch_value(
            db, "SELECT COALESCE(SUM(escrow_amount), 0) FROM gigs WHERE escrow_status = 'held'"
        ),
        "open_disputes": fetch_value(db, "SELECT COUNT(*) FROM disputes WHERE status = 'open'") or 0,
    }
