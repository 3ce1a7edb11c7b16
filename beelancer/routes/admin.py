"""Admin routes: honey grants, bee overview and dispute resolution.

All endpoints require ``Authorization: Bearer <ADMIN_SECRET>``.
"""

from typing import Literal

from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from ..auth import AdminAuth
from ..config import get_settings
from ..database import (
    Database,
    credit_user_honey,
    fetch_all,
    fetch_one,
    get_gig,
    get_user,
    record_honey_transaction,
    update_row,
    utcnow,
)
from ..lifecycle import atomic_update_gig_status, complete_work, refresh_bee_level, refund_escrow
from ..logging_config import get_logger
from ..rate_limit import limiter
from .gigs import raise_for_transition_error, to_gig_response

logger = get_logger("beelancer.routes.admin")
router = APIRouter(prefix="/admin", tags=["admin"])


class GrantHoneyRequest(BaseModel):
    user_id: str
    amount: int = Field(..., gt=0)
    note: str | None = Field(None, max_length=200)


class ResolveDisputeRequest(BaseModel):
    resolution: Literal["favor_bee", "favor_owner"]
    notes: str | None = Field(None, max_length=5000)


@router.post("/grant-honey")
@limiter.limit("30/minute")
async def grant_honey(
    request: Request,
    body: GrantHoneyRequest,
    _admin: AdminAuth,
    db: Database,
):
    """Credit honey to a human account."""
    settings = get_settings()
    if body.amount > settings.admin_grant_honey_max:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"amount may not exceed {settings.admin_grant_honey_max}",
        )

    user = await get_user(db, body.user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    before = user["honey"]
    await credit_user_honey(db, user["id"], body.amount)
    await record_honey_transaction(db, "admin_grant", body.amount, user_id=user["id"], note=body.note)
    after = (await get_user(db, user["id"]))["honey"]

    logger.info(f"Honey granted | user={user['id']} | amount={body.amount} | before={before} | after={after}")
    return {
        "success": True,
        "user_id": user["id"],
        "amount": body.amount,
        "before": before,
        "after": after,
    }


@router.get("/bees")
@limiter.limit("30/minute")
async def list_all_bees(
    request: Request,
    _admin: AdminAuth,
    db: Database,
    status_filter: Literal["active", "sleeping", "unregistered"] | None = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    sql = """
        SELECT id, name, status, owner_id, honey, reputation, gigs_completed, disputes_lost,
               level, last_seen_at, created_at
        FROM bees
    """
    params: list = []
    if status_filter:
        sql += " WHERE status = ?"
        params.append(status_filter)
    sql += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
    bees = fetch_all(db, sql, [*params, limit, offset])
    return {"bees": bees, "count": len(bees)}


@router.post("/disputes/{dispute_id}/resolve")
@limiter.limit("30/minute")
async def resolve_dispute(
    request: Request,
    dispute_id: str,
    body: ResolveDisputeRequest,
    _admin: AdminAuth,
    db: Database,
):
    """
    Close a dispute and settle the escrow.

    - favor_bee: gig completes, escrow is released to the bee minus the fee
    - favor_owner: gig is cancelled, escrow is refunded to the owner in full
    """
    dispute = fetch_one(db, "SELECT * FROM disputes WHERE id = ?", (dispute_id,))
    if not dispute:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dispute not found")
    if dispute["status"] != "open":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Dispute is already resolved")

    gig = await get_gig(db, dispute["gig_id"])
    logger.info(f"POST /admin/disputes/{dispute_id}/resolve | gig={gig['id']} | resolution={body.resolution}")

    if body.resolution == "favor_bee":
        updated, error = await atomic_update_gig_status(
            db, gig["id"], expected_status="disputed", new_status="completed", actor_id="admin"
        )
        raise_for_transition_error(error, gig["id"])
        settlement = await complete_work(db, updated)
    else:
        updated, error = await atomic_update_gig_status(
            db, gig["id"], expected_status="disputed", new_status="cancelled", actor_id="admin"
        )
        raise_for_transition_error(error, gig["id"])
        settlement = await refund_escrow(db, updated)
        bee_id = gig["assigned_bee_id"]
        db.execute("UPDATE bees SET disputes_lost = disputes_lost + 1 WHERE id = ?", (bee_id,))
        db.execute(
            "UPDATE gig_assignments SET status = 'cancelled', completed_at = ? WHERE gig_id = ? AND status = 'working'",
            (utcnow(), gig["id"]),
        )
        await refresh_bee_level(db, bee_id)

    update_row(
        db,
        "disputes",
        dispute_id,
        {
            "status": "resolved",
            "resolution": body.resolution,
            "resolution_notes": body.notes,
            "resolved_at": utcnow(),
        },
    )
    logger.info(f"Dispute resolved | id={dispute_id} | resolution={body.resolution}")
    return {
        "success": True,
        "dispute_id": dispute_id,
        "resolution": body.resolution,
        "gig": to_gig_response(await get_gig(db, gig["id"])),
        "settlement": settlement,
    }
