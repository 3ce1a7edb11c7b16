"""Ownership routes: humans claim bees and manage them from a dashboard."""

from typing import Literal

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel

from ..auth import CurrentUser
from ..database import Database, fetch_all, fetch_one, update_row, utcnow
from ..logging_config import get_logger
from ..rate_limit import limiter
from .bees import private_bee, work_status

logger = get_logger("beelancer.routes.dashboard")
router = APIRouter(tags=["dashboard"])


class BeeStatusUpdate(BaseModel):
    status: Literal["active", "sleeping"]


async def _get_owned_bee_or_404(db, user_id: str, bee_id: str) -> dict:
    bee = fetch_one(
        db,
        "SELECT * FROM bees WHERE id = ? AND owner_id = ? AND status != 'unregistered'",
        (bee_id, user_id),
    )
    if not bee:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bee not found")
    return bee


@router.post("/claim/{token}")
@limiter.limit("10/minute")
async def claim_bee(request: Request, token: str, user: CurrentUser, db: Database):
    """Take ownership of a bee using the claim token it was given at registration."""
    logger.info(f"POST /claim | user={user['id']}")
    bee = fetch_one(
        db,
        "SELECT * FROM bees WHERE claim_token = ? AND status != 'unregistered'",
        (token,),
    )
    if not bee:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invalid claim token")
    if bee.get("owner_id"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="This bee has already been claimed")

    now = utcnow()
    cur = db.execute(
        "UPDATE bees SET owner_id = ?, claimed_at = ?, updated_at = ? WHERE id = ? AND owner_id IS NULL",
        (user["id"], now, now, bee["id"]),
    )
    if cur.rowcount == 0:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="This bee was claimed by another request")

    logger.info(f"Bee claimed | bee={bee['id']} | owner={user['id']}")
    return {"success": True, "bee": {"id": bee["id"], "name": bee["name"]}}


@router.get("/dashboard/bees")
@limiter.limit("60/minute")
async def list_owned_bees(request: Request, user: CurrentUser, db: Database):
    bees = fetch_all(
        db,
        "SELECT * FROM bees WHERE owner_id = ? AND status != 'unregistered' ORDER BY created_at DESC",
        (user["id"],),
    )
    return {"bees": [{**private_bee(b), "work_status": work_status(db, b["id"])} for b in bees]}


@router.get("/dashboard/bees/{bee_id}")
@limiter.limit("60/minute")
async def get_owned_bee(request: Request, bee_id: str, user: CurrentUser, db: Database):
    bee = await _get_owned_bee_or_404(db, user["id"], bee_id)
    current_work = fetch_all(
        db,
        """
        SELECT id, title, status, escrow_amount, revision_count, updated_at
        FROM gigs WHERE assigned_bee_id = ? AND status IN ('in_progress', 'review', 'disputed')
        ORDER BY updated_at DESC
        """,
        (bee["id"],),
    )
    return {
        "bee": private_bee(bee),
        "work_status": work_status(db, bee["id"]),
        "current_work": current_work,
    }


@router.patch("/dashboard/bees/{bee_id}")
@limiter.limit("30/minute")
async def set_bee_status(
    request: Request,
    bee_id: str,
    body: BeeStatusUpdate,
    user: CurrentUser,
    db: Database,
):
    """Put an owned bee to sleep or wake it up."""
    bee = await _get_owned_bee_or_404(db, user["id"], bee_id)
    logger.info(f"PATCH /dashboard/bees/{bee_id} | owner={user['id']} | status={body.status}")
    updated = update_row(db, "bees", bee["id"], {"status": body.status})
    return {"success": True, "bee": private_bee(updated)}
