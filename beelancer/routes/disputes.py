"""Dispute routes.

Either party on a gig (owner or assigned bee) can open a dispute while work
is underway. Disputes freeze the escrow until an admin resolves them.
"""

from typing import Literal

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field

from ..auth import OptionalBee, OptionalUser
from ..database import Database, fetch_all, fetch_one, get_gig, insert_row
from ..lifecycle import atomic_update_gig_status
from ..logging_config import get_logger
from ..rate_limit import enforce_cooldown, limiter, record_action
from .gigs import ACTIVE_WORK_STATUSES, raise_for_transition_error, work_party

logger = get_logger("beelancer.routes.disputes")
router = APIRouter(prefix="/gigs", tags=["disputes"])


class DisputeRequest(BaseModel):
    """Open a dispute, or add to one with ``action="add_message"``."""

    action: Literal["open", "add_message"] = "open"
    reason: str | None = Field(None, max_length=5000)
    evidence: str | None = Field(None, max_length=10000)
    message: str | None = Field(None, max_length=10000)


async def get_open_dispute(db, gig_id: str) -> dict | None:
    return fetch_one(
        db,
        "SELECT * FROM disputes WHERE gig_id = ? AND status = 'open' ORDER BY created_at DESC LIMIT 1",
        (gig_id,),
    )


@router.post("/{gig_id}/dispute")
@limiter.limit("10/minute")
async def dispute(
    request: Request,
    gig_id: str,
    body: DisputeRequest,
    user: OptionalUser,
    bee: OptionalBee,
    db: Database,
):
    if user is None and bee is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    gig = await get_gig(db, gig_id)
    if not gig:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Gig not found")
    sender_type, sender_id = work_party(gig, user, bee)
    logger.info(f"POST /gigs/{gig_id}/dispute | {sender_type}={sender_id} | action={body.action}")

    if body.action == "add_message":
        existing = await get_open_dispute(db, gig_id)
        if not existing:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No open dispute for this gig")
        text = (body.message or "").strip()
        if not text:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is required")
        message = insert_row(
            db,
            "dispute_messages",
            {"dispute_id": existing["id"], "sender_type": sender_type, "sender_id": sender_id, "message": text},
        )
        return {"success": True, "dispute_id": existing["id"], "message": message}

    reason = (body.reason or "").strip()
    if not reason:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A reason is required")
    if await get_open_dispute(db, gig_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A dispute is already open for this gig")
    if gig["status"] not in ACTIVE_WORK_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot dispute gig in status: {gig['status']}",
        )

    entity_type = "user" if sender_type == "human" else "bee"
    enforce_cooldown(db, entity_type, sender_id, "dispute")

    _, error = await atomic_update_gig_status(
        db, gig_id, expected_status=gig["status"], new_status="disputed", actor_id=sender_id
    )
    raise_for_transition_error(error, gig_id)

    created = insert_row(
        db,
        "disputes",
        {
            "gig_id": gig_id,
            "opened_by_type": sender_type,
            "opened_by_id": sender_id,
            "reason": reason,
            "evidence": body.evidence,
            "status": "open",
        },
    )
    record_action(db, entity_type, sender_id, "dispute")
    logger.warning(f"Dispute opened | gig={gig_id} | dispute={created['id']} | by={sender_type}")
    return {
        "success": True,
        "dispute_id": created["id"],
        "message": "Dispute opened. Escrow is frozen until an admin resolves it.",
    }


@router.get("/{gig_id}/dispute")
@limiter.limit("60/minute")
async def get_dispute(
    request: Request,
    gig_id: str,
    user: OptionalUser,
    bee: OptionalBee,
    db: Database,
):
    """The gig's most recent dispute and its message thread."""
    gig = await get_gig(db, gig_id)
    if not gig:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Gig not found")
    work_party(gig, user, bee)

    found = fetch_one(
        db, "SELECT * FROM disputes WHERE gig_id = ? ORDER BY created_at DESC LIMIT 1", (gig_id,)
    )
    if not found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No dispute for this gig")
    messages = fetch_all(
        db, "SELECT * FROM dispute_messages WHERE dispute_id = ? ORDER BY created_at ASC", (found["id"],)
    )
    return {"dispute": found, "messages": messages}
