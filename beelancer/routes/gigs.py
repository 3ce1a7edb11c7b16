"""Gig routes for the Beelancer marketplace.

Humans post gigs and accept bids; bees bid, deliver and talk to the gig
owner while they work. Payment is held in escrow from bid acceptance until
the owner approves the work.
"""

from typing import Literal

from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import BaseModel, Field, field_validator

from ..auth import CurrentBee, CurrentUser, OptionalBee, OptionalUser
from ..config import get_settings
from ..database import (
    Database,
    debit_user_honey,
    fetch_all,
    fetch_one,
    fetch_value,
    get_gig,
    insert_row,
    is_unique_violation,
    update_row,
    utcnow,
)
from ..lifecycle import (
    GigStatus,
    atomic_update_gig_status,
    bee_payout,
    can_transition,
    complete_work,
    format_honey,
    hold_escrow,
)
from ..logging_config import get_logger
from ..rate_limit import enforce_cooldown, limiter, record_action

logger = get_logger("beelancer.routes.gigs")
router = APIRouter(prefix="/gigs", tags=["gigs"])


# =============================================================================
# Request/Response Models
# =============================================================================

DeliverableType = Literal["text", "code", "file", "link"]
ReviewAction = Literal["approve", "request_revision", "reject"]


class GigCreate(BaseModel):
    """Request to post a gig."""

    title: str = Field(..., max_length=200)
    description: str | None = Field(None, max_length=10000)
    requirements: str | None = Field(None, max_length=10000)
    category: str | None = Field(None, max_length=50)
    deadline: str | None = None
    honey_reward: int
    status: Literal["draft", "open"] = "open"

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Title must be at least 3 characters")
        return v


class GigUpdate(BaseModel):
    """Owner edits to a gig. Only fields present change."""

    title: str | None = Field(None, max_length=200)
    description: str | None = Field(None, max_length=10000)
    requirements: str | None = Field(None, max_length=10000)
    category: str | None = Field(None, max_length=50)
    deadline: str | None = None
    honey_reward: int | None = None
    status: Literal["draft", "open", "cancelled"] | None = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Title must be at least 3 characters")
        return v


class BidCreate(BaseModel):
    proposal: str = Field(..., max_length=5000)
    estimated_hours: float | None = Field(None, ge=0, le=10000)
    honey_requested: int | None = None

    @field_validator("proposal")
    @classmethod
    def validate_proposal(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 10:
            raise ValueError("Proposal must be at least 10 characters")
        return v


class BidUpdate(BaseModel):
    proposal: str | None = Field(None, max_length=5000)
    estimated_hours: float | None = Field(None, ge=0, le=10000)
    honey_requested: int | None = None

    @field_validator("proposal")
    @classmethod
    def validate_proposal(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if len(v) < 10:
            raise ValueError("Proposal must be at least 10 characters")
        return v


class AcceptBidRequest(BaseModel):
    bid_id: str


class DeliverableCreate(BaseModel):
    title: str = Field(..., max_length=200)
    type: DeliverableType = "text"
    content: str | None = Field(None, max_length=100000)
    url: str | None = Field(None, max_length=2000)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title is required")
        return v


class ReviewRequest(BaseModel):
    deliverable_id: str
    action: ReviewAction
    feedback: str | None = Field(None, max_length=5000)
    rating: int | None = Field(None, ge=1, le=5)


class MessageCreate(BaseModel):
    content: str | None = Field(None, max_length=10000)
    attachment_url: str | None = Field(None, max_length=2000)


class ReportCreate(BaseModel):
    reason: str = Field(..., max_length=2000)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 10:
            raise ValueError("Reason must be at least 10 characters")
        return v


# =============================================================================
# Database Operations
# =============================================================================

# Statuses where the owner and the assigned bee are working together
ACTIVE_WORK_STATUSES = ("in_progress", "review")

# Skills worth adding to a profile, per gig category
CATEGORY_SKILLS = {
    "development": ["python", "javascript", "typescript", "testing", "api-design"],
    "writing": ["copywriting", "technical-writing", "editing", "research"],
    "design": ["ui-design", "illustration", "branding"],
    "data": ["data-analysis", "sql", "visualization", "scraping"],
    "research": ["research", "summarization", "fact-checking"],
    "other": ["communication", "problem-solving", "reliability"],
}

GIG_LIST_SQL = """
SELECT g.*, u.name AS creator_name,
       (SELECT COUNT(*) FROM bids b WHERE b.gig_id = g.id AND b.status != 'withdrawn') AS bid_count
FROM gigs g JOIN users u ON u.id = g.user_id
"""


async def list_gigs(
    db,
    status_filter: str,
    category: str | None,
    limit: int,
    offset: int,
) -> tuple[list[dict], int]:
    """List gigs, newest first. ``all`` means every non-draft gig."""
    where = ["g.status != 'draft'"] if status_filter == "all" else ["g.status = ?"]
    params: list = [] if status_filter == "all" else [status_filter]
    if category:
        where.append("g.category = ?")
        params.append(category)
    clause = " WHERE " + " AND ".join(where)

    total = fetch_value(db, f"SELECT COUNT(*) FROM gigs g{clause}", params)
    rows = fetch_all(
        db,
        f"{GIG_LIST_SQL}{clause} ORDER BY g.created_at DESC LIMIT ? OFFSET ?",
        [*params, limit, offset],
    )
    return rows, total or 0


async def get_gig_with_creator(db, gig_id: str) -> dict | None:
    return fetch_one(db, f"{GIG_LIST_SQL} WHERE g.id = ?", (gig_id,))


async def get_bids_for_gig(db, gig_id: str) -> list[dict]:
    return fetch_all(
        db,
        """
        SELECT b.*, bee.name AS bee_name, bee.level AS bee_level, bee.reputation AS bee_reputation,
               bee.gigs_completed AS bee_gigs_completed
        FROM bids b JOIN bees bee ON bee.id = b.bee_id
        WHERE b.gig_id = ? AND b.status != 'withdrawn'
        ORDER BY b.created_at ASC
        """,
        (gig_id,),
    )


async def get_bid_by_bee(db, gig_id: str, bee_id: str) -> dict | None:
    return fetch_one(db, "SELECT * FROM bids WHERE gig_id = ? AND bee_id = ?", (gig_id, bee_id))


async def get_deliverable(db, deliverable_id: str) -> dict | None:
    return fetch_one(db, "SELECT * FROM deliverables WHERE id = ?", (deliverable_id,))


# =============================================================================
# Helper Functions
# =============================================================================


def to_gig_response(gig: dict) -> dict:
    """Convert a DB gig row to its JSON shape."""
    data = {
        "id": gig["id"],
        "title": gig["title"],
        "description": gig.get("description"),
        "requirements": gig.get("requirements"),
        "category": gig.get("category"),
        "deadline": gig.get("deadline"),
        "honey_reward": gig["honey_reward"],
        "honey_formatted": format_honey(gig["honey_reward"]),
        "status": gig["status"],
        "assigned_bee_id": gig.get("assigned_bee_id"),
        "escrow_amount": gig["escrow_amount"],
        "escrow_status": gig["escrow_status"],
        "revision_count": gig["revision_count"],
        "max_revisions": gig["max_revisions"],
        "created_at": gig["created_at"],
        "updated_at": gig["updated_at"],
        "completed_at": gig.get("completed_at"),
    }
    if "bid_count" in gig:
        data["bid_count"] = gig["bid_count"]
    if "creator_name" in gig:
        data["creator"] = {"id": gig["user_id"], "name": gig["creator_name"]}
    return data


def to_bid_response(bid: dict, show_pricing: bool) -> dict:
    """Bid JSON. Pricing is private to the gig owner and the bidder."""
    data = {
        "id": bid["id"],
        "gig_id": bid["gig_id"],
        "proposal": bid["proposal"],
        "status": bid["status"],
        "created_at": bid["created_at"],
        "bee": {
            "id": bid["bee_id"],
            "name": bid.get("bee_name"),
            "level": bid.get("bee_level"),
            "reputation": bid.get("bee_reputation"),
            "gigs_completed": bid.get("bee_gigs_completed"),
        },
    }
    if show_pricing:
        data["estimated_hours"] = bid.get("estimated_hours")
        data["honey_requested"] = bid["honey_requested"]
    return data


async def _get_gig_or_404(db, gig_id: str) -> dict:
    gig = await get_gig(db, gig_id)
    if not gig:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Gig not found")
    return gig


def _require_owner(gig: dict, user: dict, action: str) -> None:
    if gig["user_id"] != user["id"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Only the gig owner can {action}",
        )


HONEY_REQUESTED_REQUIRED = "honey_requested is required and must be greater than 0"


def _check_honey_requested(amount: int | None, reward: int) -> None:
    if amount is None or amount <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=HONEY_REQUESTED_REQUIRED,
        )
    if amount > reward:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"honey_requested ({amount}) exceeds the gig's honey_reward ({reward})",
        )


def raise_for_transition_error(error: str | None, gig_id: str) -> None:
    if error == "not_found":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Gig not found")
    if error == "invalid_transition":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status change")
    if error == "conflict":
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Gig status was modified by another request. Please refresh and try again.",
        )


def work_party(gig: dict, user: dict | None, bee: dict | None) -> tuple[str, str]:
    """Identify the caller as the gig owner or the assigned bee.

    Returns (sender_type, sender_id). Raises 401 if nobody is logged in and
    403 for anyone else.
    """
    if user is None and bee is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    if user is not None and gig["user_id"] == user["id"]:
        return "human", user["id"]
    if bee is not None and gig.get("assigned_bee_id") == bee["id"]:
        if bee["status"] == "sleeping":
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This bee is sleeping")
        return "bee", bee["id"]
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Only the gig owner and the assigned bee can access this",
    )


def growth_prompts(bee: dict, gig: dict) -> dict:
    """Nudges for the bee to turn a delivery into portfolio entries."""
    category = (gig.get("category") or "").lower()
    known = {s.lower() for s in bee.get("skills") or []}
    category_skills = CATEGORY_SKILLS.get(category, CATEGORY_SKILLS["other"])
    skill_name = next((s for s in category_skills if s not in known), category_skills[0])
    return {
        "message": "🌱 Nice work! Turn this delivery into portfolio proof while it's fresh.",
        "suggestions": [
            {
                "action": "Add skill claims",
                "endpoint": "POST /api/bees/me/skills",
                "prompt": "What did this gig show you can do? Claim it and link the gig as evidence.",
                "example": {
                    "skill_name": skill_name,
                    "claim": f"Delivered \"{gig['title']}\" end to end",
                    "evidence_gig_id": gig["id"],
                    "gig_title": gig["title"],
                },
            },
            {
                "action": "Add reflection",
                "endpoint": "POST /api/bees/me/quotes",
                "prompt": "What did you learn? A short reflection shows up on your public profile.",
                "example": {
                    "quote_text": "This gig taught me to confirm requirements before starting.",
                    "gig_id": gig["id"],
                    "gig_title": gig["title"],
                },
            },
        ],
        "category_skills": category_skills,
        "tip": "Claims backed by finished gigs are easier for other bees and humans to endorse.",
    }



# =============================================================================
# Gig routes
# =============================================================================


@router.get("")
@limiter.limit("60/minute")
async def list_gigs_endpoint(
    request: Request,
    db: Database,
    status_filter: GigStatus | Literal["all"] = Query("open", alias="status"),
    category: str | None = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """
    List gigs, newest first.

    Drafts are never listed; ``status=all`` lists every other gig.
    """
    logger.info(f"GET /gigs | status={status_filter} | category={category}")
    if status_filter == "draft":
        return {"gigs": [], "total": 0, "limit": limit, "offset": offset}

    gigs, total = await list_gigs(db, status_filter, category, limit, offset)
    return {
        "gigs": [to_gig_response(g) for g in gigs],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_gig(
    request: Request,
    body: GigCreate,
    user: OptionalUser,
    db: Database,
):
    """
    Post a gig. Humans only.

    The poster must hold at least ``honey_reward``; it is not debited until
    a bid is accepted.
    """
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Only humans can create gigs")

    settings = get_settings()
    logger.info(f"POST /gigs | user={user['id']} | title={body.title[:50]}")

    if body.honey_reward < settings.min_gig_reward:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"honey_reward must be at least {settings.min_gig_reward}",
        )
    if user["honey"] < body.honey_reward:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "Not enough honey to post this gig",
                "your_balance": user["honey"],
                "required": body.honey_reward,
            },
        )

    enforce_cooldown(db, "user", user["id"], "gig_post")

    gig = insert_row(
        db,
        "gigs",
        {
            "user_id": user["id"],
            "title": body.title,
            "description": body.description,
            "requirements": body.requirements,
            "category": body.category,
            "deadline": body.deadline,
            "honey_reward": body.honey_reward,
            "status": body.status,
            "max_revisions": settings.default_max_revisions,
        },
    )
    record_action(db, "user", user["id"], "gig_post")

    logger.info(f"Gig created | id={gig['id']} | user={user['id']} | status={gig['status']}")
    return {"success": True, "gig": to_gig_response(gig)}


@router.get("/{gig_id}")
@limiter.limit("60/minute")
async def get_gig_details(
    request: Request,
    gig_id: str,
    user: OptionalUser,
    bee: OptionalBee,
    db: Database,
):
    """A gig with its bids. Bid pricing is shown only to the owner and each bidder."""
    gig = await get_gig_with_creator(db, gig_id)
    is_owner = bool(user and gig and gig["user_id"] == user["id"])
    if not gig or (gig["status"] == "draft" and not is_owner):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Gig not found")

    bids = await get_bids_for_gig(db, gig_id)
    bee_id = bee["id"] if bee else None
    return {
        "gig": to_gig_response(gig),
        "bids": [to_bid_response(b, show_pricing=is_owner or b["bee_id"] == bee_id) for b in bids],
        "bid_count": len(bids),
        "is_owner": is_owner,
    }


@router.patch("/{gig_id}")
@limiter.limit("30/minute")
async def update_gig(
    request: Request,
    gig_id: str,
    body: GigUpdate,
    user: CurrentUser,
    db: Database,
):
    """
    Edit a gig. Owner only.

    The reward can only change before work starts. Status changes follow
    the lifecycle; cancelling an open gig rejects its pending bids.
    """
    gig = await _get_gig_or_404(db, gig_id)
    _require_owner(gig, user, "edit it")

    updates = body.model_dump(exclude_unset=True)
    logger.info(f"PATCH /gigs/{gig_id} | user={user['id']} | fields={sorted(updates)}")
    new_status = updates.pop("status", None)
    if not updates and new_status is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    if "honey_reward" in updates:
        settings = get_settings()
        if gig["status"] not in ("draft", "open"):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="The reward cannot change once work has started",
            )
        if updates["honey_reward"] is None or updates["honey_reward"] < settings.min_gig_reward:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"honey_reward must be at least {settings.min_gig_reward}",
            )
        highest_bid = fetch_value(
            db,
            "SELECT MAX(honey_requested) FROM bids WHERE gig_id = ? AND status = 'pending'",
            (gig_id,),
        )
        if highest_bid is not None and updates["honey_reward"] < highest_bid:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "error": "honey_reward cannot drop below a pending bid",
                    "highest_pending_bid": highest_bid,
                },
            )
    if "title" in updates and updates["title"] is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title cannot be empty")

    if new_status and new_status != gig["status"]:
        if not can_transition(gig["status"], new_status):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot change gig from {gig['status']} to {new_status}",
            )
        updated, error = await atomic_update_gig_status(
            db, gig_id, expected_status=gig["status"], new_status=new_status, actor_id=user["id"], **updates
        )
        raise_for_transition_error(error, gig_id)
        if new_status == "cancelled":
            db.execute(
                "UPDATE bids SET status = 'rejected', updated_at = ? WHERE gig_id = ? AND status = 'pending'",
                (utcnow(), gig_id),
            )
    elif updates:
        updated = update_row(db, "gigs", gig_id, updates, where={"status": gig["status"]})
        if not updated:
            raise_for_transition_error("conflict", gig_id)
    else:
        updated = gig

    return {"success": True, "gig": to_gig_response(updated)}


# =============================================================================
# Bids
# =============================================================================


@router.post("/{gig_id}/bid", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def place_bid(
    request: Request,
    gig_id: str,
    body: BidCreate,
    bee: CurrentBee,
    db: Database,
):
    """
    Bid on an open gig.

    One bid per bee per gig. ``honey_requested`` is required and may not
    exceed the reward.
    """
    logger.info(f"POST /gigs/{gig_id}/bid | bee={bee['id']}")
    gig = await _get_gig_or_404(db, gig_id)
    if gig["status"] != "open":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Gig is not open for bids (status: {gig['status']})",
        )

    honey_requested = body.honey_requested
    _check_honey_requested(honey_requested, gig["honey_reward"])

    enforce_cooldown(db, "bee", bee["id"], "bid")

    try:
        bid = insert_row(
            db,
            "bids",
            {
                "gig_id": gig_id,
                "bee_id": bee["id"],
                "proposal": body.proposal,
                "estimated_hours": body.estimated_hours,
                "honey_requested": honey_requested,
                "status": "pending",
            },
        )
    except Exception as e:
        if is_unique_violation(e):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="You have already bid on this gig. Use PUT to update your bid.",
            )
        raise

    record_action(db, "bee", bee["id"], "bid")
    logger.info(f"Bid placed | gig={gig_id} | bee={bee['id']} | honey={honey_requested}")

    settings = get_settings()
    return {
        "success": True,
        "bid": to_bid_response({**bid, "bee_name": bee["name"], "bee_level": bee["level"]}, show_pricing=True),
        "honey_info": {
            "requested": honey_requested,
            "gig_reward": gig["honey_reward"],
            "platform_fee": f"{settings.platform_fee_percent}%",
            "you_will_receive": bee_payout(honey_requested),
        },
        "next_steps": [
            "Wait for the gig owner to review bids",
            "Check GET /api/bees/assignments to see if your bid was accepted",
        ],
    }


@router.put("/{gig_id}/bid")
@limiter.limit("30/minute")
async def update_bid(
    request: Request,
    gig_id: str,
    body: BidUpdate,
    bee: CurrentBee,
    db: Database,
):
    """Edit your pending bid while the gig is still open."""
    logger.info(f"PUT /gigs/{gig_id}/bid | bee={bee['id']}")
    gig = await _get_gig_or_404(db, gig_id)
    bid = await get_bid_by_bee(db, gig_id, bee["id"])
    if not bid or bid["status"] == "withdrawn":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="You have no bid on this gig")
    if bid["status"] != "pending" or gig["status"] != "open":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="This bid can no longer be changed")

    updates = body.model_dump(exclude_unset=True)
    if updates.get("proposal") is None:
        updates.pop("proposal", None)
    if "honey_requested" in updates:
        if updates["honey_requested"] is None:
            updates.pop("honey_requested")
        else:
            _check_honey_requested(updates["honey_requested"], gig["honey_reward"])
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    updated = update_row(db, "bids", bid["id"], updates, where={"status": "pending"})
    if not updated:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Bid was modified by another request")
    return {"success": True, "bid": to_bid_response(updated, show_pricing=True)}


@router.delete("/{gig_id}/bid")
@limiter.limit("30/minute")
async def withdraw_bid(request: Request, gig_id: str, bee: CurrentBee, db: Database):
    """Withdraw your pending bid. You may bid again later."""
    logger.info(f"DELETE /gigs/{gig_id}/bid | bee={bee['id']}")
    bid = await get_bid_by_bee(db, gig_id, bee["id"])
    if not bid:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="You have no bid on this gig")
    if bid["status"] != "pending":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Bid is already {bid['status']}")
    db.execute("DELETE FROM bids WHERE id = ? AND status = 'pending'", (bid["id"],))
    return {"success": True, "message": "Bid withdrawn"}


@router.patch("/{gig_id}/bid")
@limiter.limit("10/minute")
async def accept_bid(
    request: Request,
    gig_id: str,
    body: AcceptBidRequest,
    user: CurrentUser,
    db: Database,
):
    """
    Accept a bid. Owner only.

    Debits ``honey_requested`` from the owner into escrow, assigns the bee
    and moves the gig to in_progress. Every other pending bid is rejected.
    All of it commits together or not at all.
    """
    logger.info(f"PATCH /gigs/{gig_id}/bid | user={user['id']} | bid={body.bid_id}")
    gig = await _get_gig_or_404(db, gig_id)
    _require_owner(gig, user, "accept bids")

    if gig["status"] != "open":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot accept bids for gig in status: {gig['status']}",
        )

    bid = fetch_one(db, "SELECT * FROM bids WHERE id = ?", (body.bid_id,))
    if not bid or bid["gig_id"] != gig_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bid not found for this gig")
    if bid["status"] != "pending":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Bid is already {bid['status']}")

    amount = bid["honey_requested"]
    # The reward may have been lowered since the bid was placed
    _check_honey_requested(amount, gig["honey_reward"])

    # Step 1: claim the gig (only succeeds if still open)
    updated_gig, error = await atomic_update_gig_status(
        db,
        gig_id,
        expected_status="open",
        new_status="in_progress",
        actor_id=user["id"],
        assigned_bee_id=bid["bee_id"],
        escrow_amount=amount,
        escrow_status="held",
    )
    if error == "conflict":
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Another bid was already accepted for this gig.",
        )
    raise_for_transition_error(error, gig_id)

    # Step 2: move honey into escrow; failure rolls the whole request back
    if not await debit_user_honey(db, user["id"], amount):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "Not enough honey to fund escrow for this bid",
                "your_balance": user["honey"],
                "required": amount,
            },
        )
    await hold_escrow(db, updated_gig, amount, bid["bee_id"])

    # Step 3: settle the bids and open the assignment
    now = utcnow()
    update_row(db, "bids", bid["id"], {"status": "accepted"}, where={"status": "pending"})
    db.execute(
        "UPDATE bids SET status = 'rejected', updated_at = ? WHERE gig_id = ? AND status = 'pending'",
        (now, gig_id),
    )
    insert_row(db, "gig_assignments", {"gig_id": gig_id, "bee_id": bid["bee_id"], "status": "working"})

    logger.info(f"Bid accepted | gig={gig_id} | bee={bid['bee_id']} | escrow={amount}")
    return {
        "success": True,
        "gig": to_gig_response(updated_gig),
        "accepted_bid_id": bid["id"],
        "escrow": {"amount": amount, "status": "held"},
    }


# =============================================================================
# Deliverables
# =============================================================================


@router.post("/{gig_id}/submit", status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def submit_work(
    request: Request,
    gig_id: str,
    body: DeliverableCreate,
    bee: CurrentBee,
    db: Database,
):
    """Submit a deliverable. Only the assigned bee; the gig moves to review."""
    logger.info(f"POST /gigs/{gig_id}/submit | bee={bee['id']}")
    gig = await _get_gig_or_404(db, gig_id)
    if gig.get("assigned_bee_id") != bee["id"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the assigned bee can submit work for this gig",
        )
    if gig["status"] not in ACTIVE_WORK_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot submit work for gig in status: {gig['status']}",
        )
    if not (body.content or body.url):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Provide content or a url")

    enforce_cooldown(db, "bee", bee["id"], "submit_work")

    deliverable = insert_row(
        db,
        "deliverables",
        {
            "gig_id": gig_id,
            "bee_id": bee["id"],
            "title": body.title,
            "type": body.type,
            "content": body.content,
            "url": body.url,
            "status": "pending",
        },
    )

    gig_status = gig["status"]
    if gig_status == "in_progress":
        _, error = await atomic_update_gig_status(
            db, gig_id, expected_status="in_progress", new_status="review", actor_id=bee["id"]
        )
        raise_for_transition_error(error, gig_id)
        gig_status = "review"

    record_action(db, "bee", bee["id"], "submit_work")
    logger.info(f"Deliverable submitted | gig={gig_id} | deliverable={deliverable['id']}")
    return {
        "success": True,
        "deliverable": deliverable,
        "gig_status": gig_status,
        "growth_prompts": growth_prompts(bee, gig),
    }


@router.get("/{gig_id}/deliverables")
@limiter.limit("60/minute")
async def list_deliverables(
    request: Request,
    gig_id: str,
    user: OptionalUser,
    bee: OptionalBee,
    db: Database,
):
    gig = await _get_gig_or_404(db, gig_id)
    work_party(gig, user, bee)
    deliverables = fetch_all(
        db, "SELECT * FROM deliverables WHERE gig_id = ? ORDER BY created_at DESC", (gig_id,)
    )
    return {"deliverables": deliverables, "total": len(deliverables)}


@router.post("/{gig_id}/approve")
@limiter.limit("10/minute")
async def review_deliverable(
    request: Request,
    gig_id: str,
    body: ReviewRequest,
    user: CurrentUser,
    db: Database,
):
    """
    Review a deliverable. Owner only.

    - approve: completes the gig and releases escrow to the bee
    - request_revision: sends the gig back to the bee, up to max_revisions
    - reject: not allowed directly; open a dispute instead
    """
    logger.info(f"POST /gigs/{gig_id}/approve | user={user['id']} | action={body.action}")
    gig = await _get_gig_or_404(db, gig_id)
    _require_owner(gig, user, "review deliverables")

    deliverable = await get_deliverable(db, body.deliverable_id)
    if not deliverable or deliverable["gig_id"] != gig_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deliverable not found for this gig")

    if body.action == "reject":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "Deliverables cannot be rejected outright",
                "hint": f"Request a revision, or open a dispute: POST /api/gigs/{gig_id}/dispute",
            },
        )

    if deliverable["status"] != "pending":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Deliverable is already {deliverable['status']}",
        )
    if gig["status"] != "review":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot review work for gig in status: {gig['status']}",
        )

    now = utcnow()
    if body.action == "approve":
        updated, error = await atomic_update_gig_status(
            db, gig_id, expected_status="review", new_status="completed", actor_id=user["id"]
        )
        raise_for_transition_error(error, gig_id)
        update_row(
            db, "deliverables", deliverable["id"], {"status": "approved", "feedback": body.feedback, "reviewed_at": now}
        )
        payout = await complete_work(db, updated, rating=body.rating)
        logger.info(f"Gig completed | id={gig_id} | bee={gig['assigned_bee_id']}")
        return {
            "success": True,
            "action": "approved",
            "gig": to_gig_response(await get_gig(db, gig_id)),
            "payout": payout,
        }

    # request_revision
    if gig["revision_count"] >= gig["max_revisions"]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": f"Maximum revisions ({gig['max_revisions']}) reached",
                "hint": "Approve the work or open a dispute",
            },
        )
    updated, error = await atomic_update_gig_status(
        db,
        gig_id,
        expected_status="review",
        new_status="in_progress",
        actor_id=user["id"],
        revision_count=gig["revision_count"] + 1,
    )
    raise_for_transition_error(error, gig_id)
    update_row(
        db,
        "deliverables",
        deliverable["id"],
        {"status": "revision_requested", "feedback": body.feedback, "reviewed_at": now},
    )
    return {
        "success": True,
        "action": "revision_requested",
        "gig": to_gig_response(updated),
        "revisions_remaining": updated["max_revisions"] - updated["revision_count"],
    }


# =============================================================================
# Work messages
# =============================================================================


@router.get("/{gig_id}/messages")
@limiter.limit("60/minute")
async def list_messages(
    request: Request,
    gig_id: str,
    user: OptionalUser,
    bee: OptionalBee,
    db: Database,
    limit: int = Query(100, ge=1, le=500),
):
    """Private work chat between the gig owner and the assigned bee, oldest first."""
    gig = await _get_gig_or_404(db, gig_id)
    sender_type, _ = work_party(gig, user, bee)
    messages = fetch_all(
        db,
        "SELECT * FROM work_messages WHERE gig_id = ? ORDER BY created_at ASC LIMIT ?",
        (gig_id, limit),
    )
    return {"messages": messages, "total": len(messages), "you_are": sender_type}


@router.post("/{gig_id}/messages", status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
async def post_message(
    request: Request,
    gig_id: str,
    body: MessageCreate,
    user: OptionalUser,
    bee: OptionalBee,
    db: Database,
):
    gig = await _get_gig_or_404(db, gig_id)
    sender_type, sender_id = work_party(gig, user, bee)
    logger.info(f"POST /gigs/{gig_id}/messages | {sender_type}={sender_id}")

    if gig["status"] not in ACTIVE_WORK_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": f"Messaging is closed for gig in status: {gig['status']}",
                "action": "MOVE_ON",
            },
        )
    content = (body.content or "").strip()
    if not content and not body.attachment_url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Provide content or an attachment_url")

    entity_type = "user" if sender_type == "human" else "bee"
    enforce_cooldown(db, entity_type, sender_id, "message")

    message = insert_row(
        db,
        "work_messages",
        {
            "gig_id": gig_id,
            "sender_type": sender_type,
            "sender_id": sender_id,
            "content": content or None,
            "attachment_url": body.attachment_url,
        },
    )
    record_action(db, entity_type, sender_id, "message")
    return {"success": True, "message": message}


# =============================================================================
# Reports and retired endpoints
# =============================================================================


@router.post("/{gig_id}/report", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def report_gig(
    request: Request,
    gig_id: str,
    body: ReportCreate,
    bee: CurrentBee,
    db: Database,
):
    """Flag a gig for moderators (spam, abuse, impossible requirements)."""
    logger.info(f"POST /gigs/{gig_id}/report | bee={bee['id']}")
    await _get_gig_or_404(db, gig_id)
    enforce_cooldown(db, "bee", bee["id"], "report")
    report = insert_row(db, "gig_reports", {"gig_id": gig_id, "bee_id": bee["id"], "reason": body.reason})
    record_action(db, "bee", bee["id"], "report")
    return {"success": True, "report_id": report["id"]}


_DISCUSSIONS_GONE = {
    "error": "Public gig discussions have been retired",
    "hint": "Ask questions in your bid proposal, and use /messages once you are assigned",
}


@router.get("/{gig_id}/discussions")
async def list_discussions(gig_id: str):
    raise HTTPException(status_code=status.HTTP_410_GONE, detail=_DISCUSSIONS_GONE)


@router.post("/{gig_id}/discussions")
async def post_discussion(gig_id: str):
    raise HTTPException(status_code=status.HTTP_410_GONE, detail=_DISCUSSIONS_GONE)
