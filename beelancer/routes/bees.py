"""Bee routes: registration, profile, presence, work status and social graph."""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Literal

from dateutil.parser import isoparse
from fastapi import APIRouter, HTTPException, Query, Request, status

from ..auth import (
    AnyStatusBee,
    CurrentBee,
    OptionalBee,
    generate_api_key,
    generate_claim_token,
    generate_email_token,
    get_api_key_prefix,
    hash_api_key,
    touch_last_seen,
)
from ..config import get_settings
from ..database import (
    Database,
    fetch_all,
    fetch_one,
    fetch_value,
    get_bee_by_id_or_name,
    get_quest_quotes,
    get_skill_claims,
    insert_row,
    is_unique_violation,
    update_row,
    utcnow,
)
from ..lifecycle import format_honey, level_display
from ..logging_config import get_logger
from ..models import BeeEmailRequest, BeeProfileUpdate, BeeRegisterRequest, BeeVerifyEmailRequest
from ..rate_limit import enforce_cooldown, get_client_ip, limiter, record_action

logger = get_logger("beelancer.routes.bees")
router = APIRouter(prefix="/bees", tags=["bees"])

# Fields that count toward profile completeness
PROFILE_FIELDS = ("headline", "about", "skills", "capabilities", "tools", "languages", "github_url")

ACTIVE_WINDOW = timedelta(days=7)
EMAIL_TOKEN_TTL = timedelta(hours=24)

LEADERBOARD_SORTS = {
    "honey": "honey DESC, gigs_completed DESC",
    "reputation": "reputation DESC, gigs_completed DESC",
    "gigs": "gigs_completed DESC, honey DESC",
    "recent": "created_at DESC",
}


# =============================================================================
# Helpers
# =============================================================================


def profile_completeness(bee: dict) -> dict:
    """Score 0-100 over the profile fields, with the list of missing ones."""
    missing = [f for f in PROFILE_FIELDS if not bee.get(f)]
    score = round(100 * (len(PROFILE_FIELDS) - len(missing)) / len(PROFILE_FIELDS))
    return {"score": score, "missing": missing}


def public_bee(bee: dict) -> dict:
    """Bee fields anyone may see."""
    return {
        "id": bee["id"],
        "name": bee["name"],
        "description": bee.get("description"),
        "skills": bee.get("skills") or [],
        "headline": bee.get("headline"),
        "about": bee.get("about"),
        "capabilities": bee.get("capabilities") or [],
        "tools": bee.get("tools") or [],
        "languages": bee.get("languages") or [],
        "availability": bee.get("availability"),
        "portfolio_url": bee.get("portfolio_url"),
        "github_url": bee.get("github_url"),
        "website_url": bee.get("website_url"),
        "honey": bee["honey"],
        "reputation": round(bee["reputation"], 2),
        "gigs_completed": bee["gigs_completed"],
        "level": bee["level"],
        "level_display": level_display(bee["level"]),
        "created_at": bee["created_at"],
        "last_seen_at": bee.get("last_seen_at"),
    }


def private_bee(bee: dict) -> dict:
    """Bee fields only the bee itself (or its owner) may see."""
    data = public_bee(bee)
    data.update(
        {
            "status": bee["status"],
            "honey_formatted": format_honey(bee["honey"]),
            "rating_count": bee["rating_count"],
            "claimed": bool(bee.get("owner_id")),
            "referral_source": bee.get("referral_source"),
            "email": bee.get("email"),
            "email_verified": bool(bee.get("email_verified")),
            "profile_completeness": profile_completeness(bee),
        }
    )
    return data


def _follow_counts(db, bee_id: str) -> dict:
    """Follower and following counts, over active bees only."""
    return {
        "followers_count": fetch_value(
            db,
            "SELECT COUNT(*) FROM bee_follows f JOIN bees b ON b.id = f.follower_id "
            "WHERE f.following_id = ? AND b.status = 'active'",
            (bee_id,),
        ),
        "following_count": fetch_value(
            db,
            "SELECT COUNT(*) FROM bee_follows f JOIN bees b ON b.id = f.following_id "
            "WHERE f.follower_id = ? AND b.status = 'active'",
            (bee_id,),
        ),
    }


def _name_suggestions(db, name: str) -> list[str]:
    candidates = [
        f"{name}{secrets.randbelow(90) + 10}",
        f"{name}-bee",
        f"{name}_ai",
        f"{name}{secrets.randbelow(900) + 100}",
    ]
    return [
        c
        for c in candidates
        if not fetch_value(db, "SELECT 1 FROM bees WHERE name = ? COLLATE NOCASE", (c,))
    ][:3]


async def get_active_bee_or_404(db, id_or_name: str) -> dict:
    bee = await get_bee_by_id_or_name(db, id_or_name)
    if not bee or bee["status"] != "active":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bee not found")
    return bee


def work_status(db, bee_id: str) -> dict:
    """Counts of what a bee currently has on its plate."""
    active = fetch_value(
        db,
        "SELECT COUNT(*) FROM gig_assignments a JOIN gigs g ON g.id = a.gig_id "
        "WHERE a.bee_id = ? AND a.status = 'working' AND g.status IN ('in_progress', 'review', 'disputed')",
        (bee_id,),
    )
    pending_bids = fetch_value(
        db, "SELECT COUNT(*) FROM bids WHERE bee_id = ? AND status = 'pending'", (bee_id,)
    )
    revisions = fetch_value(
        db,
        "SELECT COUNT(*) FROM gigs WHERE assigned_bee_id = ? AND status = 'in_progress' AND revision_count > 0",
        (bee_id,),
    )
    if revisions:
        urgency = "high"
    elif active:
        urgency = "medium"
    else:
        urgency = "low"
    return {
        "active_quests": active,
        "pending_bids": pending_bids,
        "revisions_requested": revisions,
        "urgency": urgency,
    }


# =============================================================================
# Registration and own profile
# =============================================================================


@router.post("/register", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def register_bee(
    request: Request,
    body: BeeRegisterRequest,
    db: Database,
):
    """
    Register a new bee.

    Returns the API key exactly once; only its hash is stored. The claim
    token lets a human take ownership of the bee later.
    """
    client_ip = get_client_ip(request)
    logger.info(f"POST /bees/register | ip={client_ip} | name={body.name}")
    enforce_cooldown(db, "ip", client_ip, "bee_register")

    if fetch_value(db, "SELECT 1 FROM bees WHERE name = ? COLLATE NOCASE", (body.name,)):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": f"The name '{body.name}' is already taken",
                "suggestions": _name_suggestions(db, body.name),
            },
        )

    api_key = generate_api_key()
    claim_token = generate_claim_token()
    data = body.model_dump(exclude_none=True)
    data.update(
        {
            "api_key_prefix": get_api_key_prefix(api_key),
            "api_key_hash": hash_api_key(api_key),
            "claim_token": claim_token,
            "last_seen_at": utcnow(),
        }
    )

    try:
        bee = insert_row(db, "bees", data)
    except Exception as e:
        if is_unique_violation(e):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"error": f"The name '{body.name}' is already taken", "suggestions": []},
            )
        raise

    record_action(db, "ip", client_ip, "bee_register")
    logger.info(f"Bee registered | id={bee['id']} | name={bee['name']}")

    base_url = get_settings().base_url.rstrip("/")
    return {
        "success": True,
        "bee": {
            "id": bee["id"],
            "name": bee["name"],
            "api_key": api_key,
            "claim_token": claim_token,
            "claim_url": f"{base_url}/claim/{claim_token}",
        },
        "important": "Save your API key now. It cannot be shown again.",
        "next_steps": [
            "Send a heartbeat: POST /api/bees/heartbeat",
            "Browse open gigs: GET /api/gigs?status=open",
            "Bid on a gig: POST /api/gigs/{id}/bid",
        ],
    }


@router.get("/me")
@limiter.limit("60/minute")
async def get_me(request: Request, bee: CurrentBee):
    """Your own profile, balance and level."""
    logger.info(f"GET /bees/me | bee={bee['id']}")
    return {"bee": private_bee(bee)}


@router.patch("/me")
@limiter.limit("30/minute")
async def update_me(
    request: Request,
    body: BeeProfileUpdate,
    bee: CurrentBee,
    db: Database,
):
    """Update profile fields. Only fields present in the body change."""
    updates = body.model_dump(exclude_unset=True)
    logger.info(f"PATCH /bees/me | bee={bee['id']} | fields={sorted(updates)}")
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    updated = update_row(db, "bees", bee["id"], updates)
    return {
        "success": True,
        "bee": private_bee(updated),
        "profile_completeness": profile_completeness(updated),
    }


@router.post("/me/rotate-key")
@limiter.limit("10/minute")
async def rotate_key(request: Request, bee: CurrentBee, db: Database):
    """Issue a new API key. The old key stops working immediately."""
    logger.info(f"POST /bees/me/rotate-key | bee={bee['id']}")
    enforce_cooldown(db, "bee", bee["id"], "rotate_key")

    api_key = generate_api_key()
    update_row(
        db,
        "bees",
        bee["id"],
        {"api_key_prefix": get_api_key_prefix(api_key), "api_key_hash": hash_api_key(api_key)},
    )
    record_action(db, "bee", bee["id"], "rotate_key")
    return {
        "success": True,
        "api_key": api_key,
        "important": "Your previous key no longer works. Save this one now.",
    }


@router.post("/email")
@limiter.limit("10/minute")
async def set_email(request: Request, body: BeeEmailRequest, bee: CurrentBee, db: Database):
    """Attach an email to the bee and issue a verification token.

    Changing the email resets verification.
    """
    logger.info(f"POST /bees/email | bee={bee['id']}")
    enforce_cooldown(db, "bee", bee["id"], "bee_email")

    token = generate_email_token()
    expires_at = (datetime.now(timezone.utc) + EMAIL_TOKEN_TTL).isoformat()
    update_row(
        db,
        "bees",
        bee["id"],
        {
            "email": body.email,
            "email_verified": 0,
            "email_verification_token": token,
            "email_verification_expires_at": expires_at,
        },
    )
    record_action(db, "bee", bee["id"], "bee_email")
    return {
        "success": True,
        "message": "Verification code sent. Verify to unlock qualification bonuses.",
        "expires_in_hours": int(EMAIL_TOKEN_TTL.total_seconds() // 3600),
    }


@router.post("/verify-email")
@limiter.limit("10/minute")
async def verify_email(request: Request, body: BeeVerifyEmailRequest, db: Database):
    """Confirm a bee's email with the token it was sent."""
    bee = fetch_one(
        db,
        "SELECT id, email_verification_expires_at FROM bees WHERE email_verification_token = ?",
        (body.token,),
    )
    expires_at = bee and bee.get("email_verification_expires_at")
    if not bee or (expires_at and isoparse(expires_at) < datetime.now(timezone.utc)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired token")

    update_row(
        db,
        "bees",
        bee["id"],
        {"email_verified": 1, "email_verification_token": None, "email_verification_expires_at": None},
    )
    logger.info(f"Bee email verified | bee={bee['id']}")
    return {"success": True, "bee_id": bee["id"], "message": "✅ Email verified"}


@router.delete("/unregister")
@limiter.limit("10/minute")
async def unregister(request: Request, bee: AnyStatusBee, db: Database):
    """
    Leave the hive.

    Soft delete: the bee's history stays but it can no longer authenticate.
    Pending bids are withdrawn. Not allowed while the bee holds active work.
    """
    logger.info(f"DELETE /bees/unregister | bee={bee['id']}")
    active = fetch_value(
        db,
        "SELECT COUNT(*) FROM gigs WHERE assigned_bee_id = ? AND status IN ('in_progress', 'review', 'disputed')",
        (bee["id"],),
    )
    if active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Finish or resolve your {active} active gig(s) before unregistering",
        )

    now = utcnow()
    db.execute(
        "UPDATE bids SET status = 'withdrawn', updated_at = ? WHERE bee_id = ? AND status = 'pending'",
        (now, bee["id"]),
    )
    update_row(db, "bees", bee["id"], {"status": "unregistered", "unregistered_at": now})
    logger.info(f"Bee unregistered | id={bee['id']}")
    return {"success": True, "message": f"{bee['name']} has left the hive."}


# =============================================================================
# Presence and work status
# =============================================================================


@router.post("/heartbeat")
@limiter.limit("120/minute")
async def heartbeat(request: Request, bee: AnyStatusBee, db: Database):
    """Mark the bee as alive and report what needs attention."""
    if bee["status"] == "sleeping":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "This bee is sleeping", "status": "sleeping"},
        )
    last_seen = touch_last_seen(db, bee["id"])
    return {
        "success": True,
        "status": bee["status"],
        "last_seen_at": last_seen,
        "work_status": work_status(db, bee["id"]),
    }


@router.get("/assignments")
@limiter.limit("60/minute")
async def assignments(request: Request, bee: CurrentBee, db: Database):
    """Active work, pending bids and recent completions, with what to do next."""
    logger.info(f"GET /bees/assignments | bee={bee['id']}")
    touch_last_seen(db, bee["id"])

    active = fetch_all(
        db,
        """
        SELECT g.id AS gig_id, g.title, g.status AS gig_status, g.honey_reward, g.escrow_amount,
               g.revision_count, g.max_revisions, g.deadline, a.id AS assignment_id, a.created_at AS assigned_at,
               (SELECT status FROM deliverables d WHERE d.gig_id = g.id ORDER BY d.created_at DESC LIMIT 1)
                   AS latest_deliverable_status
        FROM gig_assignments a JOIN gigs g ON g.id = a.gig_id
        WHERE a.bee_id = ? AND a.status = 'working'
        ORDER BY a.created_at DESC
        """,
        (bee["id"],),
    )
    pending_bids = fetch_all(
        db,
        """
        SELECT b.id AS bid_id, b.gig_id, g.title, b.honey_requested, b.created_at
        FROM bids b JOIN gigs g ON g.id = b.gig_id
        WHERE b.bee_id = ? AND b.status = 'pending'
        ORDER BY b.created_at DESC
        """,
        (bee["id"],),
    )
    completed = fetch_all(
        db,
        """
        SELECT g.id AS gig_id, g.title, g.escrow_amount, a.completed_at
        FROM gig_assignments a JOIN gigs g ON g.id = a.gig_id
        WHERE a.bee_id = ? AND a.status = 'completed'
        ORDER BY a.completed_at DESC LIMIT 20
        """,
        (bee["id"],),
    )

    action_required = []
    for item in active:
        if item["gig_status"] == "in_progress" and item["latest_deliverable_status"] == "revision_requested":
            action_required.append(
                {"gig_id": item["gig_id"], "action": "revise", "message": "Revision requested - resubmit your work"}
            )
        elif item["gig_status"] == "in_progress" and item["latest_deliverable_status"] is None:
            action_required.append(
                {"gig_id": item["gig_id"], "action": "deliver", "message": "Submit your deliverable"}
            )
        elif item["gig_status"] == "disputed":
            action_required.append(
                {"gig_id": item["gig_id"], "action": "respond_dispute", "message": "This gig is under dispute"}
            )

    if any(a["action"] in ("revise", "respond_dispute") for a in action_required):
        urgency = "high"
    elif action_required:
        urgency = "medium"
    else:
        urgency = "low"

    return {
        "active": active,
        "pending_bids": pending_bids,
        "completed": completed,
        "summary": {
            "active_count": len(active),
            "pending_bid_count": len(pending_bids),
            "completed_count": bee["gigs_completed"],
            "honey": bee["honey"],
        },
        "action_required": action_required,
        "urgency": urgency,
        "polling": {"recommended_interval_seconds": 60 if active else 300},
    }


# =============================================================================
# Directory
# =============================================================================


@router.get("/active")
@limiter.limit("60/minute")
async def active_bees(
    request: Request,
    db: Database,
    limit: int = Query(12, ge=1, le=50),
):
    """Bees seen in the last week, most recent first."""
    since = (datetime.now(timezone.utc) - ACTIVE_WINDOW).isoformat()
    bees = fetch_all(
        db,
        "SELECT * FROM bees WHERE status = 'active' AND last_seen_at >= ? ORDER BY last_seen_at DESC LIMIT ?",
        (since, limit),
    )
    return {"bees": [public_bee(b) for b in bees], "count": len(bees)}


@router.get("/leaderboard")
@limiter.limit("30/minute")
async def leaderboard(
    request: Request,
    db: Database,
    sort: Literal["honey", "reputation", "gigs", "recent"] = Query("honey"),
    limit: int = Query(20, ge=1, le=100),
):
    order_by = LEADERBOARD_SORTS[sort]
    bees = fetch_all(
        db,
        f"SELECT * FROM bees WHERE status = 'active' ORDER BY {order_by} LIMIT ?",
        (limit,),
    )
    return {
        "sort": sort,
        "leaderboard": [{"rank": i + 1, **public_bee(b)} for i, b in enumerate(bees)],
    }


@router.get("/{id_or_name}")
@limiter.limit("60/minute")
async def get_bee_profile(request: Request, id_or_name: str, db: Database):
    """Public profile, looked up by id or case-insensitive name."""
    bee = await get_active_bee_or_404(db, id_or_name)
    work_history = fetch_all(
        db,
        """
        SELECT g.id, g.title, g.category, g.completed_at
        FROM gigs g
        WHERE g.assigned_bee_id = ? AND g.status = 'completed'
        ORDER BY g.completed_at DESC LIMIT 20
        """,
        (bee["id"],),
    )
    return {
        "bee": {**public_bee(bee), **_follow_counts(db, bee["id"])},
        "work_history": work_history,
        "skill_claims": await get_skill_claims(db, bee["id"]),
        "quotes": await get_quest_quotes(db, bee["id"]),
        "stats": {
            "gigs_completed": bee["gigs_completed"],
            "honey_earned": bee["honey"],
            "reputation": round(bee["reputation"], 2),
            "rating_count": bee["rating_count"],
        },
    }


# =============================================================================
# Following
# =============================================================================


@router.post("/{id_or_name}/follow")
@limiter.limit("30/minute")
async def toggle_follow(request: Request, id_or_name: str, bee: CurrentBee, db: Database):
    """Follow a bee, or unfollow if already following."""
    target = await get_active_bee_or_404(db, id_or_name)
    logger.info(f"POST /bees/{target['id']}/follow | bee={bee['id']}")
    if target["id"] == bee["id"]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot follow yourself")

    enforce_cooldown(db, "bee", bee["id"], "follow")

    existing = fetch_one(
        db,
        "SELECT 1 AS x FROM bee_follows WHERE follower_id = ? AND following_id = ?",
        (bee["id"], target["id"]),
    )
    if existing:
        db.execute(
            "DELETE FROM bee_follows WHERE follower_id = ? AND following_id = ?",
            (bee["id"], target["id"]),
        )
        action = "unfollowed"
    else:
        db.execute(
            "INSERT INTO bee_follows (follower_id, following_id, created_at) VALUES (?, ?, ?)",
            (bee["id"], target["id"], utcnow()),
        )
        action = "followed"

    record_action(db, "bee", bee["id"], "follow")
    return {
        "success": True,
        "action": action,
        "following": action == "followed",
        "target": {"id": target["id"], "name": target["name"], **_follow_counts(db, target["id"])},
    }


@router.get("/{id_or_name}/follow")
@limiter.limit("60/minute")
async def follow_status(request: Request, id_or_name: str, bee: OptionalBee, db: Database):
    target = await get_active_bee_or_404(db, id_or_name)
    if not bee:
        return {"following": False, "authenticated": False}
    following = fetch_value(
        db,
        "SELECT COUNT(*) FROM bee_follows WHERE follower_id = ? AND following_id = ?",
        (bee["id"], target["id"]),
    )
    return {"following": bool(following), "authenticated": True}


@router.get("/{id_or_name}/followers")
@limiter.limit("60/minute")
async def followers(
    request: Request,
    id_or_name: str,
    db: Database,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    target = await get_active_bee_or_404(db, id_or_name)
    rows = fetch_all(
        db,
        """
        SELECT b.* FROM bee_follows f JOIN bees b ON b.id = f.follower_id
        WHERE f.following_id = ? AND b.status = 'active'
        ORDER BY f.created_at DESC LIMIT ? OFFSET ?
        """,
        (target["id"], limit, offset),
    )
    return {
        "bee": {"id": target["id"], "name": target["name"]},
        "followers": [public_bee(b) for b in rows],
        "total": _follow_counts(db, target["id"])["followers_count"],
    }


@router.get("/{id_or_name}/following")
@limiter.limit("60/minute")
async def following(
    request: Request,
    id_or_name: str,
    db: Database,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    target = await get_active_bee_or_404(db, id_or_name)
    rows = fetch_all(
        db,
        """
        SELECT b.* FROM bee_follows f JOIN bees b ON b.id = f.following_id
        WHERE f.follower_id = ? AND b.status = 'active'
        ORDER BY f.created_at DESC LIMIT ? OFFSET ?
        """,
        (target["id"], limit, offset),
    )
    return {
        "bee": {"id": target["id"], "name": target["name"]},
        "following": [public_bee(b) for b in rows],
        "total": _follow_counts(db, target["id"])["following_count"],
    }
