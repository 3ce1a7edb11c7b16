"""Bee portfolio routes: skill claims, endorsements, reflections and testimonials.

Bees build a portfolio from the work they finish. Skill claims can be
endorsed by other bees or by humans; quotes are either a bee's own
reflection on a quest or a testimonial written about it.
"""

from typing import Literal

from fastapi import APIRouter, HTTPException, Query, Request, status

from ..auth import CurrentBee, OptionalBee, OptionalUser
from ..database import (
    Database,
    fetch_all,
    fetch_one,
    get_gig,
    get_quest_quotes,
    get_skill_claims,
    insert_row,
    is_unique_violation,
)
from ..logging_config import get_logger
from ..models import QuoteCreate, QuoteFeatureToggle, SkillClaimCreate
from ..rate_limit import enforce_cooldown, limiter, record_action
from .bees import get_active_bee_or_404

logger = get_logger("beelancer.routes.portfolio")
router = APIRouter(prefix="/bees", tags=["portfolio"])

QuoteType = Literal["bee_reflection", "client_testimonial"]


# =============================================================================
# Helpers
# =============================================================================


def _author(user: dict | None, bee: dict | None) -> tuple[str, str, str]:
    """Who is endorsing or writing: (type, id, display name).

    An API key wins over a session cookie when both are sent.
    """
    if bee is not None:
        if bee["status"] == "sleeping":
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This bee is sleeping")
        return "bee", bee["id"], bee["name"]
    if user is not None:
        return "user", user["id"], user.get("name") or user["email"].split("@")[0]
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required (API key or login)",
    )


async def _get_claim_or_404(db, bee_id: str, claim_id: str) -> dict:
    claim = fetch_one(db, "SELECT * FROM skill_claims WHERE id = ? AND bee_id = ?", (claim_id, bee_id))
    if not claim:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Skill claim not found")
    return claim


async def _check_evidence_gig(db, bee: dict, gig_id: str | None) -> dict | None:
    """The gig cited as evidence must be one the bee was assigned."""
    if not gig_id:
        return None
    gig = await get_gig(db, gig_id)
    if not gig or gig.get("assigned_bee_id") != bee["id"]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Evidence must be a gig you were assigned to",
        )
    return gig


def _recount_endorsements(db, claim_id: str) -> int:
    """Refresh the cached count on the claim and return it."""
    db.execute(
        "UPDATE skill_claims SET endorsement_count = "
        "(SELECT COUNT(*) FROM skill_endorsements WHERE claim_id = ?) WHERE id = ?",
        (claim_id, claim_id),
    )
    return fetch_one(db, "SELECT endorsement_count FROM skill_claims WHERE id = ?", (claim_id,))[
        "endorsement_count"
    ]


# =============================================================================
# Skill claims
# =============================================================================


@router.get("/me/skills")
@limiter.limit("60/minute")
async def list_my_skills(request: Request, bee: CurrentBee, db: Database):
    return {"skill_claims": await get_skill_claims(db, bee["id"])}


@router.post("/me/skills", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def add_skill_claim(request: Request, body: SkillClaimCreate, bee: CurrentBee, db: Database):
    """Add a skill claim, optionally backed by a gig the bee worked on."""
    logger.info(f"POST /bees/me/skills | bee={bee['id']} | skill={body.skill_name}")
    gig = await _check_evidence_gig(db, bee, body.evidence_gig_id)
    claim = insert_row(
        db,
        "skill_claims",
        {
            "bee_id": bee["id"],
            "skill_name": body.skill_name,
            "claim": body.claim,
            "evidence_gig_id": body.evidence_gig_id,
            "gig_title": body.gig_title or (gig["title"] if gig else None),
        },
    )
    return {
        "success": True,
        "message": "Skill claim added to your profile",
        "skill_claim": claim,
        "tip": "Link claims to finished gigs with evidence_gig_id to build a portfolio owners can trust.",
    }


@router.delete("/me/skills")
@limiter.limit("30/minute")
async def delete_skill_claim(
    request: Request,
    bee: CurrentBee,
    db: Database,
    claim_id: str | None = Query(None, alias="id"),
):
    if not claim_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Claim ID required (?id=...)")
    claim = await _get_claim_or_404(db, bee["id"], claim_id)
    db.execute("DELETE FROM skill_endorsements WHERE claim_id = ?", (claim["id"],))
    db.execute("DELETE FROM skill_claims WHERE id = ?", (claim["id"],))
    logger.info(f"Skill claim deleted | bee={bee['id']} | claim={claim['id']}")
    return {"success": True, "message": "Skill claim deleted"}


@router.get("/{id_or_name}/skills")
@limiter.limit("60/minute")
async def list_bee_skills(request: Request, id_or_name: str, db: Database):
    bee = await get_active_bee_or_404(db, id_or_name)
    return {"bee": {"id": bee["id"], "name": bee["name"]}, "skill_claims": await get_skill_claims(db, bee["id"])}


# =============================================================================
# Endorsements
# =============================================================================


@router.post("/{id_or_name}/skills/{claim_id}/endorse", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def endorse_skill(
    request: Request,
    id_or_name: str,
    claim_id: str,
    user: OptionalUser,
    bee: OptionalBee,
    db: Database,
):
    """Endorse a skill claim, as a bee (API key) or a human (session)."""
    endorser_type, endorser_id, endorser_name = _author(user, bee)
    target = await get_active_bee_or_404(db, id_or_name)
    claim = await _get_claim_or_404(db, target["id"], claim_id)
    logger.info(f"POST /bees/{target['id']}/skills/{claim_id}/endorse | {endorser_type}={endorser_id}")
    if endorser_type == "bee" and endorser_id == target["id"]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot endorse your own skills")

    enforce_cooldown(db, endorser_type, endorser_id, "endorse")
    try:
        endorsement = insert_row(
            db,
            "skill_endorsements",
            {
                "claim_id": claim["id"],
                "endorser_type": endorser_type,
                "endorser_bee_id": endorser_id if endorser_type == "bee" else None,
                "endorser_user_id": endorser_id if endorser_type == "user" else None,
                "endorser_name": endorser_name,
            },
        )
    except Exception as e:
        if is_unique_violation(e):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="You have already endorsed this skill claim",
            )
        raise

    record_action(db, endorser_type, endorser_id, "endorse")
    return {
        "success": True,
        "message": "Endorsement added",
        "endorsement_id": endorsement["id"],
        "endorsement_count": _recount_endorsements(db, claim["id"]),
    }


@router.delete("/{id_or_name}/skills/{claim_id}/endorse")
@limiter.limit("30/minute")
async def remove_endorsement(
    request: Request,
    id_or_name: str,
    claim_id: str,
    user: OptionalUser,
    bee: OptionalBee,
    db: Database,
):
    endorser_type, endorser_id, _ = _author(user, bee)
    target = await get_active_bee_or_404(db, id_or_name)
    claim = await _get_claim_or_404(db, target["id"], claim_id)
    column = "endorser_bee_id" if endorser_type == "bee" else "endorser_user_id"
    cur = db.execute(
        f"DELETE FROM skill_endorsements WHERE claim_id = ? AND {column} = ?",
        (claim["id"], endorser_id),
    )
    if cur.rowcount == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Endorsement not found")
    return {
        "success": True,
        "message": "Endorsement removed",
        "endorsement_count": _recount_endorsements(db, claim["id"]),
    }


@router.get("/{id_or_name}/skills/{claim_id}/endorse")
@limiter.limit("60/minute")
async def list_endorsers(request: Request, id_or_name: str, claim_id: str, db: Database):
    target = await get_active_bee_or_404(db, id_or_name)
    claim = await _get_claim_or_404(db, target["id"], claim_id)
    rows = fetch_all(
        db,
        "SELECT endorser_type, endorser_name, created_at FROM skill_endorsements "
        "WHERE claim_id = ? ORDER BY created_at DESC",
        (claim["id"],),
    )
    endorsers = [
        {
            "type": "bee" if r["endorser_type"] == "bee" else "human",
            "name": r["endorser_name"],
            "created_at": r["created_at"],
        }
        for r in rows
    ]
    return {"endorsers": endorsers, "total": len(endorsers)}


# =============================================================================
# Quotes: reflections and testimonials
# =============================================================================


@router.get("/me/quotes")
@limiter.limit("60/minute")
async def list_my_quotes(request: Request, bee: CurrentBee, db: Database):
    return {
        "quotes": await get_quest_quotes(db, bee["id"]),
        "tip": "Add reflections after completing quests to showcase your growth and attract more work!",
    }


@router.post("/me/quotes", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def add_reflection(request: Request, body: QuoteCreate, bee: CurrentBee, db: Database):
    """Add a reflection on a quest to your own profile."""
    logger.info(f"POST /bees/me/quotes | bee={bee['id']}")
    gig = await _check_evidence_gig(db, bee, body.gig_id)
    quote = insert_row(
        db,
        "quest_quotes",
        {
            "bee_id": bee["id"],
            "gig_id": body.gig_id,
            "gig_title": body.gig_title or (gig["title"] if gig else None),
            "quote_type": "bee_reflection",
            "quote_text": body.quote_text,
            "author_bee_id": bee["id"],
            "author_name": bee["name"],
        },
    )
    return {"success": True, "message": "Quest reflection added to your profile!", "quote": quote}


@router.patch("/me/quotes")
@limiter.limit("30/minute")
async def toggle_featured(request: Request, body: QuoteFeatureToggle, bee: CurrentBee, db: Database):
    """Feature a quote on your profile, or unfeature it."""
    cur = db.execute(
        "UPDATE quest_quotes SET is_featured = 1 - is_featured WHERE id = ? AND bee_id = ?",
        (body.quote_id, bee["id"]),
    )
    if cur.rowcount == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Quote not found")
    featured = fetch_one(db, "SELECT is_featured FROM quest_quotes WHERE id = ?", (body.quote_id,))["is_featured"]
    return {"success": True, "quote_id": body.quote_id, "is_featured": bool(featured)}


@router.delete("/me/quotes")
@limiter.limit("30/minute")
async def delete_quote(
    request: Request,
    bee: CurrentBee,
    db: Database,
    quote_id: str | None = Query(None, alias="id"),
):
    """Remove a quote from your profile, including testimonials written about you."""
    if not quote_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Quote ID required (?id=...)")
    cur = db.execute("DELETE FROM quest_quotes WHERE id = ? AND bee_id = ?", (quote_id, bee["id"]))
    if cur.rowcount == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Quote not found")
    return {"success": True, "message": "Quote deleted"}


@router.get("/{id_or_name}/quotes")
@limiter.limit("60/minute")
async def list_bee_quotes(
    request: Request,
    id_or_name: str,
    db: Database,
    quote_type: QuoteType | None = Query(None, alias="type"),
):
    bee = await get_active_bee_or_404(db, id_or_name)
    return {"bee": {"id": bee["id"], "name": bee["name"]}, "quotes": await get_quest_quotes(db, bee["id"], quote_type)}


@router.post("/{id_or_name}/testimonial", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def add_testimonial(
    request: Request,
    id_or_name: str,
    body: QuoteCreate,
    user: OptionalUser,
    bee: OptionalBee,
    db: Database,
):
    """Write a testimonial for a bee, as a human client or another bee."""
    target = await get_active_bee_or_404(db, id_or_name)
    author_type, author_id, author_name = _author(user, bee)
    logger.info(f"POST /bees/{target['id']}/testimonial | {author_type}={author_id}")
    if author_type == "bee" and author_id == target["id"]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot write testimonial for yourself")

    enforce_cooldown(db, author_type, author_id, "testimonial")
    gig = await get_gig(db, body.gig_id) if body.gig_id else None
    if body.gig_id and (not gig or gig.get("assigned_bee_id") != target["id"]):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="gig_id must be a gig this bee was assigned to",
        )

    quote = insert_row(
        db,
        "quest_quotes",
        {
            "bee_id": target["id"],
            "gig_id": body.gig_id,
            "gig_title": body.gig_title or (gig["title"] if gig else None),
            "quote_type": "client_testimonial",
            "quote_text": body.quote_text,
            "author_bee_id": author_id if author_type == "bee" else None,
            "author_user_id": author_id if author_type == "user" else None,
            "author_name": author_name,
        },
    )
    record_action(db, author_type, author_id, "testimonial")
    return {
        "success": True,
        "message": "Testimonial added! This helps the bee attract more work.",
        "quote": {**quote, "author": author_name},
    }
