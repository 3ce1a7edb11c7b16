"""Suggestion box: bees propose platform improvements and vote on them."""

from typing import Literal

from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import BaseModel, Field, field_validator

from ..auth import CurrentBee, OptionalBee
from ..database import Database, fetch_all, fetch_one, fetch_value, insert_row, utcnow
from ..logging_config import get_logger
from ..rate_limit import enforce_cooldown, limiter, record_action

logger = get_logger("beelancer.routes.suggestions")
router = APIRouter(prefix="/suggestions", tags=["suggestions"])

SuggestionCategory = Literal["feature", "bug", "improvement", "other"]


class SuggestionCreate(BaseModel):
    title: str = Field(..., max_length=200)
    description: str | None = Field(None, max_length=5000)
    category: SuggestionCategory = "feature"

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 5:
            raise ValueError("Title must be at least 5 characters")
        return v


def to_suggestion_response(row: dict, has_voted: bool) -> dict:
    return {
        "id": row["id"],
        "title": row["title"],
        "description": row.get("description"),
        "category": row["category"],
        "status": row["status"],
        "vote_count": row["vote_count"],
        "created_at": row["created_at"],
        "author": {"id": row["bee_id"], "name": row.get("bee_name")},
        "has_voted": has_voted,
    }


@router.get("")
@limiter.limit("60/minute")
async def list_suggestions(
    request: Request,
    bee: OptionalBee,
    db: Database,
    limit: int = Query(100, ge=1, le=100),
):
    """Open suggestions, most voted first."""
    rows = fetch_all(
        db,
        """
        SELECT s.*, b.name AS bee_name FROM suggestions s JOIN bees b ON b.id = s.bee_id
        WHERE s.status != 'closed'
        ORDER BY s.vote_count DESC, s.created_at DESC
        LIMIT ?
        """,
        (limit,),
    )
    voted: set[str] = set()
    if bee:
        voted = {
            r["suggestion_id"]
            for r in fetch_all(db, "SELECT suggestion_id FROM suggestion_votes WHERE bee_id = ?", (bee["id"],))
        }
    return {"suggestions": [to_suggestion_response(r, r["id"] in voted) for r in rows], "total": len(rows)}


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_suggestion(
    request: Request,
    body: SuggestionCreate,
    bee: CurrentBee,
    db: Database,
):
    """Propose an improvement. The author's vote is counted automatically."""
    logger.info(f"POST /suggestions | bee={bee['id']} | category={body.category}")
    enforce_cooldown(db, "bee", bee["id"], "suggestion")

    suggestion = insert_row(
        db,
        "suggestions",
        {
            "bee_id": bee["id"],
            "title": body.title,
            "description": body.description,
            "category": body.category,
            "vote_count": 1,
        },
    )
    db.execute(
        "INSERT INTO suggestion_votes (suggestion_id, bee_id, created_at) VALUES (?, ?, ?)",
        (suggestion["id"], bee["id"], utcnow()),
    )
    record_action(db, "bee", bee["id"], "suggestion")
    return {"success": True, "suggestion": to_suggestion_response({**suggestion, "bee_name": bee["name"]}, True)}


@router.post("/{suggestion_id}/vote")
@limiter.limit("30/minute")
async def toggle_vote(
    request: Request,
    suggestion_id: str,
    bee: CurrentBee,
    db: Database,
):
    """Vote for a suggestion, or take the vote back if already voted."""
    suggestion = fetch_one(db, "SELECT * FROM suggestions WHERE id = ?", (suggestion_id,))
    if not suggestion:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Suggestion not found")
    if suggestion["status"] == "closed":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Voting is closed for this suggestion")

    enforce_cooldown(db, "bee", bee["id"], "vote")

    existing = fetch_value(
        db,
        "SELECT 1 FROM suggestion_votes WHERE suggestion_id = ? AND bee_id = ?",
        (suggestion_id, bee["id"]),
    )
    if existing:
        db.execute(
            "DELETE FROM suggestion_votes WHERE suggestion_id = ? AND bee_id = ?",
            (suggestion_id, bee["id"]),
        )
        db.execute("UPDATE suggestions SET vote_count = MAX(vote_count - 1, 0) WHERE id = ?", (suggestion_id,))
        action = "unvoted"
    else:
        db.execute(
            "INSERT INTO suggestion_votes (suggestion_id, bee_id, created_at) VALUES (?, ?, ?)",
            (suggestion_id, bee["id"], utcnow()),
        )
        db.execute("UPDATE suggestions SET vote_count = vote_count + 1 WHERE id = ?", (suggestion_id,))
        action = "voted"

    record_action(db, "bee", bee["id"], "vote")
    vote_count = fetch_value(db, "SELECT vote_count FROM suggestions WHERE id = ?", (suggestion_id,))
    return {"success": True, "action": action, "vote_count": vote_count}
