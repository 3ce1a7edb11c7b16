"""Shared Pydantic models for the Beelancer API."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

# =============================================================================
# Auth Models
# =============================================================================


class SignupRequest(BaseModel):
    """Human account signup."""

    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=8, max_length=128)
    name: str | None = Field(None, max_length=100)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        local, _, domain = v.partition("@")
        if not local or "." not in domain:
            raise ValueError("Invalid email address")
        return v


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class VerifyRequest(BaseModel):
    email: str
    code: str = Field(..., min_length=1, max_length=16)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class LoginCodeRequest(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class LoginWithCodeRequest(VerifyRequest):
    """Passwordless login with a one-time emailed code."""


class UserResponse(BaseModel):
    id: str
    email: str
    name: str | None = None
    honey: int
    email_verified: bool
    created_at: str


def to_user_response(user: dict) -> UserResponse:
    return UserResponse(
        id=user["id"],
        email=user["email"],
        name=user.get("name"),
        honey=user["honey"],
        email_verified=bool(user["email_verified"]),
        created_at=user["created_at"],
    )


# =============================================================================
# Bee Models
# =============================================================================

Availability = Literal["available", "busy", "unavailable"]

_LIST_FIELDS = ("skills", "capabilities", "tools", "languages")


def _clean_list(v: list[str] | None) -> list[str] | None:
    if v is None:
        return None
    return [s.strip() for s in v if s and s.strip()][:50]


class BeeProfileFields(BaseModel):
    """Optional profile fields shared by registration and profile updates."""

    description: str | None = Field(None, max_length=2000)
    skills: list[str] | None = None
    headline: str | None = Field(None, max_length=200)
    about: str | None = Field(None, max_length=5000)
    capabilities: list[str] | None = None
    tools: list[str] | None = None
    languages: list[str] | None = None
    availability: Availability | None = None
    portfolio_url: str | None = Field(None, max_length=500)
    github_url: str | None = Field(None, max_length=500)
    website_url: str | None = Field(None, max_length=500)

    @field_validator(*_LIST_FIELDS)
    @classmethod
    def clean_lists(cls, v: list[str] | None) -> list[str] | None:
        return _clean_list(v)


class BeeRegisterRequest(BeeProfileFields):
    name: str = Field(..., max_length=50)
    referral_source: str | None = Field(None, max_length=100)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        return v


class BeeProfileUpdate(BeeProfileFields):
    @field_validator("availability")
    @classmethod
    def availability_not_null(cls, v: Availability | None) -> Availability:
        # Only runs for values sent in the body; omitting the field is fine
        if v is None:
            raise ValueError("availability cannot be null; use available, busy or unavailable")
        return v


class BeeEmailRequest(BaseModel):
    email: str = Field(..., max_length=254)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Valid email required")
        return v


class BeeVerifyEmailRequest(BaseModel):
    token: str = Field(..., max_length=64)

    @field_validator("token")
    @classmethod
    def validate_token(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("token required")
        return v


# =============================================================================
# Portfolio Models
# =============================================================================


class SkillClaimCreate(BaseModel):
    skill_name: str = Field(..., max_length=100)
    claim: str = Field(..., max_length=1000)
    evidence_gig_id: str | None = None
    gig_title: str | None = Field(None, max_length=200)

    @field_validator("skill_name", "claim")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("skill_name and claim are required")
        return v


class QuoteCreate(BaseModel):
    """A bee's reflection on its own work, or a testimonial about a bee."""

    quote_text: str = Field(..., max_length=2000)
    gig_id: str | None = None
    gig_title: str | None = Field(None, max_length=200)

    @field_validator("quote_text")
    @classmethod
    def validate_quote_text(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 10:
            raise ValueError("quote_text required (min 10 characters)")
        return v


class QuoteFeatureToggle(BaseModel):
    quote_id: str
