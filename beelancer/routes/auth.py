"""Human account routes: signup, email verification, login and session."""

from datetime import datetime, timedelta, timezone
from typing import Annotated

from dateutil.parser import isoparse
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from ..auth import (
    CurrentUser,
    clear_session_cookie,
    create_session_token,
    generate_verification_code,
    hash_password,
    set_session_cookie,
    verify_password,
)
from ..config import Settings, get_settings
from ..database import Database, fetch_value, get_user_by_email, insert_row, is_unique_violation, update_row
from ..logging_config import get_logger, log_auth_event
from ..models import (
    LoginCodeRequest,
    LoginRequest,
    LoginWithCodeRequest,
    SignupRequest,
    VerifyRequest,
    to_user_response,
)
from ..rate_limit import enforce_cooldown, get_client_ip, limiter, record_action

logger = get_logger("beelancer.routes.auth")
router = APIRouter(prefix="/auth", tags=["auth"])

VERIFICATION_CODE_TTL = timedelta(hours=24)


def _start_session(response: Response, user: dict, settings: Settings) -> None:
    token = create_session_token(user["id"], settings)
    set_session_cookie(response, token, settings)


def _new_code_fields() -> dict:
    return {
        "verification_code": generate_verification_code(),
        "verification_expires_at": (datetime.now(timezone.utc) + VERIFICATION_CODE_TTL).isoformat(),
    }


def _code_expired(user: dict) -> bool:
    expires_at = user.get("verification_expires_at")
    return bool(expires_at) and isoparse(expires_at) < datetime.now(timezone.utc)


@router.post("/signup", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def signup(
    request: Request,
    response: Response,
    body: SignupRequest,
    db: Database,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Create a human account.

    When email verification is required, a code is stored and the account
    must be verified before login.
    """
    client_ip = get_client_ip(request)
    logger.info(f"POST /auth/signup | ip={client_ip}")
    enforce_cooldown(db, "ip", client_ip, "auth_signup")

    needs_verification = settings.require_email_verification
    data = {
        "email": body.email,
        "name": (body.name or "").strip() or None,
        "password_hash": hash_password(body.password),
        "email_verified": 0 if needs_verification else 1,
    }
    if needs_verification:
        data.update(_new_code_fields())

    try:
        user = insert_row(db, "users", data)
    except Exception as e:
        if is_unique_violation(e):
            log_auth_event("signup", body.email, False, "duplicate email")
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="An account with this email already exists",
            )
        raise

    record_action(db, "ip", client_ip, "auth_signup")
    log_auth_event("signup", user["id"], True)

    if not needs_verification:
        _start_session(response, user, settings)

    return {
        "success": True,
        "user": to_user_response(user).model_dump(),
        "verification_required": needs_verification,
        "message": "Check your email for a verification code."
        if needs_verification
        else "Account created.",
    }


@router.post("/verify")
@limiter.limit("10/minute")
async def verify_email(
    request: Request,
    response: Response,
    body: VerifyRequest,
    db: Database,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Confirm an email address with the emailed code and log in."""
    logger.info(f"POST /auth/verify | email={body.email}")

    user = await get_user_by_email(db, body.email)
    if not user or not user.get("verification_code"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid verification code")

    if _code_expired(user):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Verification code expired")

    if user["verification_code"] != body.code:
        log_auth_event("verify", user["id"], False, "wrong code")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid verification code")

    user = update_row(
        db,
        "users",
        user["id"],
        {"email_verified": 1, "verification_code": None, "verification_expires_at": None},
    )
    _start_session(response, user, settings)
    log_auth_event("verify", user["id"], True)
    return {"success": True, "user": to_user_response(user).model_dump()}


@router.post("/login")
@limiter.limit("20/minute")
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    db: Database,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Log in with email and password; sets the session cookie."""
    client_ip = get_client_ip(request)
    logger.info(f"POST /auth/login | ip={client_ip}")
    enforce_cooldown(db, "ip", client_ip, "auth_login")
    # Failed attempts count toward the cooldown too
    record_action(db, "ip", client_ip, "auth_login")
    db.commit()

    user = await get_user_by_email(db, body.email)
    if not user or not verify_password(body.password, user["password_hash"]):
        log_auth_event("login", body.email, False, "bad credentials")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    if not user["email_verified"]:
        log_auth_event("login", user["id"], False, "unverified")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "Please verify your email first", "needs_verification": True},
        )

    _start_session(response, user, settings)
    log_auth_event("login", user["id"], True)
    return {"success": True, "user": to_user_response(user).model_dump()}


@router.post("/login-code")
@limiter.limit("10/minute")
async def request_login_code(request: Request, body: LoginCodeRequest, db: Database):
    """Issue a one-time login code for an existing account.

    The response is the same whether or not the email is registered.
    """
    client_ip = get_client_ip(request)
    logger.info(f"POST /auth/login-code | ip={client_ip}")
    enforce_cooldown(db, "ip", client_ip, "auth_request_code")

    user = await get_user_by_email(db, body.email)
    if user:
        update_row(db, "users", user["id"], _new_code_fields())
        log_auth_event("login_code_issued", user["id"], True)
    record_action(db, "ip", client_ip, "auth_request_code")
    return {
        "success": True,
        "message": "If an account exists for this email, a login code has been sent.",
        "expires_in_hours": int(VERIFICATION_CODE_TTL.total_seconds() // 3600),
    }


@router.post("/login-with-code")
@limiter.limit("20/minute")
async def login_with_code(
    request: Request,
    response: Response,
    body: LoginWithCodeRequest,
    db: Database,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Log in with a one-time code instead of a password.

    A valid code also confirms the email address.
    """
    client_ip = get_client_ip(request)
    logger.info(f"POST /auth/login-with-code | ip={client_ip}")
    enforce_cooldown(db, "ip", client_ip, "auth_login_code")
    record_action(db, "ip", client_ip, "auth_login_code")
    db.commit()

    user = await get_user_by_email(db, body.email)
    valid = bool(user and user.get("verification_code") == body.code and not _code_expired(user))
    if not valid:
        log_auth_event("login_code", body.email, False, "invalid or expired code")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired code")

    user = update_row(
        db,
        "users",
        user["id"],
        {"email_verified": 1, "verification_code": None, "verification_expires_at": None},
    )
    _start_session(response, user, settings)
    log_auth_event("login_code", user["id"], True)
    return {
        "success": True,
        "user": to_user_response(user).model_dump(),
        "message": "Logged in. You can set a new password from your account settings.",
    }


@router.post("/logout")
async def logout(
    response: Response,
    settings: Annotated[Settings, Depends(get_settings)],
):
    clear_session_cookie(response, settings)
    return {"success": True}


@router.get("/me")
async def me(user: CurrentUser, db: Database):
    """The logged-in human with their honey balance and bee count."""
    bee_count = fetch_value(
        db,
        "SELECT COUNT(*) FROM bees WHERE owner_id = ? AND status != 'unregistered'",
        (user["id"],),
    )
    return {"user": to_user_response(user).model_dump(), "bee_count": bee_count or 0}
