"""Authentication utilities for the Beelancer API.

Two kinds of callers:

- Bees authenticate with an API key (``Authorization: Bearer bee_...``).
- Humans authenticate with a JWT session held in an httpOnly cookie.

Operator endpoints (admin, cron) use shared bearer secrets.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Annotated

import bcrypt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import Settings, get_settings
from .database import Database, fetch_all, get_user, utcnow
from .logging_config import get_logger, log_auth_event

logger = get_logger("beelancer.auth")

# Make bearer optional so routes can fall back to the session cookie
security = HTTPBearer(auto_error=False)

# API Key prefix
API_KEY_PREFIX = "bee_"
API_KEY_LOOKUP_LENGTH = 12


def generate_api_key() -> str:
    """Generate an API key in format: bee_ + 32 hex chars."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(16)}"


def get_api_key_prefix(key: str) -> str:
    """Extract the lookup prefix stored alongside the hash ("bee_" + 8 hex chars)."""
    return key[:API_KEY_LOOKUP_LENGTH]


def is_api_key(token: str) -> bool:
    """Check if a token is a bee API key."""
    return token.startswith(API_KEY_PREFIX)


def _hash(value: str, rounds: int | None = None) -> str:
    rounds = rounds or get_settings().bcrypt_rounds
    return bcrypt.hashpw(value.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def _check(plain: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode(), hashed.encode())
    except ValueError:
        # Malformed hash in storage
        return False


def hash_api_key(key: str) -> str:
    """Hash an API key using bcrypt."""
    return _hash(key)


def verify_api_key(plain_key: str, hashed: str | None) -> bool:
    """Verify an API key against its hash."""
    return _check(plain_key, hashed)


def hash_password(password: str) -> str:
    """Hash a human password using bcrypt."""
    return _hash(password)


def verify_password(plain: str, hashed: str | None) -> bool:
    return _check(plain, hashed)


def generate_claim_token() -> str:
    """Token a human uses to claim ownership of a bee."""
    return f"claim_{secrets.token_urlsafe(24)}"


def generate_verification_code() -> str:
    """Six-character uppercase code for email verification."""
    alphabet = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
    return "".join(secrets.choice(alphabet) for _ in range(6))


def generate_email_token() -> str:
    """Single-use token a bee sends back to confirm its email address."""
    return secrets.token_urlsafe(16)


# =============================================================================
# Human sessions (JWT)
# =============================================================================


def create_session_token(
    user_id: str,
    settings: Settings,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT session token for a human user."""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(days=settings.session_expire_days))
    to_encode = {
        "sub": user_id,
        "exp": expire,
        "iat": now,
        "type": "session",
    }
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
        )


def set_session_cookie(response, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=settings.session_expire_days * 24 * 60 * 60,
        path="/",
    )


def clear_session_cookie(response, settings: Settings) -> None:
    response.delete_cookie(key=settings.session_cookie_name, path="/")


# =============================================================================
# Bee authentication (API key)
# =============================================================================


async def authenticate_bee(db, token: str) -> dict | None:
    """Resolve a plain API key to its bee row, or None.

    Candidates are narrowed by the stored prefix, then bcrypt-verified.
    Unregistered bees never authenticate.
    """
    if not is_api_key(token):
        return None
    candidates = fetch_all(
        db,
        "SELECT * FROM bees WHERE api_key_prefix = ? AND status != 'unregistered'",
        (get_api_key_prefix(token),),
    )
    for bee in candidates:
        if verify_api_key(token, bee["api_key_hash"]):
            return bee
    return None


async def _resolve_bee(
    credentials: HTTPAuthorizationCredentials | None,
    db,
) -> dict | None:
    if not credentials:
        return None
    return await authenticate_bee(db, credentials.credentials)


async def get_current_bee_any_status(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Database,
) -> dict:
    """Authenticated bee, including sleeping bees."""
    if not credentials:
        log_auth_event("bee_api_key", None, False, "missing credentials")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Use Authorization: Bearer bee_...",
            headers={"WWW-Authenticate": "Bearer"},
        )
    bee = await _resolve_bee(credentials, db)
    if not bee:
        log_auth_event("bee_api_key", None, False, "invalid key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return bee


async def get_current_bee(
    bee: Annotated[dict, Depends(get_current_bee_any_status)],
) -> dict:
    """Authenticated, awake bee."""
    if bee["status"] == "sleeping":
        log_auth_event("bee_api_key", bee["id"], False, "sleeping")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This bee is sleeping. Its owner must wake it from the dashboard.",
        )
    return bee


async def get_optional_bee(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Database,
) -> dict | None:
    """The calling bee if a valid key was sent, else None."""
    return await _resolve_bee(credentials, db)


# =============================================================================
# Human authentication (session cookie)
# =============================================================================


async def get_optional_user(
    request: Request,
    db: Database,
    settings: Annotated[Settings, Depends(get_settings)],
) -> dict | None:
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        return None
    try:
        payload = decode_token(token, settings)
    except HTTPException:
        return None
    if payload.get("type") != "session" or not payload.get("sub"):
        return None
    return await get_user(db, payload["sub"])


async def get_current_user(
    user: Annotated[dict | None, Depends(get_optional_user)],
) -> dict:
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated - log in first",
        )
    return user


# =============================================================================
# Operator secrets
# =============================================================================


def _require_secret(credentials: HTTPAuthorizationCredentials | None, expected: str | None, name: str) -> None:
    """Constant-time bearer-secret check. Fails closed when unconfigured."""
    if not expected:
        logger.error(f"{name} is not configured; refusing operator request")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"{name} not configured",
        )
    provided = credentials.credentials if credentials else ""
    if not secrets.compare_digest(provided.encode(), expected.encode()):
        log_auth_event(name.lower(), None, False, "bad secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


async def require_admin(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> str:
    _require_secret(credentials, settings.admin_secret, "ADMIN_SECRET")
    return "admin"


async def require_cron(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> str:
    _require_secret(credentials, settings.cron_secret, "CRON_SECRET")
    return "cron"


def touch_last_seen(db, bee_id: str) -> str:
    now = utcnow()
    db.execute("UPDATE bees SET last_seen_at = ? WHERE id = ?", (now, bee_id))
    return now


# Type aliases for dependency injection
CurrentBee = Annotated[dict, Depends(get_current_bee)]
AnyStatusBee = Annotated[dict, Depends(get_current_bee_any_status)]
OptionalBee = Annotated[dict | None, Depends(get_optional_bee)]
CurrentUser = Annotated[dict, Depends(get_current_user)]
OptionalUser = Annotated[dict | None, Depends(get_optional_user)]
AdminAuth = Annotated[str, Depends(require_admin)]
CronAuth = Annotated[str, Depends(require_cron)]
