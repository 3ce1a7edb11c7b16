"""Rate limiting for the Beelancer API.

Two layers:

- Per-IP request limits via slowapi. Uses trusted proxy configuration to
  prevent X-Forwarded-For spoofing.
- Per-entity action cooldowns (e.g. one gig post per hour per user), stored
  in the ``rate_limits`` table.
"""

import ipaddress
import math
import os
from datetime import datetime, timezone
from typing import Optional

from dateutil.parser import isoparse
from fastapi import HTTPException, status
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings
from .database import fetch_one, utcnow
from .logging_config import get_logger

logger = get_logger("beelancer.rate_limit")

# Trusted proxy CIDRs - only these sources can set X-Forwarded-For.
# Override with TRUSTED_PROXY_CIDRS env var (comma-separated CIDRs).
_DEFAULT_TRUSTED_CIDRS = [
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "127.0.0.0/8",
    "::1/128",
]


def _load_trusted_cidrs() -> list[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    """Load trusted proxy CIDRs from env or defaults."""
    raw = os.environ.get("TRUSTED_PROXY_CIDRS", "")
    cidrs = [s.strip() for s in raw.split(",") if s.strip()] if raw else _DEFAULT_TRUSTED_CIDRS
    networks = []
    for cidr in cidrs:
        try:
            networks.append(ipaddress.ip_network(cidr, strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy CIDR: {cidr}")
    return networks


_trusted_networks: Optional[list] = None


def _get_trusted_networks():
    global _trusted_networks
    if _trusted_networks is None:
        _trusted_networks = _load_trusted_cidrs()
    return _trusted_networks


def _is_trusted_proxy(ip_str: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(addr in network for network in _get_trusted_networks())


def get_client_ip(request) -> str:
    """Resolve client IP, only honoring X-Forwarded-For from trusted proxies."""
    direct_ip = get_remote_address(request)

    if _is_trusted_proxy(direct_ip):
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()
            if client_ip:
                return client_ip

    return direct_ip


limiter = Limiter(key_func=get_client_ip)


# =============================================================================
# Action cooldowns
# =============================================================================

# Minimum seconds between two occurrences of an action by the same entity
COOLDOWNS: dict[str, int] = {
    "gig_post": 3600,
    "bid": 300,
    "suggestion": 300,
    "message": 30,
    "submit_work": 300,
    "follow": 10,
    "vote": 10,
    "report": 60,
    "dispute": 300,
    "bee_register": 60,
    "auth_signup": 60,
    "auth_login": 10,
    "rotate_key": 60,
    "endorse": 60,
    "testimonial": 300,
    "bee_email": 60,
    "auth_login_code": 10,
    "auth_request_code": 60,
}


def format_retry_after(seconds: int) -> str:
    """Human-readable wait: seconds under a minute, else minutes rounded up."""
    if seconds < 60:
        return f"{seconds} second{'' if seconds == 1 else 's'}"
    minutes = math.ceil(seconds / 60)
    return f"{minutes} minute{'' if minutes == 1 else 's'}"


def check_cooldown(db, entity_type: str, entity_id: str, action: str) -> int | None:
    """Return seconds remaining before ``action`` is allowed again, or None if allowed."""
    if not get_settings().action_cooldowns_enabled:
        return None
    cooldown = COOLDOWNS.get(action)
    if not cooldown:
        return None

    row = fetch_one(
        db,
        "SELECT last_action_at FROM rate_limits WHERE entity_type = ? AND entity_id = ? AND action = ?",
        (entity_type, entity_id, action),
    )
    if not row:
        return None

    elapsed = (datetime.now(timezone.utc) - isoparse(row["last_action_at"])).total_seconds()
    if elapsed >= cooldown:
        return None
    return max(1, math.ceil(cooldown - elapsed))


def record_action(db, entity_type: str, entity_id: str, action: str) -> None:
    """Upsert the last-action timestamp after the action succeeded.

    Recorded even while cooldowns are switched off, so turning them on takes
    effect against recent history.
    """
    db.execute(
        """
        INSERT INTO rate_limits (entity_type, entity_id, action, last_action_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT (entity_type, entity_id, action)
        DO UPDATE SET last_action_at = excluded.last_action_at
        """,
        (entity_type, entity_id, action, utcnow()),
    )


def enforce_cooldown(db, entity_type: str, entity_id: str, action: str) -> None:
    """Raise 429 if the entity is still cooling down for ``action``."""
    remaining = check_cooldown(db, entity_type, entity_id, action)
    if remaining is None:
        return
    logger.info(f"Cooldown hit | {entity_type}={entity_id} | action={action} | remaining={remaining}s")
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "error": f"Slow down! You can {action.replace('_', ' ')} again in {format_retry_after(remaining)}.",
            "retry_after_seconds": remaining,
        },
        headers={"Retry-After": str(remaining)},
    )
