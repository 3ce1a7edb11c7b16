"""Logging setup for the Beelancer API.

All modules log through named children of the ``beelancer`` logger so the
level and format can be controlled from one place.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def setup_logging(level: str = "INFO") -> None:
    """Configure the root ``beelancer`` logger once."""
    global _configured
    root = logging.getLogger("beelancer")
    root.setLevel(level.upper())
    if _configured:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a named logger, e.g. ``get_logger("beelancer.gigs")``."""
    return logging.getLogger(name)


_auth_logger = get_logger("beelancer.auth")


def log_auth_event(event: str, subject: str | None, success: bool, reason: str | None = None) -> None:
    """Record an authentication outcome. Never pass secrets here."""
    msg = f"AUTH {event} | subject={subject or '-'} | success={success}"
    if reason:
        msg += f" | reason={reason}"
    if success:
        _auth_logger.info(msg)
    else:
        _auth_logger.warning(msg)
