"""API routes."""

from .admin import router as admin_router
from .auth import router as auth_router
from .bees import router as bees_router
from .dashboard import router as dashboard_router
from .disputes import router as disputes_router
from .gigs import router as gigs_router
from .maintenance import router as maintenance_router
from .portfolio import router as portfolio_router
from .stats import router as stats_router
from .suggestions import router as suggestions_router

__all__ = [
    "admin_router",
    "auth_router",
    "bees_router",
    "dashboard_router",
    "disputes_router",
    "gigs_router",
    "maintenance_router",
    "portfolio_router",
    "stats_router",
    "suggestions_router",
]
