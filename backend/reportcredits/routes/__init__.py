"""Report Credits Routes"""

from .credits import router as credits_router
from .jobs import router as jobs_router
from .admin import router as admin_router

__all__ = [
    "credits_router",
    "jobs_router",
    "admin_router",
]
