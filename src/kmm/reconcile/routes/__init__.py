"""API routes package."""

from .clusters import router as clusters_router
from .diff import router as diff_router
from .health import router as health_router

__all__ = [
    "clusters_router",
    "diff_router",
    "health_router",
]
