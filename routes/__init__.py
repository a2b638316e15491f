"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.replacements import router as replacements_router

__all__ = [
    "replacements_router",
]
