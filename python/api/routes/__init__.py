"""
API Routes Package

Contains all route modules for the statement import API.
"""

from .imports import router as imports_router
from .tag_rules import router as tag_rules_router

__all__ = [
    "imports_router",
    "tag_rules_router",
]
