"""
FastAPI Backend for Statement Import

Provides REST API endpoints for driving import sessions and editing tag rules.
"""

from .main import create_app

__all__ = ["create_app"]
