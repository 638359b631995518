"""
API v1 package.

Contains versioned routes for the CRM auth API.
"""

from src.api.v1.routes import router

__all__ = ["router"]
