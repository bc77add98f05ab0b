"""
Shared model utilities.

IMPORTANT: Explicit imports only - no wildcards to prevent circular imports.
"""

from capacity_planner.models.base import generate_id, utcnow

__all__ = ["generate_id", "utcnow"]
