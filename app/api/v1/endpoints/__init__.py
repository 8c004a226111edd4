"""
API endpoints module
"""

from . import registrations, health

__all__ = [
    "registrations",
    "health"
]
