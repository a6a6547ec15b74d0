"""Data layer of the Leciona lesson planner."""

from .models import AppDocument
from .storage import LocalStore

__all__ = ["AppDocument", "LocalStore"]
