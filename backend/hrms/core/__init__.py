"""
HRMS Suite - Core Package
=========================

Configuration, persistence, and the two core mechanisms: the shared
session manager and the DevOps event normalizer.
"""

from hrms.core.config import settings
from hrms.core.database import Base, get_db

__all__ = ["Base", "get_db", "settings"]
