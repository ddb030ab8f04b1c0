# orchestrator/api/v1/__init__.py
"""
API v1 modules
"""

from . import reconcile, keys, admin

__all__ = ["reconcile", "keys", "admin"]
