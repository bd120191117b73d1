"""
Identity resolution package.
"""

from .resolver import DEFAULT_ADMIN_GROUP, IdentityResolver

__all__ = ["DEFAULT_ADMIN_GROUP", "IdentityResolver"]
