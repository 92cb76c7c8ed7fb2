"""
pgd - Project-scoped PostgreSQL instance manager
"""

__version__ = "0.3.0"

from .errors import PgdError

__all__ = ["PgdError"]
