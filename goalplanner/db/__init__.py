"""Database utilities and models."""

from goalplanner.db.base import Base
from goalplanner.db import models  # noqa: F401  (imported for side effects)

__all__ = ["Base"]
