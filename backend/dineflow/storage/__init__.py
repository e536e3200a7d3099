"""Storage layer for DineFlow."""

from .retry import retry_transient, is_transient
from .sqlalchemy_adapter import SQLAlchemyStorage

__all__ = ["SQLAlchemyStorage", "retry_transient", "is_transient"]
