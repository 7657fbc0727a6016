"""Database models."""

from returndesk.models.returns import ReturnRequestRow

__all__ = ["ReturnRequestRow"]
