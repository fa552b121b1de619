"""Error translation system for user-friendly messages."""

from .translator import ErrorTranslator, UserFriendlyError

__all__ = ["ErrorTranslator", "UserFriendlyError"]
