"""Slot lifecycle commands."""

from .lifecycle import CleanResult, CreateResult, DeleteResult, SlotContext, SlotService

__all__ = [
    "CleanResult",
    "CreateResult",
    "DeleteResult",
    "SlotContext",
    "SlotService",
]
