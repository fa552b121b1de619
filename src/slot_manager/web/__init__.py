"""Status tree and HTTP surface for the slot dashboard."""

from .models import StatusResponse
from .status import build_status

__all__ = ["StatusResponse", "build_status"]
