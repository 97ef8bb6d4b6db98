"""Build history and checkout orchestration."""

from .models import BUILDS_DIRNAME, BuildHistory, BuildRecord
from .service import CheckoutResult, IntegrationService, PollingResult, PollResult

__all__ = [
    "BUILDS_DIRNAME",
    "BuildHistory",
    "BuildRecord",
    "CheckoutResult",
    "IntegrationService",
    "PollResult",
    "PollingResult",
]
