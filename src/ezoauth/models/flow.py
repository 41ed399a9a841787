"""Authorization flow models.

Contains the callback response model and the phases of an authorization
attempt.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FlowPhase(str, Enum):
    """Lifecycle of a single authorization attempt."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class AuthorizationResponse:
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        return self.error is None and self.code is not None

    def is_error(self) -> bool:
        return self.error is not None
