"""Result records returned by the limiters.

Every limiter operation returns one of these instead of raising. Defaults are
the fail-closed values, so a record that was never filled in denies.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class AdmissionResult:
    """Result of a sliding window admission check.

    Attributes:
        allowed: Whether the action may proceed
        current_count: Actions counted in the window (0 on failure)
        error: Store or configuration failure description, if any
    """
    allowed: bool = False
    current_count: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to the legacy wire format."""
        return {
            "is_allowed": self.allowed,
            "current_num": self.current_count,
            "error_msg": self.error or "",
        }


@dataclass
class PermissionResult:
    """Result of a leaky bucket admission check."""
    allowed: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to the legacy wire format."""
        return {
            "is_allowed": self.allowed,
            "error_msg": self.error or "",
        }


@dataclass
class BucketOperationResult:
    """Result of a token bucket maintenance call (reset or refill).

    ``ok`` is False without an error when a refill had nothing to add.
    """
    ok: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "error_msg": self.error or "",
        }


@dataclass
class TokenResult:
    """Result of taking one token from a token bucket."""
    has_token: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "has_token": self.has_token,
            "error_msg": self.error or "",
        }
