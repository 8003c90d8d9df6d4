"""
Custom exceptions for the scheduling core.
"""
from typing import Tuple


class SrsError(Exception):
    """Base exception for all scheduling core exceptions."""
    pass


class ValidationError(SrsError, ValueError):
    """Raised when a parameter vector, retention or operation fails validation."""
    pass


class RateLimitedError(SrsError):
    """Raised when the same card is submitted again inside the debounce window."""

    def __init__(self, user_id: str, word_id: int, reading_index: int):
        self.key: Tuple[str, int, int] = (user_id, word_id, reading_index)
        super().__init__(
            f"Too many requests for user {user_id}, word {word_id}, reading {reading_index}"
        )
