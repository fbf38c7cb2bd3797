"""
Error taxonomy for the interpretation engine.

Budget exhaustion is not an error; it is flagged on the result.
"""


class RachaError(Exception):
    """Base class for all engine errors."""


class InputError(RachaError):
    """Raised for malformed input: empty text, non-positive totals,
    duplicate participants or broken family groupings."""


class InsufficientDataError(RachaError):
    """Raised when a split method needs data the caller did not supply.

    The caller is expected to prompt the user for it instead of silently
    falling back to an equal split.
    """

    def __init__(self, message: str, missing: str):
        super().__init__(message)
        self.missing = missing


class ProviderError(RachaError):
    """Raised when the AI provider fails, times out or answers garbage."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
