"""Custom exceptions for the flow limiter library."""


class FlowLimiterException(Exception):
    """Base class for flow limiter exceptions with a numeric error code.

    The string form is ``"<code>:<message>"`` so it can be copied straight
    into a result record's ``error`` field.
    """
    code: int = 10000

    def __init__(self, message: str = "Flow limiter error"):
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.code}:{self.message}"


class StoreNotConfiguredError(FlowLimiterException):
    """Raised when a limiter is used without a store handle.

    Limiters report it through the result's error field rather than raising.
    """
    code = 10030

    def __init__(self, message: str = "invalid store connection"):
        super().__init__(message)


class StoreError(FlowLimiterException):
    """Raised by a store backend when a command cannot be applied.

    Examples are running a counter command against an ordered set key or
    storing a non-integer value.
    """
    code = 10040

    def __init__(self, message: str = "store operation failed", key: str | None = None):
        self.key = key
        super().__init__(message)
