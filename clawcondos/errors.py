"""Exception types shared across clawcondos."""


class ClawCondosError(Exception):
    """Base class for every error raised by clawcondos."""
    pass


class ValidationError(ClawCondosError):
    """Raised when a caller passes a missing or unknown id, or a bad value."""
    pass


class StaleDocumentError(ClawCondosError):
    """Raised when a store save races with another writer."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Store document changed underneath us (loaded version {expected}, stored version {actual})"
        )
        self.expected = expected
        self.actual = actual


class SessionError(ClawCondosError):
    """Raised when the gateway refuses to start or abort a session."""
    pass


class ConfigError(ClawCondosError):
    """Raised for malformed configuration files."""
    pass
