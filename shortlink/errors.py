"""Domain exceptions raised across the short-link subsystem.

Only the caller-actionable conditions live here. Cache and geolocation
failures are absorbed where they happen and never reach a route handler.
"""

__all__ = [
    "ShortLinkError",
    "ValidationFailed",
    "AliasTaken",
    "CodeExhausted",
    "RenderFailed",
    "GeoLookupError",
]


class ShortLinkError(Exception):
    """Base class for errors that cross the subsystem boundary."""


class ValidationFailed(ShortLinkError):
    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")


class AliasTaken(ShortLinkError):
    def __init__(self, short_code: str) -> None:
        self.short_code = short_code
        super().__init__(f"Short code '{short_code}' is already taken")


class CodeExhausted(ShortLinkError):
    """No unique random code was found within the retry bound."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Could not generate a unique short code after {attempts} attempts")


class RenderFailed(ShortLinkError):
    def __init__(self, short_code: str) -> None:
        self.short_code = short_code
        super().__init__(f"Could not render QR code for '{short_code}'")


class GeoLookupError(Exception):
    """Geolocation lookup failed. Always recovered with a fallback location."""
