"""Exception hierarchy for the telegraph feed.

Callers can catch a specific failure mode (driver trouble, nothing
extracted, bad configuration) without resorting to bare ``Exception``.
"""
from __future__ import annotations


class NewsstackError(Exception):
    """Base error for all newsstack_cls subsystems."""
    pass


class ConfigError(NewsstackError):
    """Invalid configuration or a missing required collaborator."""
    pass


# ---------------------------------------------------------------------------
# Page driver
# ---------------------------------------------------------------------------

class DriverError(NewsstackError):
    """The page driver failed; surfaced verbatim to the caller."""

    def __init__(self, message: str, *, url: str = ""):
        self.url = url
        super().__init__(message)


class NavigationError(DriverError):
    """Navigation to a page failed."""
    pass


class RenderTimeoutError(DriverError):
    """A driver call (or the caller's overall budget) ran out of time."""
    pass


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

class ExtractionError(NewsstackError):
    """No strategy produced any data for this call."""
    pass


class ContentNotFoundError(ExtractionError):
    """No content container on a detail page held plausible text."""

    def __init__(self, message: str, *, url: str = ""):
        self.url = url
        super().__init__(message)


class ParseError(NewsstackError):
    """A strategy's payload was malformed; the next strategy is tried."""

    def __init__(self, message: str, *, strategy: str = ""):
        self.strategy = strategy
        super().__init__(message)
