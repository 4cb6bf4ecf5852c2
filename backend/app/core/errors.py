"""
Error taxonomy for the router.

No-match and ambiguity are retrieval statuses, not exceptions. The classes here
cover the conditions a caller has to recover from or translate for the user.
"""
from typing import Optional


class RouterError(Exception):
    """Base class for router errors."""


class BadgeNotFoundError(RouterError):
    """A panel name matched but none of its instances carries the requested badge."""

    def __init__(self, term: str, badge: str):
        self.term = term
        self.badge = badge.upper()
        name = term.title()
        if name.lower().endswith(" panel"):
            name = name[: -len(" panel")]
        super().__init__(f"No {name} panel with badge '{self.badge}' found.")

    @property
    def user_message(self) -> str:
        return str(self)


class StaleKnownTermsError(RouterError):
    """The known-term snapshot expired and could not be refreshed."""

    def __init__(self, version: str, reason: str):
        self.version = version
        self.reason = reason
        super().__init__(f"Known-term snapshot {version} is stale ({reason})")


class ClassifierError(RouterError):
    """The generative classifier failed or returned something unusable."""


class ClassifierTimeoutError(ClassifierError):
    """The generative classifier did not answer within its time budget."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Classifier timed out after {timeout_seconds:.1f}s")


class InfrastructureError(RouterError):
    """A backing store is unavailable. Callers translate this into a generic apology."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)
