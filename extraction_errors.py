"""
Error taxonomy for the extraction engine.

Every failure inside an attempt is either retryable (a fresh session may
succeed) or terminal (retrying cannot help). Degraded results such as
default metadata or the empty-transcript sentinel are not errors.
"""

from typing import Optional


class ExtractionError(Exception):
    """Base class for extraction failures."""

    error_type = "extraction_error"
    retryable = True

    def __init__(self, message: str, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable


class InvalidRequestError(ExtractionError):
    """The request URL is missing or malformed; rejected before browser work."""

    error_type = "invalid_request"
    retryable = False


class NavigationError(ExtractionError):
    """The browser failed to load the page."""

    error_type = "navigation_error"


class NavigationTimeoutError(NavigationError):
    """Page navigation exceeded the configured timeout."""

    error_type = "navigation_timeout"


class UnexpectedRedirectError(NavigationError):
    """The page settled somewhere other than the requested call page."""

    error_type = "unexpected_redirect"

    def __init__(self, message: str, final_url: Optional[str] = None):
        super().__init__(message)
        self.final_url = final_url


class AuthenticationRequiredError(NavigationError):
    """The page redirected to a login form. No credential flow exists, so this is terminal."""

    error_type = "auth_required"
    retryable = False

    def __init__(self, message: str, final_url: Optional[str] = None):
        super().__init__(message)
        self.final_url = final_url


class TranscriptContainerNotFoundError(ExtractionError):
    """The transcript container never attached to the DOM."""

    error_type = "transcript_container_missing"


class ElementReadTimeoutError(ExtractionError):
    """Reading text from a transcript element timed out."""

    error_type = "element_read_timeout"


def is_retryable(exc: BaseException) -> bool:
    """
    Decide whether an attempt that raised `exc` should be retried.

    Raw browser and driver faults are retryable; a fresh session is the
    remedy for corrupted page state.
    """
    if isinstance(exc, ExtractionError):
        return exc.retryable
    return isinstance(exc, Exception)


def describe_error(exc: BaseException) -> str:
    """Human-readable description embedded in failure results."""
    message = getattr(exc, "message", None) or str(exc) or "no details"
    # Playwright messages carry a multi-line call log; keep the headline
    headline = message.strip().splitlines()[0] if message.strip() else "no details"
    return f"{type(exc).__name__}: {headline}"
