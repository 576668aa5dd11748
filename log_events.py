"""
Event helper functions for structured JSON logging.

Consistent event emission and stage timing for the extraction pipeline.
"""

import logging
import time
from typing import Optional

logger = logging.getLogger("call_extractor.events")


def evt(event: str, **fields) -> None:
    """
    Emit a structured event with consistent field naming.

    Args:
        event: The event type/name
        **fields: Additional fields to include in the event

    Example:
        evt("extraction_received", url="https://example.com/calls/1")
        evt("stage_result", stage="navigate", outcome="success", dur_ms=1250)
    """
    event_data = {"event": event}
    event_data.update(fields)
    logger.info("", extra=event_data)


class StageTimer:
    """
    Context manager for automatic stage timing with structured logging.

    Emits stage_start on entry and stage_result on exit, with duration and
    outcome. Works inside coroutines as a plain (synchronous) context manager.

    Example:
        with StageTimer("transcript", attempt=2):
            text = await extractor.extract(session)
    """

    def __init__(self, stage: str, **context_fields):
        self.stage = stage
        self.context_fields = context_fields
        self.start_time: Optional[float] = None
        self.duration_ms: Optional[int] = None

    def __enter__(self):
        self.start_time = time.time()
        evt("stage_start", stage=self.stage, **self.context_fields)
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if self.start_time is None:
            self.duration_ms = 0
        else:
            self.duration_ms = int((time.time() - self.start_time) * 1000)

        event_fields = {
            "stage": self.stage,
            "outcome": "success" if exc_type is None else "error",
            "dur_ms": self.duration_ms,
            **self.context_fields
        }
        if exc_type is not None:
            event_fields["detail"] = f"{exc_type.__name__}: {exc_value}"

        evt("stage_result", **event_fields)

        # Never swallow the exception
        return False


def time_stage(stage: str, **context_fields) -> StageTimer:
    """Create a StageTimer for the given stage."""
    return StageTimer(stage, **context_fields)


# Extraction lifecycle helpers

def extraction_received(url: str, max_attempts: int, **config_fields) -> None:
    """Emit extraction_received at the start of an extraction request."""
    evt("extraction_received", url=url, max_attempts=max_attempts, **config_fields)


def extraction_finished(total_duration_ms: int, attempts: int, transcript_lines: int,
                        outcome: str = "success", **result_fields) -> None:
    """
    Emit extraction_finished when an extraction produced a result.

    Args:
        total_duration_ms: Wall time across all attempts in milliseconds
        attempts: Number of attempts used
        transcript_lines: Number of transcript lines harvested (0 for the sentinel)
        outcome: success, or degraded when the transcript sentinel was returned
    """
    evt("extraction_finished",
        dur_ms=total_duration_ms,
        attempts=attempts,
        transcript_lines=transcript_lines,
        outcome=outcome,
        **result_fields)


def extraction_failed(total_duration_ms: int, attempts: int, error_type: str,
                      error_detail: str, **error_fields) -> None:
    """Emit extraction_failed when every attempt failed or a terminal error occurred."""
    evt("extraction_failed",
        dur_ms=total_duration_ms,
        attempts=attempts,
        outcome="error",
        error_type=error_type,
        detail=error_detail,
        **error_fields)


def attempt_failed(attempt: int, error: Exception, retryable: bool, next_sleep: float = 0) -> None:
    """Emit attempt_failed for one abandoned attempt."""
    evt("attempt_failed",
        attempt=attempt,
        error_type=classify_error_type(error),
        detail=f"{type(error).__name__}: {str(error)[:200]}",
        retryable=retryable,
        next_sleep=next_sleep)


def classify_error_type(exception: Exception) -> str:
    """
    Classify an exception into an error type for structured logging.

    Extraction errors carry their own tag; anything else is classified from
    its name and message.
    """
    tagged = getattr(exception, "error_type", None)
    if tagged:
        return tagged

    exception_name = type(exception).__name__.lower()
    exception_str = str(exception).lower()

    if "timeout" in exception_name or "timeout" in exception_str:
        return "timeout_error"

    if "login" in exception_str or "auth" in exception_str:
        return "auth_error"

    if any(term in exception_str for term in ("net::", "connection", "dns", "ssl")):
        return "network_error"

    if "target closed" in exception_str or "browser has been closed" in exception_str:
        return "browser_error"

    if "selector" in exception_str or "element" in exception_str:
        return "dom_error"

    return "extraction_error"
