"""
Transient data model for call extraction.

Nothing here is persisted; every value is created fresh per request.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from extraction_errors import InvalidRequestError

UNKNOWN_PARTY = "Unknown"
NO_TITLE = "No Title"
NO_TRANSCRIPT = "No transcript found."


def format_duration(total_seconds: int) -> str:
    """Render seconds as '<m> minutes <s> seconds'; hours fold into minutes."""
    total_seconds = max(int(total_seconds or 0), 0)
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes} minutes {seconds} seconds"


@dataclass(frozen=True)
class ExtractionRequest:
    url: str

    def validate(self) -> str:
        """Return the normalized URL or raise InvalidRequestError."""
        url = (self.url or "").strip() if isinstance(self.url, str) else ""
        if not url:
            raise InvalidRequestError("Missing call page URL")

        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidRequestError(f"Not a valid http(s) URL: {url[:200]}")
        return url


@dataclass
class CallMetadata:
    """Call metadata with a sentinel in every field, so the output shape is always complete."""

    call_date: str = field(default_factory=lambda: date.today().isoformat())
    salesperson_name: str = UNKNOWN_PARTY
    prospect_name: str = UNKNOWN_PARTY
    duration_seconds: int = 0
    transcript_link: str = ""
    title: str = NO_TITLE

    @property
    def call_duration(self) -> str:
        return format_duration(self.duration_seconds)

    def to_dict(self) -> Dict[str, str]:
        return {
            "CallDate": self.call_date,
            "SalespersonName": self.salesperson_name,
            "ProspectName": self.prospect_name,
            "CallDuration": self.call_duration,
            "TranscriptLink": self.transcript_link,
            "Title": self.title,
        }


@dataclass(frozen=True)
class ExtractionResult:
    """
    Outcome of one extraction request.

    Exactly one variant is populated: metadata plus transcript on success,
    an error description on failure. Use the success()/failure() constructors.
    """

    metadata: Optional[CallMetadata] = None
    transcript: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0

    def __post_init__(self):
        has_success = self.metadata is not None or self.transcript is not None
        has_error = self.error is not None
        if has_success == has_error:
            raise ValueError("ExtractionResult needs either metadata+transcript or an error, not both")
        if has_success and (self.metadata is None or self.transcript is None):
            raise ValueError("A successful ExtractionResult needs both metadata and transcript")

    @classmethod
    def success(cls, metadata: CallMetadata, transcript: str, attempts: int = 1) -> 'ExtractionResult':
        return cls(metadata=metadata, transcript=transcript, attempts=attempts)

    @classmethod
    def failure(cls, error: str, attempts: int = 0) -> 'ExtractionResult':
        return cls(error=error or "Unknown error", attempts=attempts)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self, include_attempts: bool = False) -> Dict[str, Any]:
        if self.ok:
            payload: Dict[str, Any] = dict(self.metadata.to_dict())
            payload["Transcript"] = self.transcript
        else:
            payload = {"error": self.error}
        if include_attempts:
            payload["attempts"] = self.attempts
        return payload
