"""
Call metadata extraction.

Metadata is resolved through one priority chain:

1. the serialized JSON attribute on the page's root data node,
2. a call/video_url JSON fragment inside an inline <script>,
3. heuristic scraping of visible DOM text.

The extractor never fails outright; each field falls back to its sentinel.
"""

import json
import math
import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from browser_session import BrowserSession
from extraction_config import ExtractionConfig
from log_events import evt
from logging_setup import get_logger
from models import NO_TITLE, UNKNOWN_PARTY, CallMetadata, format_duration

logger = get_logger(__name__)

__all__ = [
    "MetadataExtractor",
    "sanitize_json_blob",
    "parse_embedded_json",
    "find_call_payload_in_script",
    "find_date",
    "parse_call_date",
    "parse_duration_seconds",
    "format_duration",
    "metadata_from_payload",
    "metadata_from_dom_hints",
]

# Known locations of the call record and its duration inside the embedded payload
CALL_RECORD_PATHS = ("props.call", "call", "data.call", "props.data.call", "props.recording.call")
DURATION_PATHS = ("props.duration", "duration", "props.call.duration", "call.duration",
                  "call.duration_seconds", "call.duration_in_seconds")

TITLE_KEYS = ("title", "name", "topic")
DATE_KEYS = ("started_at", "start_time", "recording_start_time", "scheduled_start_time",
             "created_at", "date")
HOST_KEYS = ("host", "recorded_by", "owner", "user")
PARTICIPANT_KEYS = ("invitees", "participants", "attendees", "speakers")
LINK_KEYS = ("share_url", "video_url", "url", "permalink")

PARTICIPANT_SELECTORS = [
    '[class*="participant" i]',
    '[class*="attendee" i]',
    '[class*="speaker-name" i]',
    '[class*="invitee" i]',
    '[data-testid*="participant" i]',
]

MONTHS = {
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6,
    "july": 7, "august": 8, "september": 9, "october": 10, "november": 11, "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "jun": 6, "jul": 7, "aug": 8,
    "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
}

_CONTROL_CHARS = re.compile(r"[\x00-\x1f]")
_ISO_DATE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})")
_MONTH_DAY_YEAR = re.compile(r"\b([A-Za-z]{3,9})\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})\b")
_DAY_MONTH_YEAR = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th)?\s+([A-Za-z]{3,9})\.?,?\s+(\d{4})\b")
_US_NUMERIC_DATE = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b")
_CLOCK_DURATION = re.compile(r"^\s*(?:(\d+):)?(\d+):([0-5]\d)\s*$")
_CLOCK_IN_TEXT = re.compile(r"\b(?:\d+:)?\d{1,2}:[0-5]\d\b")

_DOM_HINTS_SCRIPT = """
(participantSelector) => {
    const text = (el) => ((el && (el.innerText || el.textContent)) || '').trim();
    const pick = (selector) => Array.from(document.querySelectorAll(selector)).map(text).filter(Boolean);
    return {
        headings: pick('h1').concat(pick('h2'), pick('[class*="title" i]')),
        documentTitle: document.title || '',
        datetimes: Array.from(document.querySelectorAll('time[datetime], [datetime]'))
            .map((el) => el.getAttribute('datetime')).filter(Boolean),
        dateTexts: pick('time, [class*="date" i]'),
        participants: pick(participantSelector),
        durations: pick('[class*="duration" i], [data-testid*="duration" i]'),
        bodyText: ((document.body && document.body.innerText) || '').slice(0, 20000),
    };
}
"""


# --- Parsing helpers ---

def sanitize_json_blob(raw: str) -> str:
    """Strip code points below 0x20, which corrupt JSON parsing of embedded blobs."""
    return _CONTROL_CHARS.sub("", raw or "")


def parse_embedded_json(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    """Sanitize and parse an embedded JSON object; None when absent or malformed."""
    if not raw:
        return None
    try:
        data = json.loads(sanitize_json_blob(raw))
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _dig(data: Any, path: str) -> Any:
    current = data
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def _search_call_record(data: Any, require_video_url: bool = False, depth: int = 0) -> Optional[Dict[str, Any]]:
    """Depth-first search for a dict stored under a "call" key."""
    if depth > 12:
        return None
    if isinstance(data, dict):
        call = data.get("call")
        if isinstance(call, dict) and (not require_video_url or "video_url" in call):
            return call
        children = data.values()
    elif isinstance(data, list):
        children = data
    else:
        return None
    for child in children:
        found = _search_call_record(child, require_video_url, depth + 1)
        if found is not None:
            return found
    return None


def find_call_payload_in_script(text: str) -> Optional[Dict[str, Any]]:
    """
    Return the first JSON object in `text` that holds a "call" record with a
    "video_url" field, at any depth. Script text is JavaScript, so decoding is
    attempted at every opening brace until one parses.
    """
    if not text or '"call"' not in text or '"video_url"' not in text:
        return None

    decoder = json.JSONDecoder()
    cleaned = sanitize_json_blob(text)
    position = cleaned.find("{")
    while position != -1:
        try:
            candidate, end = decoder.raw_decode(cleaned, position)
        except ValueError:
            position = cleaned.find("{", position + 1)
            continue
        if isinstance(candidate, dict) and _search_call_record(candidate, require_video_url=True) is not None:
            return candidate
        # Nested objects of a decoded non-match cannot match either
        position = cleaned.find("{", end)
    return None


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def find_date(text: Any) -> Optional[date]:
    """Find the first calendar date in `text`; None when nothing date-shaped parses."""
    if isinstance(text, datetime):
        return text.date()
    if isinstance(text, date):
        return text
    if not isinstance(text, str) or not text.strip():
        return None

    match = _ISO_DATE.search(text)
    if match:
        found = _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if found:
            return found

    for match in _MONTH_DAY_YEAR.finditer(text):
        month = MONTHS.get(match.group(1).lower())
        if month:
            found = _safe_date(int(match.group(3)), month, int(match.group(2)))
            if found:
                return found

    for match in _DAY_MONTH_YEAR.finditer(text):
        month = MONTHS.get(match.group(2).lower())
        if month:
            found = _safe_date(int(match.group(3)), month, int(match.group(1)))
            if found:
                return found

    match = _US_NUMERIC_DATE.search(text)
    if match:
        return _safe_date(int(match.group(3)), int(match.group(1)), int(match.group(2)))

    return None


def parse_call_date(value: Any, today: Optional[date] = None) -> str:
    """Parse a call date into ISO form, defaulting to today when unparseable."""
    found = find_date(value)
    if found is None:
        found = today or date.today()
    return found.isoformat()


def parse_duration_seconds(value: Any) -> int:
    """Total seconds from "mm:ss", "hh:mm:ss" or a number of seconds; 0 otherwise."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, str):
        match = _CLOCK_DURATION.match(value)
        if match:
            hours = int(match.group(1) or 0)
            return hours * 3600 + int(match.group(2)) * 60 + int(match.group(3))
        try:
            value = float(value.strip())
        except ValueError:
            return 0
    if not isinstance(value, (int, float)):
        return 0
    # json.loads yields inf for 1e400 and accepts NaN
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return max(int(round(value)), 0)


def _first_text(record: Dict[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _person_name(person: Any) -> Optional[str]:
    if isinstance(person, str):
        return person.strip() or None
    if isinstance(person, dict):
        return _first_text(person, ("name", "display_name", "full_name", "email"))
    return None


def _salesperson(call: Dict[str, Any]) -> Optional[str]:
    for key in HOST_KEYS:
        name = _person_name(call.get(key))
        if name:
            return name
    return _first_text(call, ("host_name", "recorded_by_name"))


def _prospect(call: Dict[str, Any], salesperson: Optional[str]) -> Optional[str]:
    candidates: List[Any] = []
    for key in PARTICIPANT_KEYS:
        value = call.get(key)
        if isinstance(value, list):
            candidates.extend(value)

    # External attendees first, then anyone who is not the host
    external = [c for c in candidates if isinstance(c, dict) and c.get("is_external")]
    for person in external + candidates:
        name = _person_name(person)
        if name and name != salesperson:
            return name
    return _first_text(call, ("prospect_name", "customer_name", "company_name"))


def metadata_from_payload(payload: Dict[str, Any], page_url: str = "",
                          today: Optional[date] = None) -> Optional[CallMetadata]:
    """Map an embedded payload to CallMetadata; None when it carries no call record."""
    call = None
    for path in CALL_RECORD_PATHS:
        candidate = _dig(payload, path)
        if isinstance(candidate, dict):
            call = candidate
            break
    if call is None:
        call = _search_call_record(payload)
    if call is None:
        return None

    duration = None
    for path in DURATION_PATHS:
        duration = _dig(payload, path)
        if duration is not None:
            break
    if duration is None:
        duration = call.get("duration") or call.get("duration_seconds")

    salesperson = _salesperson(call)
    date_value = None
    for key in DATE_KEYS:
        if call.get(key):
            date_value = call[key]
            break

    return CallMetadata(
        call_date=parse_call_date(date_value, today=today),
        salesperson_name=salesperson or UNKNOWN_PARTY,
        prospect_name=_prospect(call, salesperson) or UNKNOWN_PARTY,
        duration_seconds=parse_duration_seconds(duration),
        transcript_link=_first_text(call, LINK_KEYS) or page_url,
        title=_first_text(call, TITLE_KEYS) or NO_TITLE,
    )


def metadata_from_dom_hints(hints: Dict[str, Any], page_url: str = "",
                            today: Optional[date] = None) -> CallMetadata:
    """Derive metadata from visible page text collected by the DOM walker."""
    hints = hints or {}

    title = next((h.splitlines()[0].strip() for h in hints.get("headings") or [] if h and h.strip()), None)
    title = title or (hints.get("documentTitle") or "").strip() or NO_TITLE

    call_date = None
    for source in ("datetimes", "dateTexts"):
        for value in hints.get(source) or []:
            call_date = find_date(value)
            if call_date:
                break
        if call_date:
            break
    if call_date is None:
        call_date = find_date(hints.get("bodyText") or "")

    parties: List[str] = []
    for value in hints.get("participants") or []:
        name = value.strip().splitlines()[0].strip() if value and value.strip() else ""
        if name and name not in parties:
            parties.append(name)
        if len(parties) == 2:
            break

    duration = 0
    for value in hints.get("durations") or []:
        match = _CLOCK_IN_TEXT.search(value or "")
        if match:
            duration = parse_duration_seconds(match.group(0))
            break

    return CallMetadata(
        call_date=(call_date or today or date.today()).isoformat(),
        salesperson_name=parties[0] if parties else UNKNOWN_PARTY,
        prospect_name=parties[1] if len(parties) > 1 else UNKNOWN_PARTY,
        duration_seconds=duration,
        transcript_link=page_url,
        title=title,
    )


# --- Page strategies ---

class MetadataExtractor:
    """Resolves CallMetadata from a loaded call page."""

    def __init__(self, config: Optional[ExtractionConfig] = None):
        self.config = config or ExtractionConfig()

    async def extract(self, session: BrowserSession, page_url: Optional[str] = None) -> CallMetadata:
        """
        Run the strategy chain and return the first metadata found.

        Strict parsers come first, the heuristic DOM walk last; the walk always
        produces a complete record, defaults included.
        """
        page_url = page_url or session.page.url
        strategies = [
            ("root_data_attribute", self._from_root_attribute),
            ("inline_script", self._from_inline_scripts),
        ]

        for name, strategy in strategies:
            try:
                metadata = await strategy(session, page_url)
            except Exception as e:
                evt("metadata_strategy_result", strategy=name, outcome="error",
                    detail=str(e)[:200])
                continue
            if metadata is not None:
                evt("metadata_strategy_result", strategy=name, outcome="found")
                return metadata
            evt("metadata_strategy_result", strategy=name, outcome="empty")

        try:
            metadata = await self._from_dom_heuristics(session, page_url)
            evt("metadata_strategy_result", strategy="dom_heuristics", outcome="found")
            return metadata
        except Exception as e:
            logger.warning("metadata: DOM heuristics failed, using defaults")
            evt("metadata_strategy_result", strategy="dom_heuristics", outcome="error",
                detail=str(e)[:200])
            return CallMetadata(transcript_link=page_url)

    async def _from_root_attribute(self, session: BrowserSession, page_url: str) -> Optional[CallMetadata]:
        node = await session.page.query_selector(self.config.data_root_selector)
        if node is None:
            return None
        raw = await node.get_attribute(self.config.data_root_attribute)
        payload = parse_embedded_json(raw)
        if payload is None:
            if raw:
                evt("metadata_root_blob_unparseable", length=len(raw))
            return None
        return metadata_from_payload(payload, page_url)

    async def _from_inline_scripts(self, session: BrowserSession, page_url: str) -> Optional[CallMetadata]:
        scripts = await session.page.eval_on_selector_all(
            "script:not([src])", "(els) => els.map((el) => el.textContent || '')")
        for text in scripts or []:
            payload = find_call_payload_in_script(text)
            if payload is not None:
                return metadata_from_payload(payload, page_url)
        return None

    async def _from_dom_heuristics(self, session: BrowserSession, page_url: str) -> CallMetadata:
        hints = await session.page.evaluate(_DOM_HINTS_SCRIPT, ", ".join(PARTICIPANT_SELECTORS))
        return metadata_from_dom_hints(hints, page_url)
