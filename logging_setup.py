"""
Core logging infrastructure for the call extraction engine.

Provides single-line JSON logging with per-extraction context, rate limiting,
and third-party library noise suppression.
"""

import contextvars
import json
import logging
import threading
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Optional, Set


# Context for request correlation. A ContextVar (not a thread-local) because
# concurrent extractions share one thread and interleave on the event loop.
_extraction_ctx: contextvars.ContextVar = contextvars.ContextVar("extraction_ctx", default=None)

CONTEXT_FIELDS = ('request_id', 'url')
EVENT_FIELDS = ('stage', 'event', 'outcome', 'dur_ms', 'detail')
OPTIONAL_FIELDS = ('attempt', 'max_attempts', 'strategy', 'selector')

_STANDARD_RECORD_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'exc_info', 'exc_text',
    'stack_info', 'taskName', 'message', 'asctime',
}


def set_extraction_ctx(request_id: str = None, url: str = None):
    """
    Set correlation context for the current extraction.

    Args:
        request_id: Unique identifier of the extraction request
        url: Call page URL being extracted
    """
    context = dict(_extraction_ctx.get() or {})
    if request_id is not None:
        context['request_id'] = request_id
    if url is not None:
        context['url'] = url
    _extraction_ctx.set(context)


def clear_extraction_ctx():
    """Clear the correlation context of the current extraction."""
    _extraction_ctx.set({})


def get_extraction_ctx() -> Dict[str, str]:
    """Get a copy of the current correlation context."""
    return dict(_extraction_ctx.get() or {})


class JsonFormatter(logging.Formatter):
    """
    JSON formatter with standardized field order and context injection.

    Produces single-line JSON with stable schema:
    ts, lvl, request_id, url, stage, event, outcome, dur_ms, detail, attempt, ...
    """

    def format(self, record: logging.LogRecord) -> str:
        try:
            dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
            timestamp = dt.strftime('%Y-%m-%dT%H:%M:%S') + f'.{int(dt.microsecond / 1000):03d}Z'

            log_data = {
                'ts': timestamp,
                'lvl': record.levelname
            }

            context = get_extraction_ctx()
            for field in CONTEXT_FIELDS:
                value = getattr(record, field, None)
                if value is None:
                    value = context.get(field)
                if value is not None:
                    log_data[field] = value

            for field in EVENT_FIELDS + OPTIONAL_FIELDS:
                value = getattr(record, field, None)
                if value is not None:
                    log_data[field] = value

            # Anything else passed through logger.info(..., extra={...})
            known = _STANDARD_RECORD_ATTRS.union(CONTEXT_FIELDS, EVENT_FIELDS, OPTIONAL_FIELDS)
            for attr_name, attr_value in vars(record).items():
                if attr_name.startswith('_') or attr_name in known or attr_value is None:
                    continue
                log_data[attr_name] = attr_value

            if 'detail' not in log_data and record.getMessage():
                log_data['detail'] = record.getMessage()

            if record.exc_info and record.levelno >= logging.ERROR:
                log_data['exc'] = self.formatException(record.exc_info)

            return json.dumps(log_data, separators=(',', ':'), ensure_ascii=False, default=str)

        except Exception:
            now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            detail = str(record.msg).replace('\\', '\\\\').replace('"', '\\"').replace('\n', ' ')
            return f'{{"ts":"{now}","lvl":"{record.levelname}","detail":"{detail}"}}'


class RateLimitFilter(logging.Filter):
    """
    Rate limiting filter to prevent log spam.

    Allows `per_key` messages per key within a sliding `window_sec` window and
    marks the first dropped message with a suppression suffix.
    """

    def __init__(self, per_key: int = 5, window_sec: int = 60):
        super().__init__()
        self.per_key = per_key
        self.window_sec = window_sec
        self.seen: Dict[str, list] = defaultdict(list)
        self.suppressed: Set[str] = set()
        self._lock = threading.Lock()

    def _key(self, record: logging.LogRecord) -> str:
        event = getattr(record, 'event', None)
        if event:
            # Structured events are keyed by name and stage, not by empty message
            return f"{record.levelname}:{event}:{getattr(record, 'stage', '')}:{getattr(record, 'outcome', '')}"
        return f"{record.levelname}:{record.getMessage()[:100]}"

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            key = self._key(record)
            now = time.time()

            with self._lock:
                cutoff = now - self.window_sec
                self.seen[key] = [ts for ts in self.seen[key] if ts > cutoff]

                if len(self.seen[key]) < self.per_key:
                    self.seen[key].append(now)
                    self.suppressed.discard(key)
                    return True

                if key not in self.suppressed:
                    self.suppressed.add(key)
                    record.msg = f"{record.getMessage()} [suppressed]"
                    record.args = ()
                    return True

                return False

        except Exception:
            return True


def configure_logging(log_level: str = "INFO", use_json: bool = True,
                      rate_limit: bool = True) -> logging.Logger:
    """
    Configure application logging with JSON formatting and noise suppression.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        use_json: Whether to use JSON formatting (True) or basic formatting (False)
        rate_limit: Whether to attach the rate limiting filter to JSON output

    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(getattr(logging, str(log_level).upper(), logging.INFO))

    handler = logging.StreamHandler()
    if use_json:
        handler.setFormatter(JsonFormatter())
        if rate_limit:
            handler.addFilter(RateLimitFilter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    root_logger.addHandler(handler)
    _suppress_library_noise()
    return root_logger


def _suppress_library_noise():
    """Suppress verbose logging from third-party libraries."""
    for library in ('playwright', 'asyncio', 'urllib3', 'tenacity'):
        logging.getLogger(library).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
