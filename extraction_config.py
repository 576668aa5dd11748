#!/usr/bin/env python3
"""
Configuration for the call extraction engine.

An ExtractionConfig value is built once (defaults, environment, or explicit
overrides) and handed to the extraction service at construction. Nothing in
the engine reads module-level timeout constants.
"""

import os
import re
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Optional, Tuple

from logging_setup import get_logger

logger = get_logger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/127.0.0.0 Safari/537.36"
)

# Chromium flags for a low-memory, non-interactive container run
DEFAULT_BROWSER_ARGS = (
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-extensions",
    "--disable-background-networking",
    "--mute-audio",
    "--no-first-run",
)

DEFAULT_NOISE_PHRASES = ("resume auto-scroll",)


@dataclass(frozen=True)
class ExtractionConfig:
    """Timeouts, retry policy and page selectors for one extraction engine."""

    # Timeouts (milliseconds)
    navigation_timeout_ms: int = 60000
    page_load_timeout_ms: int = 60000
    container_timeout_ms: int = 60000
    element_read_timeout_ms: int = 5000

    # Pauses (milliseconds)
    reveal_pause_ms: int = 2000
    settle_pause_ms: int = 5000

    # Retry policy
    max_attempts: int = 3
    retry_delay_seconds: float = 5.0

    # Browser
    headless: bool = True
    natural_viewport: bool = False
    viewport_width: int = 1920
    viewport_height: int = 1080
    user_agent: str = DEFAULT_USER_AGENT
    locale: str = "en-US"
    browser_args: Tuple[str, ...] = DEFAULT_BROWSER_ARGS
    max_concurrent_sessions: int = 2

    # Page shape
    expected_url_pattern: Optional[str] = None
    data_root_selector: str = "#app[data-page]"
    data_root_attribute: str = "data-page"
    transcript_container_selector: str = "page-call-detail-transcript"
    noise_phrases: Tuple[str, ...] = field(default=DEFAULT_NOISE_PHRASES)

    @classmethod
    def from_env(cls) -> 'ExtractionConfig':
        """Load configuration from EXTRACTOR_* environment variables with validation."""
        try:
            defaults = cls()
            config = cls(
                navigation_timeout_ms=cls._parse_int_env("EXTRACTOR_NAVIGATION_TIMEOUT_MS", defaults.navigation_timeout_ms, min_val=5000, max_val=300000),
                page_load_timeout_ms=cls._parse_int_env("EXTRACTOR_PAGE_LOAD_TIMEOUT_MS", defaults.page_load_timeout_ms, min_val=5000, max_val=300000),
                container_timeout_ms=cls._parse_int_env("EXTRACTOR_CONTAINER_TIMEOUT_MS", defaults.container_timeout_ms, min_val=1000, max_val=300000),
                element_read_timeout_ms=cls._parse_int_env("EXTRACTOR_ELEMENT_READ_TIMEOUT_MS", defaults.element_read_timeout_ms, min_val=500, max_val=60000),
                reveal_pause_ms=cls._parse_int_env("EXTRACTOR_REVEAL_PAUSE_MS", defaults.reveal_pause_ms, min_val=0, max_val=30000),
                settle_pause_ms=cls._parse_int_env("EXTRACTOR_SETTLE_PAUSE_MS", defaults.settle_pause_ms, min_val=0, max_val=60000),
                max_attempts=cls._parse_int_env("EXTRACTOR_MAX_ATTEMPTS", defaults.max_attempts, min_val=1, max_val=10),
                retry_delay_seconds=cls._parse_float_env("EXTRACTOR_RETRY_DELAY_SECONDS", defaults.retry_delay_seconds, min_val=0.0, max_val=120.0),
                headless=cls._parse_bool_env("EXTRACTOR_HEADLESS", defaults.headless),
                natural_viewport=cls._parse_bool_env("EXTRACTOR_NATURAL_VIEWPORT", defaults.natural_viewport),
                viewport_width=cls._parse_int_env("EXTRACTOR_VIEWPORT_WIDTH", defaults.viewport_width, min_val=320, max_val=3840),
                viewport_height=cls._parse_int_env("EXTRACTOR_VIEWPORT_HEIGHT", defaults.viewport_height, min_val=240, max_val=2160),
                user_agent=os.getenv("EXTRACTOR_USER_AGENT") or defaults.user_agent,
                max_concurrent_sessions=cls._parse_int_env("EXTRACTOR_MAX_CONCURRENT_SESSIONS", defaults.max_concurrent_sessions, min_val=1, max_val=16),
                expected_url_pattern=cls._parse_pattern_env("EXTRACTOR_EXPECTED_URL_PATTERN"),
                data_root_selector=os.getenv("EXTRACTOR_DATA_ROOT_SELECTOR") or defaults.data_root_selector,
                data_root_attribute=os.getenv("EXTRACTOR_DATA_ROOT_ATTRIBUTE") or defaults.data_root_attribute,
                transcript_container_selector=os.getenv("EXTRACTOR_TRANSCRIPT_CONTAINER") or defaults.transcript_container_selector,
                noise_phrases=cls._parse_list_env("EXTRACTOR_NOISE_PHRASES", defaults.noise_phrases),
            )

            config._validate_config()
            config._log_config()
            return config

        except Exception as e:
            logger.error(f"Failed to load extraction configuration: {e}")
            logger.warning("Using default extraction configuration")
            return cls()

    def with_overrides(self, **overrides) -> 'ExtractionConfig':
        """Return a copy with the given non-None fields replaced."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes) if changes else self

    @staticmethod
    def _parse_bool_env(env_var: str, default: bool) -> bool:
        value = os.getenv(env_var)
        if value is None:
            return default
        return value.strip().lower() in ("1", "true", "yes", "on")

    @staticmethod
    def _parse_int_env(env_var: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
        raw = os.getenv(env_var)
        if raw is None:
            return default
        try:
            value = int(raw)
        except (ValueError, TypeError):
            logger.error(f"Invalid value for {env_var}: {raw}, using default {default}")
            return default
        return ExtractionConfig._clamp(env_var, value, min_val, max_val)

    @staticmethod
    def _parse_float_env(env_var: str, default: float, min_val: Optional[float] = None, max_val: Optional[float] = None) -> float:
        raw = os.getenv(env_var)
        if raw is None:
            return default
        try:
            value = float(raw)
        except (ValueError, TypeError):
            logger.error(f"Invalid value for {env_var}: {raw}, using default {default}")
            return default
        return ExtractionConfig._clamp(env_var, value, min_val, max_val)

    @staticmethod
    def _clamp(env_var, value, min_val, max_val):
        if min_val is not None and value < min_val:
            logger.warning(f"{env_var}={value} is below minimum {min_val}, using {min_val}")
            return min_val
        if max_val is not None and value > max_val:
            logger.warning(f"{env_var}={value} is above maximum {max_val}, using {max_val}")
            return max_val
        return value

    @staticmethod
    def _parse_pattern_env(env_var: str) -> Optional[str]:
        raw = os.getenv(env_var)
        if not raw:
            return None
        try:
            re.compile(raw)
        except re.error as e:
            logger.error(f"Invalid regex for {env_var}: {e}, ignoring")
            return None
        return raw

    @staticmethod
    def _parse_list_env(env_var: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
        raw = os.getenv(env_var)
        if raw is None:
            return default
        return tuple(item.strip() for item in raw.split("|") if item.strip())

    def _validate_config(self) -> None:
        """Log warnings for problematic combinations."""
        warnings = []

        if self.element_read_timeout_ms > self.container_timeout_ms:
            warnings.append(f"Element read timeout ({self.element_read_timeout_ms}ms) exceeds container timeout ({self.container_timeout_ms}ms)")

        if self.max_attempts > 1 and self.retry_delay_seconds == 0:
            warnings.append("Retries enabled with zero delay - attempts will hit the page back to back")

        if not self.headless:
            warnings.append("Headless mode disabled - a display is required")

        for warning in warnings:
            logger.warning(f"Configuration warning: {warning}")

    def _log_config(self) -> None:
        logger.info("Extraction configuration loaded:")
        logger.info(f"  Timeouts: navigation={self.navigation_timeout_ms}ms, page_load={self.page_load_timeout_ms}ms, container={self.container_timeout_ms}ms, element_read={self.element_read_timeout_ms}ms")
        logger.info(f"  Retries: max_attempts={self.max_attempts}, delay={self.retry_delay_seconds}s")
        logger.info(f"  Browser: headless={self.headless}, natural_viewport={self.natural_viewport}, sessions={self.max_concurrent_sessions}")

    def viewport(self) -> Optional[Dict[str, int]]:
        """Viewport for new browser contexts; None lets the page size naturally."""
        if self.natural_viewport:
            return None
        return {"width": self.viewport_width, "height": self.viewport_height}

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a dictionary for diagnostics."""
        data = asdict(self)
        return {
            "timeouts": {
                "navigation_timeout_ms": data["navigation_timeout_ms"],
                "page_load_timeout_ms": data["page_load_timeout_ms"],
                "container_timeout_ms": data["container_timeout_ms"],
                "element_read_timeout_ms": data["element_read_timeout_ms"],
            },
            "pauses": {
                "reveal_pause_ms": data["reveal_pause_ms"],
                "settle_pause_ms": data["settle_pause_ms"],
            },
            "retries": {
                "max_attempts": data["max_attempts"],
                "retry_delay_seconds": data["retry_delay_seconds"],
            },
            "browser": {
                "headless": data["headless"],
                "viewport": self.viewport(),
                "max_concurrent_sessions": data["max_concurrent_sessions"],
            },
            "page": {
                "expected_url_pattern": data["expected_url_pattern"],
                "data_root_selector": data["data_root_selector"],
                "transcript_container_selector": data["transcript_container_selector"],
                "noise_phrases": list(data["noise_phrases"]),
            },
        }
