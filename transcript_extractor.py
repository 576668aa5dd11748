"""
Transcript extraction from the call page.

Steps: wait for the transcript container, try to reveal hidden transcript
content, harvest text through an ordered cascade of strategies, then clean
the candidate lines. An empty harvest is reported with a sentinel string,
not an error.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple, Union

from playwright.async_api import ElementHandle
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from browser_session import BrowserSession
from extraction_config import DEFAULT_NOISE_PHRASES, ExtractionConfig
from extraction_errors import ElementReadTimeoutError, TranscriptContainerNotFoundError
from log_events import evt
from logging_setup import get_logger
from models import NO_TRANSCRIPT

logger = get_logger(__name__)

# Controls that reveal a collapsed transcript, in priority order
REVEAL_CONTROL_SELECTORS = [
    'button:has-text("transcript")',
    'button:has-text("show transcript")',
    '[aria-label*="transcript" i]',
    '[role="button"][aria-label*="captions" i]',
]

# Selector strategies scoped to the transcript container, most specific first
LINE_SELECTOR_STRATEGIES = [
    ("transcript_line", 'div[class*="transcript-line"]'),
    ("transcript_text", 'div[class*="transcript-text"]'),
]

# Text owned by each div, excluding text inside nested divs, in document order
_DIV_OWN_TEXT_SCRIPT = """
(divs) => divs.map((div) => {
    const walker = document.createTreeWalker(div, NodeFilter.SHOW_TEXT);
    const parts = [];
    while (walker.nextNode()) {
        const parent = walker.currentNode.parentElement;
        if (!parent || parent.closest('div') !== div) continue;
        if (parent.tagName === 'SCRIPT' || parent.tagName === 'STYLE') continue;
        parts.push(walker.currentNode.nodeValue || '');
    }
    return parts.join(' ').replace(/\\s+/g, ' ');
})
"""

_TEXT_NODE_WALK_SCRIPT = """
(selector) => {
    const root = document.querySelector(selector);
    if (!root) return [];
    const walker = document.createTreeWalker(root, NodeFilter.SHOW_TEXT);
    const texts = [];
    while (walker.nextNode()) {
        const parent = walker.currentNode.parentElement;
        if (parent && (parent.tagName === 'SCRIPT' || parent.tagName === 'STYLE')) continue;
        texts.push(walker.currentNode.nodeValue || '');
    }
    return texts;
}
"""


@dataclass(frozen=True)
class Found:
    """A strategy produced at least one cleaned line."""
    lines: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Empty:
    """A strategy produced nothing usable."""
    reason: str = ""


StrategyResult = Union[Found, Empty]
Strategy = Callable[[BrowserSession], Awaitable[StrategyResult]]


def clean_transcript_lines(candidates: Iterable[Optional[str]],
                           noise_phrases: Iterable[str] = DEFAULT_NOISE_PHRASES) -> List[str]:
    """
    Trim candidates and drop empties, bracket-prefixed markers, UI noise and
    exact duplicates. Survivors keep their first-seen order; deduplication is
    global across the whole harvest, not just adjacent lines.
    """
    noise = {phrase.strip().lower() for phrase in noise_phrases}
    seen = set()
    lines = []
    for candidate in candidates:
        text = (candidate or "").strip()
        if not text or text.startswith("["):
            continue
        if text.lower() in noise or text in seen:
            continue
        seen.add(text)
        lines.append(text)
    return lines


class TranscriptExtractor:
    """Harvests transcript text from a loaded call page."""

    def __init__(self, config: Optional[ExtractionConfig] = None):
        self.config = config or ExtractionConfig()

    @property
    def container(self) -> str:
        return self.config.transcript_container_selector

    async def extract(self, session: BrowserSession) -> str:
        """
        Return transcript lines joined by newlines, or the "No transcript
        found." sentinel when every strategy comes up empty.

        Raises:
            TranscriptContainerNotFoundError: the container never attached (retryable)
            ElementReadTimeoutError: an element read hung (retryable)
        """
        await self.wait_for_container(session)
        await self.reveal_transcript(session)

        if self.config.settle_pause_ms > 0:
            await session.page.wait_for_timeout(self.config.settle_pause_ms)

        lines = await self.harvest(session)
        if not lines:
            logger.warning("transcript: no lines survived cleaning")
            return NO_TRANSCRIPT
        return "\n".join(lines)

    async def wait_for_container(self, session: BrowserSession) -> None:
        timeout_ms = self.config.container_timeout_ms
        try:
            await session.page.wait_for_selector(self.container, state="attached", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise TranscriptContainerNotFoundError(
                f"Transcript container '{self.container}' not attached within {timeout_ms}ms") from e
        evt("transcript_container_found", selector=self.container)

    async def reveal_transcript(self, session: BrowserSession) -> bool:
        """
        Click the first transcript-revealing control that exists. Many pages
        show the transcript unprompted, so finding no control is not an error.
        """
        page = session.page
        for selector in REVEAL_CONTROL_SELECTORS:
            try:
                control = await page.query_selector(selector)
            except PlaywrightError as e:
                evt("transcript_reveal_selector_failed", selector=selector, detail=str(e)[:100])
                continue
            if control is None:
                continue

            try:
                await control.click(timeout=self.config.element_read_timeout_ms)
            except PlaywrightError as e:
                evt("transcript_reveal_click_failed", selector=selector, detail=str(e)[:100])
                continue

            if self.config.reveal_pause_ms > 0:
                await page.wait_for_timeout(self.config.reveal_pause_ms)
            logger.info(f"transcript: clicked reveal control ([{selector}])")
            evt("transcript_reveal_clicked", selector=selector)
            return True

        evt("transcript_reveal_not_found")
        return False

    def strategies(self) -> List[Tuple[str, Strategy]]:
        """The ordered cascade: targeted selectors, then the generic text-node walk."""
        cascade: List[Tuple[str, Strategy]] = [
            (name, self._selector_strategy(selector)) for name, selector in LINE_SELECTOR_STRATEGIES
        ]
        cascade.append(("div_own_text", self._div_own_text))
        cascade.append(("text_node_walk", self._text_node_walk))
        return cascade

    async def harvest(self, session: BrowserSession) -> List[str]:
        for name, strategy in self.strategies():
            result = await strategy(session)
            if isinstance(result, Found):
                evt("transcript_strategy_result", strategy=name, outcome="found",
                    line_count=len(result.lines))
                return result.lines
            evt("transcript_strategy_result", strategy=name, outcome="empty",
                detail=result.reason)
        return []

    def _selector_strategy(self, selector: str) -> Strategy:
        scoped = f"{self.container} {selector}"

        async def run(session: BrowserSession) -> StrategyResult:
            elements = await session.page.query_selector_all(scoped)
            if not elements:
                return Empty(f"no elements for {scoped}")
            texts = [await self.read_element_text(element) for element in elements]
            lines = clean_transcript_lines(texts, self.config.noise_phrases)
            if not lines:
                return Empty(f"{len(elements)} elements, no usable text")
            return Found(lines)

        return run

    async def _div_own_text(self, session: BrowserSession) -> StrategyResult:
        """Every div under the container, each contributing only its own text."""
        texts = await session.page.eval_on_selector_all(f"{self.container} div", _DIV_OWN_TEXT_SCRIPT)
        lines = clean_transcript_lines(texts or [], self.config.noise_phrases)
        return Found(lines) if lines else Empty("no div text under container")

    async def _text_node_walk(self, session: BrowserSession) -> StrategyResult:
        texts = await session.page.evaluate(_TEXT_NODE_WALK_SCRIPT, self.container)
        lines = clean_transcript_lines(texts or [], self.config.noise_phrases)
        return Found(lines) if lines else Empty("no text nodes under container")

    async def read_element_text(self, element: ElementHandle) -> str:
        """
        Read an element's text. Layout-based inner text is only used for
        visible elements; hidden or virtualized ones are read from raw text
        content. A detached element reads as empty.
        """
        timeout = self.config.element_read_timeout_ms / 1000
        try:
            if await asyncio.wait_for(element.is_visible(), timeout):
                try:
                    return await asyncio.wait_for(element.inner_text(), timeout) or ""
                except PlaywrightError:
                    pass
            return await asyncio.wait_for(element.text_content(), timeout) or ""
        except asyncio.TimeoutError as e:
            raise ElementReadTimeoutError(
                f"Reading transcript element exceeded {self.config.element_read_timeout_ms}ms") from e
        except PlaywrightError as e:
            evt("transcript_element_read_failed", detail=str(e)[:100])
            return ""
