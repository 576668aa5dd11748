#!/usr/bin/env python3
"""
Tests for transcript cleaning, the reveal step and the harvesting cascade.
"""

import asyncio
import os
import sys
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from browser_session import BrowserSession
from extraction_config import ExtractionConfig
from extraction_errors import ElementReadTimeoutError, TranscriptContainerNotFoundError
from models import NO_TRANSCRIPT
from transcript_extractor import (
    REVEAL_CONTROL_SELECTORS, Empty, Found, TranscriptExtractor, clean_transcript_lines
)

CONTAINER = "page-call-detail-transcript"


def make_element(text, visible=True):
    element = MagicMock()
    element.is_visible = AsyncMock(return_value=visible)
    element.inner_text = AsyncMock(return_value=text)
    element.text_content = AsyncMock(return_value=text)
    return element


def make_session(elements_by_selector=None, walk_texts=None, reveal=None, div_texts=None):
    """Fake page; `reveal` maps a reveal selector to its control."""
    elements_by_selector = elements_by_selector or {}
    reveal = reveal or {}
    page = MagicMock()
    page.wait_for_selector = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.query_selector = AsyncMock(side_effect=lambda selector: reveal.get(selector))
    page.query_selector_all = AsyncMock(
        side_effect=lambda selector: elements_by_selector.get(selector, []))
    page.eval_on_selector_all = AsyncMock(return_value=div_texts or [])
    page.evaluate = AsyncMock(return_value=walk_texts or [])
    return BrowserSession(page=page)


class TestCleanTranscriptLines(unittest.TestCase):

    def test_filtering_example(self):
        candidates = ["Hello", "", "  ", "[00:01]", "Hello", "resume auto-scroll", "World"]
        self.assertEqual(clean_transcript_lines(candidates), ["Hello", "World"])

    def test_noise_is_case_insensitive(self):
        self.assertEqual(clean_transcript_lines(["Resume Auto-Scroll", "Hi"]), ["Hi"])

    def test_dedup_is_global_and_keeps_first_order(self):
        lines = clean_transcript_lines(["A", "B", "A", "C", "B"])
        self.assertEqual(lines, ["A", "B", "C"])

    def test_trims_and_handles_none(self):
        self.assertEqual(clean_transcript_lines(["  Hi there  ", None]), ["Hi there"])

    def test_custom_noise(self):
        self.assertEqual(clean_transcript_lines(["Jump to live", "Hi"], noise_phrases=("jump to live",)), ["Hi"])

    def test_cleaning_is_idempotent(self):
        once = clean_transcript_lines(["b", "a", "b", "[x]", " c "])
        self.assertEqual(clean_transcript_lines(once), once)


class TestTranscriptExtractor(unittest.TestCase):

    def setUp(self):
        self.config = ExtractionConfig(container_timeout_ms=1000, element_read_timeout_ms=500,
                                       reveal_pause_ms=2000, settle_pause_ms=5000)
        self.extractor = TranscriptExtractor(self.config)

    @patch('transcript_extractor.evt')
    def test_first_strategy_wins(self, mock_evt):
        session = make_session({
            f'{CONTAINER} div[class*="transcript-line"]': [make_element("Hello"), make_element("World")],
            f'{CONTAINER} div[class*="transcript-text"]': [make_element("Other")],
        })

        transcript = asyncio.run(self.extractor.extract(session))

        self.assertEqual(transcript, "Hello\nWorld")
        queried = [c[0][0] for c in session.page.query_selector_all.call_args_list]
        self.assertEqual(queried, [f'{CONTAINER} div[class*="transcript-line"]'])
        session.page.wait_for_selector.assert_awaited_once_with(CONTAINER, state="attached", timeout=1000)
        session.page.wait_for_timeout.assert_awaited_once_with(5000)

    @patch('transcript_extractor.evt')
    def test_cascade_order(self, mock_evt):
        session = make_session({
            f'{CONTAINER} div[class*="transcript-line"]': [make_element("  "), make_element("[00:01]")],
        }, div_texts=["Div line"])

        transcript = asyncio.run(self.extractor.extract(session))

        self.assertEqual(transcript, "Div line")
        queried = [c[0][0] for c in session.page.query_selector_all.call_args_list]
        self.assertEqual(queried, [
            f'{CONTAINER} div[class*="transcript-line"]',
            f'{CONTAINER} div[class*="transcript-text"]',
        ])
        self.assertEqual(session.page.eval_on_selector_all.call_args[0][0], f'{CONTAINER} div')
        session.page.evaluate.assert_not_called()

    @patch('transcript_extractor.evt')
    def test_mixed_content_rows_keep_own_text(self, mock_evt):
        # <div>Speaker<div>Hello there</div></div> yields each div's own text
        session = make_session(div_texts=["Speaker", "Hello there", "", "Speaker"])

        transcript = asyncio.run(self.extractor.extract(session))

        self.assertEqual(transcript, "Speaker\nHello there")
        script = session.page.eval_on_selector_all.call_args[0][1]
        self.assertIn("closest('div') !== div", script)

    @patch('transcript_extractor.evt')
    def test_text_node_walk_is_last_resort(self, mock_evt):
        session = make_session(walk_texts=["\n  Speaker one  ", "resume auto-scroll", "Speaker two"])

        transcript = asyncio.run(self.extractor.extract(session))

        self.assertEqual(transcript, "Speaker one\nSpeaker two")
        self.assertEqual(session.page.evaluate.call_args[0][1], CONTAINER)

    @patch('transcript_extractor.evt')
    def test_empty_harvest_returns_sentinel(self, mock_evt):
        transcript = asyncio.run(self.extractor.extract(make_session()))
        self.assertEqual(transcript, NO_TRANSCRIPT)

    @patch('transcript_extractor.evt')
    def test_hidden_elements_read_text_content(self, mock_evt):
        hidden = make_element("Hidden line", visible=False)
        session = make_session({f'{CONTAINER} div[class*="transcript-line"]': [hidden]})

        transcript = asyncio.run(self.extractor.extract(session))

        self.assertEqual(transcript, "Hidden line")
        hidden.inner_text.assert_not_called()
        hidden.text_content.assert_awaited_once()

    @patch('transcript_extractor.evt')
    def test_inner_text_failure_falls_back_to_text_content(self, mock_evt):
        element = make_element("Fallback line")
        element.inner_text.side_effect = PlaywrightError("Element is not attached")

        text = asyncio.run(self.extractor.read_element_text(element))

        self.assertEqual(text, "Fallback line")

    @patch('transcript_extractor.evt')
    def test_detached_element_reads_empty(self, mock_evt):
        element = make_element("x")
        element.is_visible.side_effect = PlaywrightError("Element is not attached")

        self.assertEqual(asyncio.run(self.extractor.read_element_text(element)), "")

    def test_hung_element_read_raises(self):
        async def hang():
            await asyncio.sleep(5)

        element = make_element("x")
        element.is_visible = MagicMock(side_effect=lambda: hang())

        with self.assertRaises(ElementReadTimeoutError):
            asyncio.run(self.extractor.read_element_text(element))

    def test_container_timeout_raises(self):
        session = make_session()
        session.page.wait_for_selector.side_effect = PlaywrightTimeoutError("Timeout 1000ms exceeded.")

        with self.assertRaises(TranscriptContainerNotFoundError):
            asyncio.run(self.extractor.extract(session))
        session.page.query_selector_all.assert_not_called()

    @patch('transcript_extractor.evt')
    def test_reveal_clicks_first_available_control(self, mock_evt):
        control = MagicMock()
        control.click = AsyncMock()
        session = make_session(reveal={REVEAL_CONTROL_SELECTORS[2]: control})

        revealed = asyncio.run(self.extractor.reveal_transcript(session))

        self.assertTrue(revealed)
        control.click.assert_awaited_once_with(timeout=500)
        session.page.wait_for_timeout.assert_awaited_once_with(2000)

    @patch('transcript_extractor.evt')
    def test_reveal_without_control_is_not_an_error(self, mock_evt):
        session = make_session()

        self.assertFalse(asyncio.run(self.extractor.reveal_transcript(session)))
        self.assertEqual(session.page.query_selector.await_count, len(REVEAL_CONTROL_SELECTORS))

    @patch('transcript_extractor.evt')
    def test_reveal_click_failure_tries_next_control(self, mock_evt):
        broken = MagicMock()
        broken.click = AsyncMock(side_effect=PlaywrightError("Element is outside of the viewport"))
        working = MagicMock()
        working.click = AsyncMock()
        session = make_session(reveal={
            REVEAL_CONTROL_SELECTORS[0]: broken,
            REVEAL_CONTROL_SELECTORS[1]: working,
        })

        self.assertTrue(asyncio.run(self.extractor.reveal_transcript(session)))
        working.click.assert_awaited_once()

    def test_strategy_names(self):
        names = [name for name, _ in self.extractor.strategies()]
        self.assertEqual(names, ["transcript_line", "transcript_text", "div_own_text", "text_node_walk"])

    @patch('transcript_extractor.evt')
    def test_strategy_results_are_tagged(self, mock_evt):
        session = make_session({f'{CONTAINER} div[class*="transcript-line"]': [make_element("Hi")]})
        strategies = dict(self.extractor.strategies())

        self.assertEqual(asyncio.run(strategies["transcript_line"](session)), Found(["Hi"]))
        self.assertIsInstance(asyncio.run(strategies["transcript_text"](session)), Empty)


if __name__ == '__main__':
    unittest.main()
