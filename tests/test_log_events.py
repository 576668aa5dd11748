"""
Unit tests for log_events.py event helper functions.

Tests evt(), StageTimer, lifecycle helpers and error classification.
"""

import time
import unittest
from unittest.mock import patch

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from log_events import (
    evt, StageTimer, time_stage, extraction_received, extraction_finished,
    extraction_failed, attempt_failed, classify_error_type
)
from extraction_errors import AuthenticationRequiredError, TranscriptContainerNotFoundError


class TestEvtFunction(unittest.TestCase):
    """Test the basic evt() function."""

    @patch('log_events.logger')
    def test_evt_basic_event(self, mock_logger):
        evt("test_event")
        mock_logger.info.assert_called_once_with("", extra={"event": "test_event"})

    @patch('log_events.logger')
    def test_evt_with_fields(self, mock_logger):
        evt("navigation_complete", outcome="ok", final_url="https://example.com/calls/1")

        mock_logger.info.assert_called_once_with("", extra={
            "event": "navigation_complete",
            "outcome": "ok",
            "final_url": "https://example.com/calls/1",
        })


class TestStageTimer(unittest.TestCase):
    """Test StageTimer context manager."""

    @patch('log_events.evt')
    def test_successful_stage(self, mock_evt):
        with StageTimer("navigate", attempt=1) as timer:
            time.sleep(0.01)

        self.assertEqual(mock_evt.call_count, 2)
        mock_evt.assert_any_call("stage_start", stage="navigate", attempt=1)

        end_call = mock_evt.call_args_list[1]
        self.assertEqual(end_call[0][0], "stage_result")
        self.assertEqual(end_call[1]["outcome"], "success")
        self.assertEqual(end_call[1]["attempt"], 1)
        self.assertGreaterEqual(end_call[1]["dur_ms"], 10)
        self.assertEqual(timer.duration_ms, end_call[1]["dur_ms"])

    @patch('log_events.evt')
    def test_failed_stage_does_not_swallow(self, mock_evt):
        with self.assertRaises(ValueError):
            with StageTimer("metadata"):
                raise ValueError("bad payload")

        end_call = mock_evt.call_args_list[1]
        self.assertEqual(end_call[1]["outcome"], "error")
        self.assertEqual(end_call[1]["detail"], "ValueError: bad payload")

    @patch('log_events.evt')
    def test_time_stage_factory(self, mock_evt):
        timer = time_stage("transcript", attempt=2)
        self.assertIsInstance(timer, StageTimer)
        self.assertEqual(timer.stage, "transcript")
        self.assertEqual(timer.context_fields, {"attempt": 2})


class TestLifecycleEvents(unittest.TestCase):

    @patch('log_events.evt')
    def test_extraction_received(self, mock_evt):
        extraction_received("https://example.com/calls/1", 3, retry_delay_seconds=5.0)
        mock_evt.assert_called_once_with(
            "extraction_received", url="https://example.com/calls/1",
            max_attempts=3, retry_delay_seconds=5.0)

    @patch('log_events.evt')
    def test_extraction_finished(self, mock_evt):
        extraction_finished(4200, 2, 17)
        mock_evt.assert_called_once_with(
            "extraction_finished", dur_ms=4200, attempts=2,
            transcript_lines=17, outcome="success")

    @patch('log_events.evt')
    def test_extraction_finished_degraded(self, mock_evt):
        extraction_finished(1000, 1, 0, outcome="degraded")
        self.assertEqual(mock_evt.call_args[1]["outcome"], "degraded")

    @patch('log_events.evt')
    def test_extraction_failed(self, mock_evt):
        extraction_failed(9000, 3, "navigation_timeout", "NavigationTimeoutError: slow")
        mock_evt.assert_called_once_with(
            "extraction_failed", dur_ms=9000, attempts=3, outcome="error",
            error_type="navigation_timeout", detail="NavigationTimeoutError: slow")

    @patch('log_events.evt')
    def test_attempt_failed(self, mock_evt):
        attempt_failed(1, TranscriptContainerNotFoundError("missing"), True, next_sleep=5.0)

        kwargs = mock_evt.call_args[1]
        self.assertEqual(mock_evt.call_args[0][0], "attempt_failed")
        self.assertEqual(kwargs["attempt"], 1)
        self.assertEqual(kwargs["error_type"], "transcript_container_missing")
        self.assertTrue(kwargs["retryable"])
        self.assertEqual(kwargs["next_sleep"], 5.0)


class TestClassifyErrorType(unittest.TestCase):

    def test_tagged_extraction_errors(self):
        self.assertEqual(classify_error_type(AuthenticationRequiredError("login")), "auth_required")

    def test_timeout_errors(self):
        class TimeoutError(Exception):
            pass
        self.assertEqual(classify_error_type(TimeoutError("x")), "timeout_error")
        self.assertEqual(classify_error_type(Exception("Timeout 30000ms exceeded")), "timeout_error")

    def test_network_errors(self):
        self.assertEqual(classify_error_type(Exception("net::ERR_NAME_NOT_RESOLVED")), "network_error")
        self.assertEqual(classify_error_type(Exception("Connection refused")), "network_error")

    def test_browser_errors(self):
        self.assertEqual(classify_error_type(Exception("Target closed")), "browser_error")

    def test_dom_errors(self):
        self.assertEqual(classify_error_type(Exception("Element is not attached")), "dom_error")

    def test_unknown_errors(self):
        self.assertEqual(classify_error_type(Exception("something odd")), "extraction_error")


if __name__ == '__main__':
    unittest.main()
