#!/usr/bin/env python3
"""
Tests for the local command-line runner.
"""

import asyncio
import io
import json
import os
import sys
import unittest
from contextlib import redirect_stdout
from unittest.mock import AsyncMock, patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import run_local
from models import CallMetadata, ExtractionResult

CALL_URL = "https://app.example.com/calls/123"


class TestRunLocal(unittest.TestCase):

    def test_parser_and_overrides(self):
        args = run_local.build_parser().parse_args(
            [CALL_URL, "--max-attempts", "1", "--retry-delay", "0.5", "--no-headless"])

        with patch.dict(os.environ, {}, clear=False):
            config = run_local.config_from_args(args)

        self.assertEqual(config.max_attempts, 1)
        self.assertEqual(config.retry_delay_seconds, 0.5)
        self.assertFalse(config.headless)

    def test_defaults_keep_headless(self):
        args = run_local.build_parser().parse_args([CALL_URL])
        with patch.dict(os.environ, {"EXTRACTOR_HEADLESS": "true"}):
            self.assertTrue(run_local.config_from_args(args).headless)

    @patch('run_local.CallExtractionService')
    def test_single_url_prints_object(self, mock_service_class):
        result = ExtractionResult.success(CallMetadata(title="Demo"), "Hello", attempts=1)
        mock_service_class.return_value.run_batch = AsyncMock(return_value=[result])
        args = run_local.build_parser().parse_args([CALL_URL])

        out = io.StringIO()
        with redirect_stdout(out):
            code = asyncio.run(run_local.run(args))

        self.assertEqual(code, 0)
        payload = json.loads(out.getvalue())
        self.assertEqual(payload["url"], CALL_URL)
        self.assertEqual(payload["Title"], "Demo")
        self.assertEqual(payload["attempts"], 1)

    @patch('run_local.CallExtractionService')
    def test_any_failure_sets_exit_code(self, mock_service_class):
        results = [
            ExtractionResult.success(CallMetadata(), "Hello", attempts=1),
            ExtractionResult.failure("NavigationTimeoutError: slow", attempts=3),
        ]
        mock_service_class.return_value.run_batch = AsyncMock(return_value=results)
        args = run_local.build_parser().parse_args([CALL_URL, CALL_URL + "?b"])

        out = io.StringIO()
        with redirect_stdout(out):
            code = asyncio.run(run_local.run(args))

        self.assertEqual(code, 1)
        payload = json.loads(out.getvalue())
        self.assertEqual(len(payload), 2)
        self.assertEqual(payload[1]["error"], "NavigationTimeoutError: slow")


if __name__ == '__main__':
    unittest.main()
