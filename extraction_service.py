"""
Call extraction service: the retry orchestrator around one extraction attempt.

An attempt is navigate -> metadata -> transcript on a fresh browser session.
Any stage failure abandons the whole attempt; retryable failures are retried
with a brand-new session after a fixed delay, terminal ones end the request.
Callers always receive an ExtractionResult, never a browser exception.
"""

import asyncio
import concurrent.futures
import time
import uuid
from typing import Iterable, List, Optional, Tuple

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_fixed

from browser_session import BrowserSessionManager
from extraction_config import ExtractionConfig
from extraction_errors import InvalidRequestError, describe_error, is_retryable
from log_events import (
    attempt_failed,
    classify_error_type,
    evt,
    extraction_failed,
    extraction_finished,
    extraction_received,
    time_stage,
)
from logging_setup import clear_extraction_ctx, get_logger, set_extraction_ctx
from metadata_extractor import MetadataExtractor
from models import NO_TRANSCRIPT, CallMetadata, ExtractionRequest, ExtractionResult
from navigation_controller import NavigationController
from transcript_extractor import TranscriptExtractor

logger = get_logger(__name__)


class CallExtractionService:
    """
    Extraction engine configured once at construction.

    Collaborators can be injected; by default each is built from `config`.
    `sleep` is the coroutine used for the inter-attempt delay.
    """

    def __init__(self, config: Optional[ExtractionConfig] = None,
                 session_manager: Optional[BrowserSessionManager] = None,
                 navigator: Optional[NavigationController] = None,
                 metadata_extractor: Optional[MetadataExtractor] = None,
                 transcript_extractor: Optional[TranscriptExtractor] = None,
                 sleep=asyncio.sleep):
        self.config = config or ExtractionConfig()
        self.session_manager = session_manager or BrowserSessionManager(self.config)
        self.navigator = navigator or NavigationController(self.config)
        self.metadata_extractor = metadata_extractor or MetadataExtractor(self.config)
        self.transcript_extractor = transcript_extractor or TranscriptExtractor(self.config)
        self._sleep = sleep

    async def run_attempt(self, url: str, attempt: int = 1) -> Tuple[CallMetadata, str]:
        """One full attempt on its own session; the session is released on every exit path."""
        async with self.session_manager.session() as session:
            with time_stage("navigate", attempt=attempt):
                navigation = await self.navigator.navigate(session, url)
                # Auth and redirect pages are never scraped
                self.navigator.raise_for_outcome(navigation)

            with time_stage("metadata", attempt=attempt):
                metadata = await self.metadata_extractor.extract(session, page_url=url)

            with time_stage("transcript", attempt=attempt):
                transcript = await self.transcript_extractor.extract(session)

        return metadata, transcript

    def _log_retry(self, retry_state) -> None:
        exception = retry_state.outcome.exception()
        next_sleep = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"extraction: attempt {retry_state.attempt_number} failed "
            f"({type(exception).__name__}), retrying in {next_sleep}s")

    async def run_with_retry(self, url: str, max_attempts: Optional[int] = None,
                             delay: Optional[float] = None) -> ExtractionResult:
        """
        Extract metadata and transcript from `url`, retrying failed attempts.

        Performs at most `max_attempts` attempts with `delay` seconds between
        consecutive attempts. Authentication-blocked pages and invalid
        requests are not retried.
        """
        set_extraction_ctx(request_id=uuid.uuid4().hex[:12], url=url)
        started = time.time()
        attempts = 0

        try:
            try:
                url = ExtractionRequest(url).validate()
            except InvalidRequestError as e:
                extraction_failed(0, 0, e.error_type, describe_error(e))
                return ExtractionResult.failure(describe_error(e), attempts=0)

            if max_attempts is None:
                max_attempts = self.config.max_attempts
            max_attempts = max(int(max_attempts), 1)
            delay = self.config.retry_delay_seconds if delay is None else max(float(delay), 0.0)
            extraction_received(url, max_attempts, retry_delay_seconds=delay)

            retrying = AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_fixed(delay),
                retry=retry_if_exception(is_retryable),
                before_sleep=self._log_retry,
                sleep=self._sleep,
                reraise=True,
            )

            try:
                async for attempt in retrying:
                    with attempt:
                        attempts = attempt.retry_state.attempt_number
                        try:
                            metadata, transcript = await self.run_attempt(url, attempts)
                        except Exception as e:
                            attempt_failed(attempts, e, is_retryable(e),
                                           next_sleep=delay if attempts < max_attempts else 0)
                            raise
            except Exception as e:
                error = describe_error(e)
                logger.error(f"extraction: failed after {attempts} attempt(s): {error}")
                extraction_failed(int((time.time() - started) * 1000), attempts,
                                  classify_error_type(e), error)
                return ExtractionResult.failure(error, attempts=attempts)

            line_count = 0 if transcript == NO_TRANSCRIPT else transcript.count("\n") + 1
            extraction_finished(int((time.time() - started) * 1000), attempts, line_count,
                                outcome="success" if line_count else "degraded")
            return ExtractionResult.success(metadata, transcript, attempts=attempts)
        finally:
            clear_extraction_ctx()

    async def run_batch(self, urls: Iterable[str], concurrency: Optional[int] = None) -> List[ExtractionResult]:
        """
        Run independent extractions concurrently, each on its own sessions.
        Results come back in input order.
        """
        limit = asyncio.Semaphore(max(concurrency or self.config.max_concurrent_sessions, 1))

        async def run_one(url: str) -> ExtractionResult:
            async with limit:
                return await self.run_with_retry(url)

        urls = list(urls)
        evt("extraction_batch_start", batch_size=len(urls))
        return list(await asyncio.gather(*(run_one(url) for url in urls)))


def extract_call(url: str, config: Optional[ExtractionConfig] = None, **retry_overrides) -> ExtractionResult:
    """
    Synchronous entry point for callers without an event loop.

    Inside a running loop the extraction runs on a worker thread with its own loop.
    """
    async def _run():
        return await CallExtractionService(config).run_with_retry(url, **retry_overrides)

    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(_run())

    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as executor:
        return executor.submit(asyncio.run, _run()).result()
