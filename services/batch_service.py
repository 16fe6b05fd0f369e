"""
Batch Lifecycle Controller

Owns batch status:

    uploading -> extracting -> annotating -> validating -> done
                      |             |             |
                      +-------------+-------------+--> processing_failed

A single screenshot failing never fails the batch; only record-store
failures, cancellation or errors escaping the orchestrator do. An
interrupted run is restarted from extracting via reprocess.
"""

import asyncio
import os
import threading
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

import aiohttp

from config import config
from core import (
    AsyncClaudeClient, AsyncOpenAIClient, AsyncMoondreamClient,
    ModelGateway, fetch_image
)
from database import (
    create_client, RecordStoreError, StorageClient, StorageError, get_screenshot_path,
    get_batch, create_batch, update_batch,
    get_screenshots_by_batch, create_screenshot, update_screenshot,
    reset_screenshots_by_batch,
    delete_components_by_screenshots, delete_elements_by_screenshots
)
from services.extraction_service import ScreenshotUnit, ScreenshotResult, run_extraction
from services.signed_url_cache import SignedUrlCache
from utils.cancellation import CancellationToken
from utils.rate_limiter import build_provider_limiters


# ============================================================
# STATES
# ============================================================

UPLOADING = 'uploading'
EXTRACTING = 'extracting'
ANNOTATING = 'annotating'
VALIDATING = 'validating'
DONE = 'done'
PROCESSING_FAILED = 'processing_failed'

TRANSITIONS = {
    UPLOADING: {EXTRACTING},
    EXTRACTING: {ANNOTATING, PROCESSING_FAILED},
    ANNOTATING: {VALIDATING, DONE, PROCESSING_FAILED},
    VALIDATING: {DONE, PROCESSING_FAILED},
    DONE: set(),
    PROCESSING_FAILED: set(),
}

# States a reprocess may restart extraction from
RESTARTABLE = {EXTRACTING, ANNOTATING, VALIDATING, DONE, PROCESSING_FAILED}


class BatchNotFound(Exception):
    pass


class InvalidTransition(Exception):
    def __init__(self, batch_id, current, target):
        super().__init__(f"Batch {batch_id} cannot move from '{current}' to '{target}'")
        self.current = current
        self.target = target


class BatchAlreadyRunning(Exception):
    pass


@dataclass
class BatchRunSummary:
    batch_id: int
    status: str
    total_screenshots: int = 0
    successful: int = 0
    failed: int = 0
    elements_detected: int = 0
    inference_time_ms: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    runtime_ms: int = 0
    error: Optional[str] = None
    results: Dict[int, ScreenshotResult] = field(default_factory=dict)


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


# ============================================================
# CONTROLLER
# ============================================================

class BatchController:
    """Drives one batch at a time per batch_id through its lifecycle"""

    def __init__(
        self,
        store,
        url_cache: SignedUrlCache,
        providers: Dict,
        limiters: Optional[Dict] = None,
        image_loader=None,
        max_concurrency: Optional[int] = None,
        score_accuracy: Optional[bool] = None,
        session_factory=None
    ):
        self.store = store
        self.url_cache = url_cache
        self.providers = providers
        self.limiters = limiters or {}
        self.image_loader = image_loader
        self.max_concurrency = max_concurrency or config.MAX_CONCURRENT_SCREENSHOTS
        self.score_accuracy = config.ACCURACY_SCORING_ENABLED if score_accuracy is None else score_accuracy
        self.session_factory = session_factory or self._default_session
        self._tokens: Dict[int, CancellationToken] = {}
        self._lock = threading.Lock()

    def _default_session(self):
        return aiohttp.ClientSession(connector=aiohttp.TCPConnector(limit=self.max_concurrency * 2))

    # ===== STATUS =====

    def _load(self, batch_id):
        batch = get_batch(self.store, batch_id)
        if not batch:
            raise BatchNotFound(f"Batch {batch_id} not found")
        return batch

    def transition(self, batch_id, target, updates=None):
        """Persist a status change after checking it is allowed"""
        current = self._load(batch_id).get('batch_status')

        if target not in TRANSITIONS.get(current, set()):
            raise InvalidTransition(batch_id, current, target)

        update_batch(self.store, batch_id, dict(updates or {}, batch_status=target))
        print(f"[Batch {batch_id}] Status '{current}' -> '{target}'", flush=True)
        return current

    def _restart(self, batch_id):
        """Move a batch back to extracting, clearing its previous output"""
        batch = self._load(batch_id)
        current = batch.get('batch_status')

        if current == UPLOADING:
            return self.transition(batch_id, EXTRACTING)
        if current not in RESTARTABLE:
            raise InvalidTransition(batch_id, current, EXTRACTING)

        update_batch(self.store, batch_id, {'batch_status': EXTRACTING, 'batch_error_message': None})
        print(f"[Batch {batch_id}] Status '{current}' -> '{EXTRACTING}' (reprocess)", flush=True)

        # Status is already extracting, so a half-done cleanup must not look finished
        try:
            screenshot_ids = [s['screenshot_id'] for s in get_screenshots_by_batch(self.store, batch_id)]
            delete_elements_by_screenshots(self.store, screenshot_ids)
            delete_components_by_screenshots(self.store, screenshot_ids)
            reset_screenshots_by_batch(self.store, batch_id)
        except Exception as e:
            print(f"[Batch {batch_id}] Reprocess cleanup failed: {e}", flush=True)
            traceback.print_exc()
            self._mark_failed(batch_id, e)
            raise

        return current

    def _mark_failed(self, batch_id, error):
        try:
            update_batch(self.store, batch_id, {
                'batch_status': PROCESSING_FAILED,
                'batch_error_message': str(error)[:500]
            })
            print(f"[Batch {batch_id}] Status set to '{PROCESSING_FAILED}'", flush=True)
        except Exception as status_error:
            print(f"[Batch {batch_id}] Could not record failure status: {status_error}", flush=True)

    # ===== SINGLE WRITER =====

    def is_running(self, batch_id):
        with self._lock:
            return batch_id in self._tokens

    def _claim(self, batch_id):
        with self._lock:
            if batch_id in self._tokens:
                raise BatchAlreadyRunning(f"Batch {batch_id} is already being processed")
            token = CancellationToken(batch_id)
            self._tokens[batch_id] = token
            return token

    def _release(self, batch_id):
        with self._lock:
            self._tokens.pop(batch_id, None)

    def check_can_start(self, batch_id, restart=False):
        """Raise the error a start/reprocess request would hit, before scheduling it"""
        current = self._load(batch_id).get('batch_status')
        if self.is_running(batch_id):
            raise BatchAlreadyRunning(f"Batch {batch_id} is already being processed")
        if restart and current != UPLOADING and current not in RESTARTABLE:
            raise InvalidTransition(batch_id, current, EXTRACTING)
        if not restart and current != UPLOADING:
            raise InvalidTransition(batch_id, current, EXTRACTING)

    def cancel_batch(self, batch_id, reason='cancelled'):
        """Fire the running batch's cancellation token; False if it is not running"""
        with self._lock:
            token = self._tokens.get(batch_id)
        if token is None:
            return False
        token.cancel(reason)
        print(f"[Batch {batch_id}] Cancellation requested", flush=True)
        return True

    # ===== ENTRY POINTS =====

    def register_batch(self, batch_name, analysis_type, file_urls):
        """
        Create a batch in 'uploading' with one pending screenshot per file URL.

        Returns:
            (batch row, list of screenshot rows)
        """
        batch = create_batch(self.store, {
            'batch_name': batch_name,
            'batch_analysis_type': analysis_type,
            'batch_status': UPLOADING,
            'batch_created_at': _now_iso()
        })
        if not batch:
            raise BatchNotFound("Batch was not created")

        screenshots = []
        for file_url in file_urls:
            path = get_screenshot_path(file_url) or file_url
            row = create_screenshot(self.store, {
                'batch_id': batch['batch_id'],
                'screenshot_file_name': os.path.basename(path.split('?')[0]),
                'screenshot_file_url': file_url,
                'screenshot_processing_status': 'pending',
                'screenshot_created_at': _now_iso()
            })
            if row:
                screenshots.append(row)

        print(f"[Batch {batch['batch_id']}] Registered with {len(screenshots)} screenshots", flush=True)
        return batch, screenshots

    async def start_batch_extraction(self, batch_id, restart=False) -> BatchRunSummary:
        """
        Run extraction for a batch and leave it in annotating/validating, or
        processing_failed when the run itself breaks.

        Raises:
            BatchNotFound, InvalidTransition, BatchAlreadyRunning: before any
            work starts
        """
        token = self._claim(batch_id)
        try:
            if restart:
                await asyncio.to_thread(self._restart, batch_id)
            else:
                try:
                    await asyncio.to_thread(self.transition, batch_id, EXTRACTING)
                except RecordStoreError as e:
                    print(f"[Batch {batch_id}] Could not start extraction: {e}", flush=True)
                    await asyncio.to_thread(self._mark_failed, batch_id, e)
                    raise
        except BaseException:
            self._release(batch_id)
            raise

        try:
            return await self._run(batch_id, token)
        finally:
            self._release(batch_id)

    async def reprocess_batch(self, batch_id) -> BatchRunSummary:
        return await self.start_batch_extraction(batch_id, restart=True)

    def complete_review(self, batch_id):
        """Human review finished: annotating/validating -> done"""
        return self.transition(batch_id, DONE)

    def get_batch_status(self, batch_id):
        batch = self._load(batch_id)
        screenshots = get_screenshots_by_batch(self.store, batch_id)

        counts = {}
        for s in screenshots:
            status = s.get('screenshot_processing_status') or 'pending'
            counts[status] = counts.get(status, 0) + 1

        return {
            'batch': batch,
            'running': self.is_running(batch_id),
            'screenshot_counts': counts,
            'screenshots': [
                {
                    'screenshot_id': s['screenshot_id'],
                    'screenshot_file_name': s.get('screenshot_file_name'),
                    'screenshot_processing_status': s.get('screenshot_processing_status'),
                    'screenshot_processing_time': s.get('screenshot_processing_time'),
                    'screenshot_error_message': s.get('screenshot_error_message')
                }
                for s in screenshots
            ]
        }

    # ===== RUN =====

    async def _attach_signed_urls(self, batch_id, screenshots):
        """
        Resolve each screenshot's storage path to a signed URL.

        Returns:
            (screenshots ready to process, {screenshot_id: error result})
        """
        paths = {s['screenshot_id']: get_screenshot_path(s.get('screenshot_file_url')) for s in screenshots}

        try:
            urls = await self.url_cache.get_signed_urls([p for p in paths.values() if p])
        except StorageError as e:
            print(f"[Batch {batch_id}] Failed to get signed URLs: {e}", flush=True)
            urls = {}

        ready = []
        failed = {}
        for screenshot in screenshots:
            screenshot_id = screenshot['screenshot_id']
            path = paths[screenshot_id]
            url = urls.get(path) if path else None

            if url:
                ready.append(dict(screenshot, screenshot_signed_url=url, screenshot_bucket_path=path))
                continue

            error = 'Invalid screenshot file URL' if not path else 'Could not sign screenshot URL'
            await asyncio.to_thread(update_screenshot, self.store, screenshot_id, {
                'screenshot_processing_status': 'error',
                'screenshot_error_message': error
            })
            failed[screenshot_id] = ScreenshotResult(screenshot_id=screenshot_id, error=error)

        if failed:
            print(f"[Batch {batch_id}] {len(failed)} screenshots have no usable URL", flush=True)

        return ready, failed

    async def _run(self, batch_id, token) -> BatchRunSummary:
        tag = f"[Batch {batch_id}]"
        start_time = time.time()

        try:
            screenshots = await asyncio.to_thread(get_screenshots_by_batch, self.store, batch_id)
            print(f"{tag} Found {len(screenshots)} screenshots", flush=True)

            ready, results = await self._attach_signed_urls(batch_id, screenshots)

            print(f"{tag} Extracting {len(ready)} screenshots (max {self.max_concurrency} concurrent)", flush=True)
            async with self.session_factory() as session:
                gateway = ModelGateway(session, self.providers, self.store, self.limiters)
                image_loader = self.image_loader or (lambda url: fetch_image(session, url))
                unit = ScreenshotUnit(self.store, gateway, image_loader, batch_id, self.score_accuracy)
                results.update(await run_extraction(batch_id, ready, unit, self.max_concurrency, token))

            summary = self._summarize(batch_id, results, start_time)

            await asyncio.to_thread(self.transition, batch_id, ANNOTATING, {
                'batch_master_prompt_runtime': summary.runtime_ms,
                'batch_total_inference_time': summary.inference_time_ms,
                'batch_detected_elements_count': summary.elements_detected,
                'batch_input_token_count': summary.input_tokens,
                'batch_output_token_count': summary.output_tokens,
                'batch_total_cost': summary.cost
            })
            summary.status = ANNOTATING

            if any(r.scored for r in results.values()):
                await asyncio.to_thread(self.transition, batch_id, VALIDATING)
                summary.status = VALIDATING

            self._log_summary(tag, summary)
            return summary

        except Exception as e:
            print(f"{tag} Processing failed: {e}", flush=True)
            traceback.print_exc()
            await asyncio.to_thread(self._mark_failed, batch_id, e)
            return BatchRunSummary(
                batch_id=batch_id,
                status=PROCESSING_FAILED,
                runtime_ms=int((time.time() - start_time) * 1000),
                error=str(e)
            )

    @staticmethod
    def _summarize(batch_id, results, start_time):
        successful = [r for r in results.values() if r.success]
        return BatchRunSummary(
            batch_id=batch_id,
            status=EXTRACTING,
            total_screenshots=len(results),
            successful=len(successful),
            failed=len(results) - len(successful),
            elements_detected=sum(r.elements_detected for r in results.values()),
            inference_time_ms=sum(r.inference_time_ms for r in results.values()),
            input_tokens=sum(r.input_tokens for r in results.values()),
            output_tokens=sum(r.output_tokens for r in results.values()),
            cost=round(sum(r.cost for r in results.values()), 6),
            runtime_ms=int((time.time() - start_time) * 1000),
            results=results
        )

    @staticmethod
    def _log_summary(tag, summary):
        print(f"{tag} Extraction complete:", flush=True)
        print(f"  - Screenshots: {summary.successful}/{summary.total_screenshots} successful", flush=True)
        print(f"  - Time: {summary.runtime_ms / 1000:.1f}s", flush=True)
        print(f"  - Elements: {summary.elements_detected}", flush=True)
        print(f"  - Tokens: {summary.input_tokens:,} in, {summary.output_tokens:,} out", flush=True)
        print(f"  - Cost: ${summary.cost:.4f}", flush=True)


# ============================================================
# BACKGROUND EXECUTION
# ============================================================

class BackgroundLoop:
    """
    One event loop thread shared by every batch run in the process.

    The signed URL cache and the provider token buckets hold loop-bound
    state, so all runs go through the same loop.
    """

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = None
        self._lock = threading.Lock()

    def _serve(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def submit(self, coro):
        """Schedule a coroutine; returns a concurrent.futures.Future"""
        with self._lock:
            if self._thread is None:
                self._thread = threading.Thread(target=self._serve, name='batch-loop', daemon=True)
                self._thread.start()
        return asyncio.run_coroutine_threadsafe(coro, self.loop)


def build_controller():
    """Wire a controller from environment configuration"""
    store = create_client()
    url_cache = SignedUrlCache(StorageClient())
    providers = {
        'claude': AsyncClaudeClient(),
        'openai': AsyncOpenAIClient(),
        'moondream': AsyncMoondreamClient(),
    }
    limiters = build_provider_limiters(config.PROVIDER_RATE_LIMITS)
    return BatchController(store, url_cache, providers, limiters)


def run_batch_background(controller, background, batch_id, restart=False):
    """
    Fire-and-monitor entry point; progress is observable on the batch row.

    Returns:
        concurrent.futures.Future resolving to a BatchRunSummary
    """
    print(f"[Batch {batch_id}] Scheduling {'reprocess' if restart else 'extraction'}", flush=True)
    future = background.submit(controller.start_batch_extraction(batch_id, restart=restart))
    future.add_done_callback(lambda done: report_background_failure(batch_id, done))
    return future


def report_background_failure(batch_id, future):
    """Log an exception nobody will ever collect from a scheduled run"""
    if future.cancelled():
        print(f"[Batch {batch_id}] Background run cancelled", flush=True)
        return
    error = future.exception()
    if error is None:
        return
    print(f"[Batch {batch_id}] Background run failed: {type(error).__name__}: {error}", flush=True)
    traceback.print_exception(type(error), error, error.__traceback__)
