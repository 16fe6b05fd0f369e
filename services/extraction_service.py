"""
Extraction service - per-screenshot unit and batch orchestrator

ScreenshotUnit runs the stages for one screenshot strictly in order and
persists what each stage produced. run_extraction fans units out across a
batch under one semaphore; a failing screenshot is recorded and the rest keep
going.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from config import config
from core.gateway import TrackingContext
from database import (
    RecordStoreError,
    update_screenshot,
    create_component, update_component,
    create_element, bump_element
)
from geometry import determine_hierarchical_groups, split_label, union_box
from services.stages import (
    discover_components, discover_elements, anchor_elements,
    detect_elements, score_accuracy,
    BoxCandidate, DETECTION_ERROR, OVERWRITE
)
from utils.cancellation import BatchCancelled


# ============================================================
# DATA STRUCTURES
# ============================================================

@dataclass
class ScreenshotResult:
    """Outcome of one screenshot unit"""
    screenshot_id: int
    success: bool = False
    error: Optional[str] = None
    processing_time_ms: int = 0
    components: int = 0
    labels: int = 0
    elements_detected: int = 0
    inference_time_ms: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    scored: bool = False
    stage_status: Dict[str, str] = field(default_factory=dict)
    label_errors: Dict[str, str] = field(default_factory=dict)


async def _db(fn, *args):
    """Run a blocking record-store call off the event loop"""
    return await asyncio.to_thread(fn, *args)


# ============================================================
# PER-SCREENSHOT UNIT
# ============================================================

class ScreenshotUnit:
    """Runs component -> element -> anchor -> detect (-> score) for one screenshot"""

    def __init__(self, store, gateway, image_loader, batch_id, score_accuracy=None):
        self.store = store
        self.gateway = gateway
        self.image_loader = image_loader
        self.batch_id = batch_id
        self.score_accuracy = config.ACCURACY_SCORING_ENABLED if score_accuracy is None else score_accuracy

    async def run(self, screenshot: Dict, cancel_token=None) -> ScreenshotResult:
        """
        Process one screenshot.

        Everything except record-store failures and cancellation is caught
        here and reported as this screenshot's error.
        """
        screenshot_id = screenshot['screenshot_id']
        tag = f"[Batch {self.batch_id}][Shot {screenshot_id}]"
        tracking = TrackingContext(batch_id=self.batch_id, screenshot_id=screenshot_id)
        result = ScreenshotResult(screenshot_id=screenshot_id)
        components: Dict[str, Dict] = {}
        start_time = time.time()

        def check():
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

        try:
            await _db(update_screenshot, self.store, screenshot_id, {
                'screenshot_processing_status': 'processing',
                'screenshot_error_message': None
            })

            image_url = screenshot.get('screenshot_signed_url')
            if not image_url:
                raise ValueError("No signed URL for screenshot")
            image = await self.image_loader(image_url)
            check()

            # Stage 1
            discovery = await discover_components(self.gateway, image, tracking)
            self._account(result, discovery.usage)
            result.stage_status['component_extraction'] = discovery.status
            components = await self._save_components(screenshot_id, discovery)
            result.components = len(components)
            check()

            # Stage 2
            elements = await discover_elements(self.gateway, image, discovery, tracking)
            self._account(result, elements.usage)
            result.stage_status['element_extraction'] = elements.status
            check()

            # Stage 3
            anchored = await anchor_elements(self.gateway, image, elements, tracking)
            self._account(result, anchored.usage)
            result.stage_status['anchoring'] = anchored.status
            result.labels = len(anchored.elements)
            check()

            # Stage 4
            component_ids = await self._assign_components(screenshot_id, anchored.elements, components)
            detections = await detect_elements(
                self.gateway, image, anchored, tracking, component_ids, cancel_token
            )
            for detection in detections:
                self._account(result, detection.usage)
                result.inference_time_ms += detection.inference_time_ms
                if detection.error:
                    result.label_errors[detection.label] = detection.error
            saved = await self._save_elements(screenshot_id, detections)
            result.elements_detected = len(saved)
            result.stage_status['vlm_labeling'] = 'complete' if saved else 'empty'

            # Stage 5
            if self.score_accuracy and saved:
                check()
                report = await score_accuracy(
                    self.gateway, image, [candidate for _, candidate in saved], tracking
                )
                self._account(result, report.usage)
                result.stage_status['accuracy_validation'] = report.status
                await self._save_scores(saved, report)
                result.scored = bool(report.scores)

            await self._finish_components(components, component_ids, detections)

            result.processing_time_ms = int((time.time() - start_time) * 1000)
            await _db(update_screenshot, self.store, screenshot_id, {
                'screenshot_processing_status': 'completed',
                'screenshot_processing_time': result.processing_time_ms
            })
            result.success = True

            print(
                f"{tag} Done: {result.components} components, {result.labels} labels, "
                f"{result.elements_detected} boxes in {result.processing_time_ms}ms",
                flush=True
            )

        except (RecordStoreError, BatchCancelled):
            raise
        except Exception as e:
            result.processing_time_ms = int((time.time() - start_time) * 1000)
            result.error = f"{type(e).__name__}: {e}"
            print(f"{tag} Failed: {result.error}", flush=True)
            await self._mark_failed(screenshot_id, components, result)

        return result

    # ===== ACCOUNTING =====

    @staticmethod
    def _account(result, usages):
        for usage in usages:
            result.input_tokens += usage.input_tokens
            result.output_tokens += usage.output_tokens
            result.cost = round(result.cost + usage.cost, 6)

    # ===== PERSISTENCE =====

    async def _save_components(self, screenshot_id, discovery) -> Dict[str, Dict]:
        usage = discovery.usage[0] if discovery.usage else None
        saved = {}

        for item in discovery.components:
            row = await _db(create_component, self.store, {
                'screenshot_id': screenshot_id,
                'component_name': item.name,
                'component_description': item.description,
                'component_cta_type': item.cta_type,
                'component_reusable': item.reusable,
                'component_extraction_model': usage.model if usage else None,
                'component_extraction_time': usage.duration_ms if usage else None,
                'component_input_tokens': usage.input_tokens if usage else 0,
                'component_output_tokens': usage.output_tokens if usage else 0,
                'component_cost': usage.cost if usage else 0,
                'component_status': 'pending'
            })
            if row:
                saved[item.name] = row

        return saved

    async def _assign_components(self, screenshot_id, labels, components) -> Dict[str, int]:
        """
        Map each label to the component it belongs to.

        The first label segment is matched against discovered component names.
        Labels naming an unknown component are filed under their hierarchical
        group, which is created as a component when missing.
        """
        groups = determine_hierarchical_groups(labels)
        by_name = {name.lower(): row for name, row in components.items()}
        component_ids = {}

        for label in labels:
            parts = split_label(label)
            top = parts[0] if parts else label
            row = by_name.get(top.lower())

            if row is None:
                group = groups.get(label, top)
                row = by_name.get(group.lower())
                if row is None:
                    row = await _db(create_component, self.store, {
                        'screenshot_id': screenshot_id,
                        'component_name': group,
                        'component_description': '',
                        'component_cta_type': 'none',
                        'component_reusable': False,
                        'component_status': 'pending'
                    })
                    if not row:
                        continue
                    by_name[group.lower()] = row
                    components[group] = row

            component_ids[label] = row['component_id']

        return component_ids

    async def _save_elements(self, screenshot_id, detections) -> List[tuple]:
        """One element row per detected box; returns (row, BoxCandidate) pairs"""
        saved = []

        for detection in detections:
            if detection.component_id is None:
                continue
            for box in detection.boxes:
                row = await _db(create_element, self.store, {
                    'screenshot_id': screenshot_id,
                    'component_id': detection.component_id,
                    'element_x_min': box.x_min,
                    'element_y_min': box.y_min,
                    'element_x_max': box.x_max,
                    'element_y_max': box.y_max,
                    'element_text_label': detection.label,
                    'element_description': detection.description,
                    'element_inference_time': detection.inference_time_ms,
                    'element_vlm_model': detection.model,
                    'element_vlm_label_status': detection.status,
                    'element_accuracy_score': None,
                    'element_suggested_coordinates': None
                })
                if row:
                    candidate = BoxCandidate(
                        key=f"el_{len(saved) + 1}",
                        label=detection.label,
                        description=detection.description,
                        box=box
                    )
                    saved.append((row, candidate))

        return saved

    async def _save_scores(self, saved, report):
        rows = {candidate.key: row for row, candidate in saved}

        for score in report.scores:
            row = rows.get(score.key)
            if row is None:
                continue
            await _db(bump_element, self.store, row, {
                'element_accuracy_score': score.accuracy,
                'element_hidden': score.hidden,
                'element_accuracy_explanation': score.explanation,
                'element_suggested_coordinates': score.suggested.to_dict() if score.suggested else None,
                'element_vlm_label_status': OVERWRITE if score.suggested else row.get('element_vlm_label_status')
            })

    async def _finish_components(self, components, component_ids, detections):
        """Set each component's region and final status from its detections"""
        by_component = {}
        for detection in detections:
            by_component.setdefault(detection.component_id, []).append(detection)

        for row in components.values():
            own = by_component.get(row['component_id'], [])
            region = union_box(box for d in own for box in d.boxes)
            errored = bool(own) and all(d.status == DETECTION_ERROR for d in own)

            updates = {'component_status': 'error' if errored else 'extracted'}
            if region is not None:
                updates.update({
                    'component_x_min': region.x_min,
                    'component_y_min': region.y_min,
                    'component_x_max': region.x_max,
                    'component_y_max': region.y_max
                })
            await _db(update_component, self.store, row['component_id'], updates)

    async def _mark_failed(self, screenshot_id, components, result):
        await _db(update_screenshot, self.store, screenshot_id, {
            'screenshot_processing_status': 'error',
            'screenshot_processing_time': result.processing_time_ms,
            'screenshot_error_message': result.error
        })
        for row in components.values():
            await _db(update_component, self.store, row['component_id'], {'component_status': 'error'})


# ============================================================
# ORCHESTRATOR
# ============================================================

async def run_extraction(
    batch_id,
    screenshots: List[Dict],
    unit: ScreenshotUnit,
    max_concurrency: Optional[int] = None,
    cancel_token=None
) -> Dict[int, ScreenshotResult]:
    """
    Run one unit per screenshot, at most max_concurrency at a time.

    Returns:
        Dict of screenshot_id -> ScreenshotResult (success or error marker)

    Raises:
        RecordStoreError, BatchCancelled: remaining units are cancelled first
    """
    max_concurrency = max_concurrency or config.MAX_CONCURRENT_SCREENSHOTS
    semaphore = asyncio.Semaphore(max_concurrency)

    async def run_one(screenshot):
        async with semaphore:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            return await unit.run(screenshot, cancel_token)

    tasks = [asyncio.ensure_future(run_one(s)) for s in screenshots]
    results = {}
    completed = 0
    total = len(tasks)

    try:
        for coro in asyncio.as_completed(tasks):
            result = await coro
            results[result.screenshot_id] = result
            completed += 1

            if completed % 5 == 0 or completed == total:
                print(f"[Batch {batch_id}] Extracted {completed}/{total} screenshots", flush=True)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    return results
