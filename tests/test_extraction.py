"""
Tests for the per-screenshot unit and the batch orchestrator.
"""

import asyncio
import json

import pytest

from core.base import ProviderError
from core.gateway import ModelGateway
from database.client import RecordStoreError
from services.extraction_service import ScreenshotResult, ScreenshotUnit, run_extraction
from services.stages import DETECTED, OVERWRITE
from utils.cancellation import BatchCancelled, CancellationToken
from tests.conftest import default_claude, fake_image_loader, make_providers


def add_screenshots(store, batch_id, count):
    rows = []
    for i in range(count):
        rows.append(store.request('POST', 'screenshot', {
            'batch_id': batch_id,
            'screenshot_file_name': f"shot-{i}.png",
            'screenshot_processing_status': 'pending',
            'screenshot_signed_url': f"https://signed.test/shot-{i}.png",
        })[0])
    return rows


def make_unit(store, providers=None, score=False):
    gateway = ModelGateway(None, providers or make_providers(), store)
    return ScreenshotUnit(store, gateway, fake_image_loader, batch_id=1, score_accuracy=score)


# ============================================================
# SCREENSHOT UNIT
# ============================================================

@pytest.mark.asyncio
async def test_unit_persists_components_and_elements(store):
    shot = add_screenshots(store, 1, 1)[0]

    result = await make_unit(store).run(shot)

    assert result.success
    assert result.components == 1
    assert result.elements_detected == 1
    assert result.input_tokens == 3000
    assert result.processing_time_ms >= 0

    component = store.rows('component')[0]
    assert component['component_name'] == "Header"
    assert component['component_status'] == 'extracted'
    assert (component['component_x_min'], component['component_y_max']) == (40, 120)

    element = store.rows('element')[0]
    assert element['component_id'] == component['component_id']
    assert element['element_text_label'] == "Header > Title"
    assert element['element_vlm_label_status'] == DETECTED
    assert (element['element_x_min'], element['element_y_min'], element['element_x_max'], element['element_y_max']) == (40, 40, 360, 120)
    assert element['element_version_number'] == 1

    screenshot = store.rows('screenshot')[0]
    assert screenshot['screenshot_processing_status'] == 'completed'

    assert [log['prompt_log_type'] for log in store.rows('prompt_log')] == [
        'component_extraction', 'element_extraction', 'anchoring', 'vlm_labeling'
    ]


@pytest.mark.asyncio
async def test_unknown_component_label_gets_grouped_component(store):
    shot = add_screenshots(store, 1, 1)[0]

    def claude(image, prompt):
        if '<component_list>' in prompt:
            return json.dumps({
                "Header > Title": "Title",
                "Promo Banner > Headline": "Headline",
                "Promo Banner > Button": "Button",
            })
        return default_claude(image, prompt)

    result = await make_unit(store, make_providers(claude=claude)).run(shot)

    assert result.success
    names = sorted(c['component_name'] for c in store.rows('component'))
    assert names == ["Header", "Promo Banner"]
    assert result.elements_detected == 3


@pytest.mark.asyncio
async def test_scoring_bumps_element_versions(store):
    shot = add_screenshots(store, 1, 1)[0]

    def claude(image, prompt):
        if '<detections>' in prompt:
            return json.dumps([{
                "id": "el_1", "accuracy": 20, "hidden": False, "explanation": "Too wide",
                "suggested_coordinates": {"x_min": 50, "y_min": 45, "x_max": 300, "y_max": 110}
            }])
        return default_claude(image, prompt)

    result = await make_unit(store, make_providers(claude=claude), score=True).run(shot)

    assert result.scored
    element = store.rows('element')[0]
    assert element['element_accuracy_score'] == 20
    assert element['element_vlm_label_status'] == OVERWRITE
    assert element['element_suggested_coordinates'] == {"x_min": 50, "y_min": 45, "x_max": 300, "y_max": 110}
    assert element['element_version_number'] == 2


@pytest.mark.asyncio
async def test_stage_failure_marks_only_that_screenshot(store):
    shot = add_screenshots(store, 1, 1)[0]

    def claude(image, prompt):
        raise ProviderError('claude', 'HTTP 500: internal error', status=500)

    result = await make_unit(store, make_providers(claude=claude)).run(shot)

    assert not result.success
    assert "internal error" in result.error
    assert store.rows('screenshot')[0]['screenshot_processing_status'] == 'error'
    assert store.rows('component')[0]['component_status'] == 'error'
    assert store.rows('element') == []


@pytest.mark.asyncio
async def test_record_store_failure_escapes_the_unit(store):
    shot = add_screenshots(store, 1, 1)[0]
    store.fail_on.add(('POST', 'element'))

    with pytest.raises(RecordStoreError):
        await make_unit(store).run(shot)


@pytest.mark.asyncio
async def test_missing_signed_url_is_a_screenshot_error(store):
    shot = add_screenshots(store, 1, 1)[0]
    shot['screenshot_signed_url'] = None

    result = await make_unit(store).run(shot)

    assert not result.success
    assert store.rows('prompt_log') == []


# ============================================================
# ORCHESTRATOR
# ============================================================

class RecordingUnit:
    """Unit double that records how many runs overlap"""

    def __init__(self, delay=0.02, fail_ids=(), store_error_ids=()):
        self.delay = delay
        self.fail_ids = set(fail_ids)
        self.store_error_ids = set(store_error_ids)
        self.active = 0
        self.peak = 0
        self.started = []
        self.cancelled = []

    async def run(self, screenshot, cancel_token=None):
        screenshot_id = screenshot['screenshot_id']
        self.started.append(screenshot_id)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if screenshot_id in self.store_error_ids:
                await asyncio.sleep(0)
                raise RecordStoreError("store down")
            await asyncio.sleep(self.delay)
            if screenshot_id in self.fail_ids:
                return ScreenshotResult(screenshot_id=screenshot_id, error="ProviderError: boom")
            return ScreenshotResult(screenshot_id=screenshot_id, success=True)
        except asyncio.CancelledError:
            self.cancelled.append(screenshot_id)
            raise
        finally:
            self.active -= 1


@pytest.mark.asyncio
async def test_concurrency_is_bounded():
    unit = RecordingUnit()
    screenshots = [{'screenshot_id': i} for i in range(1, 11)]

    results = await run_extraction(1, screenshots, unit, max_concurrency=3)

    assert unit.peak == 3
    assert sorted(results) == list(range(1, 11))


@pytest.mark.asyncio
async def test_failed_screenshot_does_not_stop_the_batch():
    unit = RecordingUnit(fail_ids={4})
    screenshots = [{'screenshot_id': i} for i in range(1, 8)]

    results = await run_extraction(1, screenshots, unit, max_concurrency=2)

    assert len(results) == 7
    assert [i for i, r in results.items() if not r.success] == [4]


@pytest.mark.asyncio
async def test_record_store_error_cancels_remaining_units():
    unit = RecordingUnit(delay=0.05, store_error_ids={1})
    screenshots = [{'screenshot_id': i} for i in range(1, 6)]

    with pytest.raises(RecordStoreError):
        await run_extraction(1, screenshots, unit, max_concurrency=2)

    assert 2 in unit.cancelled
    assert len(unit.started) < 5


@pytest.mark.asyncio
async def test_cancelled_batch_stops_before_next_unit():
    token = CancellationToken(1)
    token.cancel("user request")
    unit = RecordingUnit()

    with pytest.raises(BatchCancelled):
        await run_extraction(1, [{'screenshot_id': 1}], unit, max_concurrency=1, cancel_token=token)

    assert unit.started == []


@pytest.mark.asyncio
async def test_fault_isolation_end_to_end(store):
    shots = add_screenshots(store, 1, 4)
    bad_url = shots[2]['screenshot_signed_url']

    def claude(image, prompt):
        if image.url == bad_url and '<component_list>' in prompt:
            raise ProviderError('claude', 'HTTP 529: overloaded', status=529)
        return default_claude(image, prompt)

    unit = make_unit(store, make_providers(claude=claude))
    results = await run_extraction(1, shots, unit, max_concurrency=2)

    failed = [sid for sid, r in results.items() if not r.success]
    assert failed == [shots[2]['screenshot_id']]
    statuses = {s['screenshot_id']: s['screenshot_processing_status'] for s in store.rows('screenshot')}
    assert statuses[shots[2]['screenshot_id']] == 'error'
    assert sum(1 for s in statuses.values() if s == 'completed') == 3
    assert len(store.rows('element')) == 3
