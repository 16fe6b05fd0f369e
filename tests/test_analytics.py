"""
Tests for batch analytics and the annotation view.
"""

import pytest

from services.analytics_service import element_annotation, get_batch_analytics, get_batch_annotations
from tests.conftest import public_url


def test_missing_batch(store):
    assert get_batch_analytics(store, 99) is None


def test_breakdown_by_prompt_type(store):
    store.request('POST', 'batch', {'batch_name': 'B', 'batch_status': 'annotating', 'batch_detected_elements_count': 2})
    for log_type, duration, cost, error in [
        ('component_extraction', 1200, 0.001, None),
        ('vlm_labeling', 400, 0.0, None),
        ('vlm_labeling', 600, 0.0, None),
        ('vlm_labeling', 500, 0.0, 'moondream: HTTP 500'),
    ]:
        store.request('POST', 'prompt_log', {
            'batch_id': 1,
            'prompt_log_type': log_type,
            'prompt_log_model': 'm',
            'prompt_log_duration': duration,
            'prompt_log_cost': cost,
            'prompt_log_input_tokens': 100,
            'prompt_log_output_tokens': 10,
            'prompt_log_error': error,
        })

    analytics = get_batch_analytics(store, 1)

    summary = analytics['batch_summary']
    assert summary['total_prompts'] == 4
    assert summary['total_inference_seconds'] == 2.7
    assert summary['elements_labeled'] == 3
    assert summary['avg_seconds_per_element'] == 0.9
    assert summary['total_input_tokens'] == 400
    assert summary['total_cost'] == pytest.approx(0.001)

    labeling = next(e for e in analytics['prompt_type_summary'] if e['prompt_log_type'] == 'vlm_labeling')
    assert labeling['prompts_ran'] == 3
    assert labeling['failed'] == 1
    assert labeling['avg_duration_ms'] == 500
    assert labeling['models'] == ['m']


@pytest.mark.asyncio
async def test_annotations_after_a_run(store, make_controller):
    controller = make_controller()
    batch, _ = controller.register_batch("B", "default", [public_url("flow/home.png")])
    await controller.start_batch_extraction(batch['batch_id'])

    screenshots = get_batch_annotations(store, batch['batch_id'])

    assert len(screenshots) == 1
    component = screenshots[0]['components'][0]
    assert component['name'] == "Header"
    assert component['status'] == 'extracted'
    assert component['elements'][0]['label'] == "Header > Title"
    assert component['elements'][0]['bounding_box'] == {"x_min": 40, "y_min": 40, "x_max": 360, "y_max": 120}

    summary = get_batch_analytics(store, batch['batch_id'])['batch_summary']
    assert summary['total_prompts'] == 4
    assert summary['elements_detected'] == 1


def test_element_annotation_optional_fields():
    base = {'element_id': 1, 'element_text_label': 'A > B', 'element_version_number': 2}
    assert 'accuracy_score' not in element_annotation(base)

    scored = element_annotation(dict(base, element_accuracy_score=40,
                                     element_suggested_coordinates={"x_min": 1, "y_min": 2, "x_max": 3, "y_max": 4}))
    assert scored['accuracy_score'] == 40
    assert scored['suggested_coordinates']['x_max'] == 3
