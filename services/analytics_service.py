"""
Batch analytics - totals from the prompt log and the annotation view of a batch
"""

from collections import OrderedDict

from database import (
    get_batch, get_prompt_logs_by_batch, get_screenshots_by_batch,
    get_components_by_screenshot, get_elements_by_screenshot
)

VLM_LABELING_TYPE = 'vlm_labeling'


def get_batch_analytics(store, batch_id):
    """
    Summarize every model call logged for a batch.

    Returns:
        Dict with batch_summary and per prompt-type breakdown, or None if
        the batch does not exist
    """
    batch = get_batch(store, batch_id)
    if not batch:
        return None

    logs = get_prompt_logs_by_batch(store, batch_id)

    by_type = OrderedDict()
    for log in logs:
        log_type = log.get('prompt_log_type') or 'unknown'
        entry = by_type.setdefault(log_type, {
            'prompt_log_type': log_type,
            'prompts_ran': 0,
            'failed': 0,
            'input_tokens': 0,
            'output_tokens': 0,
            'cost': 0.0,
            'total_duration_ms': 0,
            'models': set()
        })
        entry['prompts_ran'] += 1
        entry['failed'] += 1 if log.get('prompt_log_error') else 0
        entry['input_tokens'] += log.get('prompt_log_input_tokens') or 0
        entry['output_tokens'] += log.get('prompt_log_output_tokens') or 0
        entry['cost'] += log.get('prompt_log_cost') or 0
        entry['total_duration_ms'] += log.get('prompt_log_duration') or 0
        if log.get('prompt_log_model'):
            entry['models'].add(log['prompt_log_model'])

    breakdown = []
    for entry in by_type.values():
        entry['models'] = sorted(entry['models'])
        entry['cost'] = round(entry['cost'], 6)
        entry['avg_duration_ms'] = round(entry['total_duration_ms'] / entry['prompts_ran']) if entry['prompts_ran'] else 0
        breakdown.append(entry)

    total_duration_ms = sum(e['total_duration_ms'] for e in breakdown)
    labeling_calls = by_type.get(VLM_LABELING_TYPE, {}).get('prompts_ran', 0)

    return {
        'batch_summary': {
            'batch_id': batch_id,
            'batch_name': batch.get('batch_name'),
            'batch_status': batch.get('batch_status'),
            'total_prompts': len(logs),
            'total_inference_seconds': round(total_duration_ms / 1000, 2),
            'elements_labeled': labeling_calls,
            'elements_detected': batch.get('batch_detected_elements_count') or 0,
            'avg_seconds_per_element': round(total_duration_ms / 1000 / labeling_calls, 2) if labeling_calls else 0,
            'total_input_tokens': sum(e['input_tokens'] for e in breakdown),
            'total_output_tokens': sum(e['output_tokens'] for e in breakdown),
            'total_cost': round(sum(e['cost'] for e in breakdown), 6),
            'master_prompt_runtime_ms': batch.get('batch_master_prompt_runtime')
        },
        'prompt_type_summary': breakdown
    }


def element_annotation(element):
    """The shape a presentation layer reads for one element"""
    annotation = {
        'element_id': element.get('element_id'),
        'label': element.get('element_text_label'),
        'description': element.get('element_description'),
        'bounding_box': {
            'x_min': element.get('element_x_min'),
            'y_min': element.get('element_y_min'),
            'x_max': element.get('element_x_max'),
            'y_max': element.get('element_y_max')
        },
        'inference_time': element.get('element_inference_time'),
        'status': element.get('element_vlm_label_status'),
        'version': element.get('element_version_number')
    }

    if element.get('element_accuracy_score') is not None:
        annotation['accuracy_score'] = element['element_accuracy_score']
    if element.get('element_suggested_coordinates'):
        annotation['suggested_coordinates'] = element['element_suggested_coordinates']

    return annotation


def get_batch_annotations(store, batch_id):
    """Components and elements per screenshot of a batch"""
    screenshots = []

    for screenshot in get_screenshots_by_batch(store, batch_id):
        screenshot_id = screenshot['screenshot_id']
        elements = get_elements_by_screenshot(store, screenshot_id)

        components = []
        for component in get_components_by_screenshot(store, screenshot_id):
            components.append({
                'component_id': component['component_id'],
                'name': component.get('component_name'),
                'description': component.get('component_description'),
                'cta_type': component.get('component_cta_type'),
                'reusable': component.get('component_reusable'),
                'status': component.get('component_status'),
                'elements': [
                    element_annotation(e) for e in elements
                    if e.get('component_id') == component['component_id']
                ]
            })

        screenshots.append({
            'screenshot_id': screenshot_id,
            'screenshot_file_name': screenshot.get('screenshot_file_name'),
            'screenshot_processing_status': screenshot.get('screenshot_processing_status'),
            'components': components
        })

    return screenshots
