"""
Screenshot repository - CRUD operations for screenshot
"""


def create_screenshot(client, data):
    """Create new screenshot"""
    result = client.request('POST', 'screenshot', data)
    return result[0] if result else None


def update_screenshot(client, screenshot_id, updates):
    """Update screenshot by ID"""
    return client.request('PATCH', 'screenshot', updates, {'screenshot_id': f'eq.{screenshot_id}'})


def get_screenshots_by_batch(client, batch_id, status=None):
    """Get all screenshots for a batch"""
    filters = {'batch_id': f'eq.{batch_id}', 'order': 'screenshot_id'}

    if status:
        filters['screenshot_processing_status'] = f'eq.{status}'

    return client.request('GET', 'screenshot', filters=filters) or []


def reset_screenshots_by_batch(client, batch_id):
    """Put every screenshot of a batch back to pending"""
    return client.request('PATCH', 'screenshot', {
        'screenshot_processing_status': 'pending',
        'screenshot_processing_time': None,
        'screenshot_error_message': None
    }, {'batch_id': f'eq.{batch_id}'})
