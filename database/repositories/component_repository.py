"""
Component repository - CRUD operations for component
"""


def create_component(client, data):
    """Create new component"""
    result = client.request('POST', 'component', data)
    return result[0] if result else None


def update_component(client, component_id, updates):
    """Update component by ID"""
    return client.request('PATCH', 'component', updates, {'component_id': f'eq.{component_id}'})


def get_components_by_screenshot(client, screenshot_id):
    """Get all components for a screenshot"""
    return client.request('GET', 'component', filters={
        'screenshot_id': f'eq.{screenshot_id}',
        'order': 'component_id'
    }) or []


def delete_components_by_screenshots(client, screenshot_ids):
    """Delete all components belonging to the given screenshots"""
    if not screenshot_ids:
        return []
    ids = ','.join(str(i) for i in screenshot_ids)
    return client.request('DELETE', 'component', filters={'screenshot_id': f'in.({ids})'})
