"""
Element repository - CRUD operations for element

Every update goes through bump_element so the version number moves with each
mutation.
"""

from datetime import datetime, timezone


def _now():
    return datetime.now(timezone.utc).isoformat()


def create_element(client, data):
    """Create new element at version 1"""
    data = dict(data, element_version_number=1, element_updated_at=_now())
    result = client.request('POST', 'element', data)
    return result[0] if result else None


def bump_element(client, element, updates):
    """
    Update an element and increment its version.

    Args:
        client: Record store client
        element: Current element row (needs element_id and element_version_number)
        updates: Column values to write

    Returns:
        The updated row, or None if the store returned nothing
    """
    updates = dict(
        updates,
        element_version_number=(element.get('element_version_number') or 0) + 1,
        element_updated_at=_now()
    )
    result = client.request('PATCH', 'element', updates, {'element_id': f"eq.{element['element_id']}"})
    return result[0] if result else None


def get_elements_by_screenshot(client, screenshot_id):
    """Get all elements for a screenshot"""
    return client.request('GET', 'element', filters={
        'screenshot_id': f'eq.{screenshot_id}',
        'order': 'component_id,element_id'
    }) or []


def delete_elements_by_screenshots(client, screenshot_ids):
    """Delete all elements belonging to the given screenshots"""
    if not screenshot_ids:
        return []
    ids = ','.join(str(i) for i in screenshot_ids)
    return client.request('DELETE', 'element', filters={'screenshot_id': f'in.({ids})'})
