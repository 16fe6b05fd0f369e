"""
Batch repository - CRUD operations for batch
"""

from datetime import datetime, timezone


def get_batch(client, batch_id):
    """Get batch by ID"""
    result = client.request('GET', 'batch', filters={'batch_id': f'eq.{batch_id}'})
    return result[0] if result else None


def create_batch(client, data):
    """Create new batch"""
    result = client.request('POST', 'batch', data)
    return result[0] if result else None


def update_batch(client, batch_id, updates):
    """Update batch by ID, stamping updated_at"""
    updates = dict(updates, updated_at=datetime.now(timezone.utc).isoformat())
    return client.request('PATCH', 'batch', updates, {'batch_id': f'eq.{batch_id}'})


def list_batches(client, limit=50):
    """List recent batches"""
    return client.request('GET', 'batch', filters={
        'order': 'batch_created_at.desc',
        'limit': str(limit)
    }) or []
