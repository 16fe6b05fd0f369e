"""
Prompt log repository - append-only audit rows for model calls
"""


def create_prompt_log(client, data):
    """Append one prompt log row"""
    result = client.request('POST', 'prompt_log', data)
    return result[0] if result else None


def get_prompt_logs_by_batch(client, batch_id, log_type=None):
    """Get all prompt logs for a batch"""
    filters = {'batch_id': f'eq.{batch_id}', 'order': 'prompt_log_id'}

    if log_type:
        filters['prompt_log_type'] = f'eq.{log_type}'

    return client.request('GET', 'prompt_log', filters=filters) or []
