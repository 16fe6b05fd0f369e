"""
Validation utilities
"""

from config import config


def normalize_cta_type(raw_type):
    """
    Normalize a component CTA classification to a valid value.

    Args:
        raw_type: Raw CTA type string from the model

    Returns:
        One of primary, secondary, informational, none
    """
    if not raw_type or not isinstance(raw_type, str):
        return 'none'

    cleaned = raw_type.lower().strip()

    if cleaned in config.VALID_CTA_TYPES:
        return cleaned

    mappings = {
        'primary cta': 'primary',
        'main': 'primary',
        'secondary cta': 'secondary',
        'info': 'informational',
        'information': 'informational',
        'informative': 'informational',
        'n/a': 'none',
        'null': 'none',
    }

    return mappings.get(cleaned, 'none')


def normalize_reusable(value):
    """Coerce the model's reuse flag to a bool"""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ('true', 'yes', '1')
    return False


def parse_batch_id(batch_id):
    """
    Parse a batch ID coming from a request.

    Returns:
        Positive int, or None when missing/invalid
    """
    if batch_id is None or isinstance(batch_id, bool):
        return None

    try:
        value = int(str(batch_id).strip())
    except (TypeError, ValueError):
        return None

    return value if value > 0 else None
