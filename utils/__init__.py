"""
Utils module exports
"""

from utils.validation import (
    normalize_cta_type,
    normalize_reusable,
    parse_batch_id
)
from utils.rate_limiter import TokenBucket, build_provider_limiters
from utils.cancellation import CancellationToken, BatchCancelled

__all__ = [
    'normalize_cta_type',
    'normalize_reusable',
    'parse_batch_id',
    'TokenBucket',
    'build_provider_limiters',
    'CancellationToken',
    'BatchCancelled'
]
