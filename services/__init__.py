"""
Services module exports
"""

from services.signed_url_cache import SignedUrlCache
from services.stages import (
    discover_components,
    discover_elements,
    anchor_elements,
    detect_element,
    detect_elements,
    score_accuracy
)
from services.extraction_service import (
    ScreenshotUnit,
    ScreenshotResult,
    run_extraction
)
from services.batch_service import (
    BatchController,
    BatchRunSummary,
    BackgroundLoop,
    BatchNotFound,
    BatchAlreadyRunning,
    InvalidTransition,
    build_controller,
    run_batch_background
)
from services.analytics_service import (
    get_batch_analytics,
    get_batch_annotations,
    element_annotation
)

__all__ = [
    # Signed URLs
    'SignedUrlCache',

    # Stages
    'discover_components',
    'discover_elements',
    'anchor_elements',
    'detect_element',
    'detect_elements',
    'score_accuracy',

    # Orchestration
    'ScreenshotUnit',
    'ScreenshotResult',
    'run_extraction',

    # Lifecycle
    'BatchController',
    'BatchRunSummary',
    'BackgroundLoop',
    'BatchNotFound',
    'BatchAlreadyRunning',
    'InvalidTransition',
    'build_controller',
    'run_batch_background',

    # Analytics
    'get_batch_analytics',
    'get_batch_annotations',
    'element_annotation'
]
