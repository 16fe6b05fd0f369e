"""
Database module exports
"""

from database.client import SupabaseClient, RecordStoreError, create_client
from database.storage import StorageClient, StorageError, get_screenshot_path
from database.repositories.batch_repository import (
    get_batch, create_batch, update_batch, list_batches
)
from database.repositories.screenshot_repository import (
    create_screenshot, update_screenshot,
    get_screenshots_by_batch, reset_screenshots_by_batch
)
from database.repositories.component_repository import (
    create_component, update_component,
    get_components_by_screenshot, delete_components_by_screenshots
)
from database.repositories.element_repository import (
    create_element, bump_element,
    get_elements_by_screenshot,
    delete_elements_by_screenshots
)
from database.repositories.prompt_log_repository import (
    create_prompt_log, get_prompt_logs_by_batch
)

__all__ = [
    # Client
    'SupabaseClient', 'RecordStoreError', 'create_client',

    # Storage
    'StorageClient', 'StorageError', 'get_screenshot_path',

    # Batches
    'get_batch', 'create_batch', 'update_batch', 'list_batches',

    # Screenshots
    'create_screenshot', 'update_screenshot',
    'get_screenshots_by_batch', 'reset_screenshots_by_batch',

    # Components
    'create_component', 'update_component',
    'get_components_by_screenshot', 'delete_components_by_screenshots',

    # Elements
    'create_element', 'bump_element',
    'get_elements_by_screenshot',
    'delete_elements_by_screenshots',

    # Prompt logs
    'create_prompt_log', 'get_prompt_logs_by_batch'
]
