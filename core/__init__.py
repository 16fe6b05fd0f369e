"""
Core module exports - external model integrations
"""

from core.base import ProviderError, ImageFetchError, ProviderResponse
from core.images import ImageRef, fetch_image, image_from_bytes
from core.claude_client import AsyncClaudeClient
from core.openai_client import AsyncOpenAIClient
from core.moondream_client import AsyncMoondreamClient
from core.parsing import ParseResult, parse_json_response
from core.pricing import compute_cost, MODEL_PRICES
from core.gateway import (
    ModelGateway, GatewayResult, TrackingContext, Usage, STAGE_TAGS
)

__all__ = [
    # Errors / shapes
    'ProviderError', 'ImageFetchError', 'ProviderResponse',

    # Images
    'ImageRef', 'fetch_image', 'image_from_bytes',

    # Providers
    'AsyncClaudeClient', 'AsyncOpenAIClient', 'AsyncMoondreamClient',

    # Parsing / pricing
    'ParseResult', 'parse_json_response',
    'compute_cost', 'MODEL_PRICES',

    # Gateway
    'ModelGateway', 'GatewayResult', 'TrackingContext', 'Usage', 'STAGE_TAGS'
]
