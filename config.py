"""
Centralized configuration for the Annotation Extraction API
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default):
    return os.getenv(name, default).lower() == 'true'


class Config:
    """Application configuration"""

    # Flask
    DEBUG = _env_bool('FLASK_DEBUG', 'false')
    PORT = int(os.getenv('PORT', 5050))

    # External APIs
    ANTHROPIC_API_KEY = os.getenv('ANTHROPIC_API_KEY')
    OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
    MOONDREAM_API_KEY = os.getenv('MOONDREAM_API_KEY')

    ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
    OPENAI_URL = "https://api.openai.com/v1/chat/completions"
    MOONDREAM_DETECT_URL = "https://api.moondream.ai/v1/detect"

    # Models (haiku keeps local runs cheap)
    CLAUDE_MODEL = os.getenv(
        'CLAUDE_MODEL',
        'claude-3-5-haiku-20241022' if DEBUG else 'claude-3-7-sonnet-20250219'
    )
    OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4.1-mini-2025-04-14')
    MOONDREAM_MODEL = 'Moondream-vl-Detect'

    # Supabase
    SUPABASE_URL = os.getenv('SUPABASE_URL', 'http://localhost:54321')
    SUPABASE_KEY = os.getenv('SUPABASE_KEY')
    SUPABASE_BUCKET_NAME = os.getenv('SUPABASE_BUCKET_NAME', 'screenshots')

    # Signed URLs
    SIGNED_URL_TTL_SECONDS = int(os.getenv('SIGNED_URL_TTL_SECONDS', 3600))
    SIGNED_URL_CACHE_SIZE = int(os.getenv('SIGNED_URL_CACHE_SIZE', 500))

    # Processing
    MAX_CONCURRENT_SCREENSHOTS = int(os.getenv('MAX_CONCURRENT_SCREENSHOTS', 5))
    API_TIMEOUT_SECONDS = 180
    IMAGE_TIMEOUT_SECONDS = 30
    MAX_OUTPUT_TOKENS = 4000

    # Per-provider token buckets: (requests per second, burst)
    PROVIDER_RATE_LIMITS = {
        'claude': (float(os.getenv('CLAUDE_REQUESTS_PER_SECOND', 2)), int(os.getenv('CLAUDE_BURST', 4))),
        'openai': (float(os.getenv('OPENAI_REQUESTS_PER_SECOND', 2)), int(os.getenv('OPENAI_BURST', 4))),
        'moondream': (float(os.getenv('MOONDREAM_REQUESTS_PER_SECOND', 4)), int(os.getenv('MOONDREAM_BURST', 2))),
    }

    # Which provider answers which stage
    STAGE_PROVIDERS = {
        'component_extraction': 'openai',
        'element_extraction': 'claude',
        'anchoring': 'claude',
        'vlm_labeling': 'moondream',
        'accuracy_validation': 'claude',
    }

    # Accuracy scoring
    ACCURACY_SCORING_ENABLED = _env_bool('ACCURACY_SCORING_ENABLED', 'true')
    ACCURACY_THRESHOLD_HIGH = 85
    ACCURACY_THRESHOLD_MEDIUM = 70
    ACCURACY_THRESHOLD_LOW = 50

    # Valid CTA classifications
    VALID_CTA_TYPES = {'primary', 'secondary', 'informational', 'none'}


# Singleton instance
config = Config()
