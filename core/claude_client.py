"""
Async Claude Vision API client
"""

from typing import Optional

import aiohttp

from config import config
from core.base import HTTPProvider, ProviderResponse
from core.images import ImageRef


class AsyncClaudeClient(HTTPProvider):
    """Claude Vision over aiohttp"""

    name = 'claude'

    def __init__(self, api_key=None, model=None, timeout=None):
        super().__init__(
            api_key or config.ANTHROPIC_API_KEY,
            model or config.CLAUDE_MODEL,
            config.ANTHROPIC_URL,
            timeout
        )

    async def generate(
        self,
        session: aiohttp.ClientSession,
        image: Optional[ImageRef],
        prompt: str
    ) -> ProviderResponse:
        """Send one image + prompt and return the text answer"""
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json"
        }

        content = []
        if image is not None:
            content.append({
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image.media_type,
                    "data": image.base64
                }
            })
        content.append({"type": "text", "text": prompt})

        payload = {
            "model": self.model,
            "max_tokens": config.MAX_OUTPUT_TOKENS,
            "messages": [{"role": "user", "content": content}]
        }

        result = await self._post_json(session, headers, payload)

        usage = result.get('usage', {})
        text = ''.join(
            block.get('text', '') for block in result.get('content', [])
            if block.get('type') == 'text'
        )

        return ProviderResponse(
            text=text,
            model=result.get('model', self.model),
            input_tokens=usage.get('input_tokens', 0),
            output_tokens=usage.get('output_tokens', 0),
            request_id=result.get('id')
        )
