"""
Async OpenAI chat completions client (vision)
"""

from typing import Optional

import aiohttp

from config import config
from core.base import HTTPProvider, ProviderResponse
from core.images import ImageRef


class AsyncOpenAIClient(HTTPProvider):
    """OpenAI vision chat completions over aiohttp"""

    name = 'openai'

    def __init__(self, api_key=None, model=None, timeout=None):
        super().__init__(
            api_key or config.OPENAI_API_KEY,
            model or config.OPENAI_MODEL,
            config.OPENAI_URL,
            timeout
        )

    async def generate(
        self,
        session: aiohttp.ClientSession,
        image: Optional[ImageRef],
        prompt: str
    ) -> ProviderResponse:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        content = [{"type": "text", "text": prompt}]
        if image is not None:
            content.append({"type": "image_url", "image_url": {"url": image.data_url}})

        payload = {
            "model": self.model,
            "max_completion_tokens": config.MAX_OUTPUT_TOKENS,
            "messages": [{"role": "user", "content": content}]
        }

        result = await self._post_json(session, headers, payload)

        choices = result.get('choices') or [{}]
        usage = result.get('usage', {})

        return ProviderResponse(
            text=(choices[0].get('message') or {}).get('content') or '',
            model=result.get('model', self.model),
            input_tokens=usage.get('prompt_tokens', 0),
            output_tokens=usage.get('completion_tokens', 0),
            request_id=result.get('id')
        )
