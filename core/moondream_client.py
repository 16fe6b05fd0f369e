"""
Async Moondream detection client

The detect endpoint answers with fractional boxes and reports no token usage.
"""

import json

import aiohttp

from config import config
from core.base import HTTPProvider, ProviderResponse
from core.images import ImageRef


class AsyncMoondreamClient(HTTPProvider):
    """Coordinate-only object detector"""

    name = 'moondream'

    def __init__(self, api_key=None, timeout=None):
        super().__init__(
            api_key or config.MOONDREAM_API_KEY,
            config.MOONDREAM_MODEL,
            config.MOONDREAM_DETECT_URL,
            timeout
        )

    async def detect(
        self,
        session: aiohttp.ClientSession,
        image: ImageRef,
        description: str
    ) -> ProviderResponse:
        """
        Locate every instance of `description` in the image.

        Returns:
            ProviderResponse whose objects are [{x_min, y_min, x_max, y_max}]
            fractions of the image size
        """
        headers = {
            "X-Moondream-Auth": self.api_key,
            "Content-Type": "application/json"
        }
        payload = {
            "image_url": image.data_url,
            "object": description
        }

        result = await self._post_json(session, headers, payload)
        objects = result.get('objects')
        if not isinstance(objects, list):
            objects = []

        print(f"[Moondream] '{description[:60]}' -> {len(objects)} boxes", flush=True)

        return ProviderResponse(
            text=json.dumps(result),
            model=self.model,
            objects=objects,
            request_id=result.get('request_id')
        )
