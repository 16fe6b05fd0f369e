"""
Shared provider plumbing - response shape, errors, HTTP call
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional

import aiohttp

from config import config


class ProviderError(Exception):
    """A model provider call failed at the transport or API level."""

    def __init__(self, provider, message, status=None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status = status


class ImageFetchError(Exception):
    """Screenshot bytes could not be downloaded or decoded."""


@dataclass
class ProviderResponse:
    """What every provider hands back to the gateway"""
    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    objects: Optional[List[Dict]] = None
    request_id: Optional[str] = None


class HTTPProvider:
    """Base for JSON-over-HTTP model providers"""

    name = 'provider'

    def __init__(self, api_key, model, url, timeout=None):
        self.api_key = api_key
        self.model = model
        self.url = url
        self.timeout = timeout or config.API_TIMEOUT_SECONDS

    async def _post_json(self, session: aiohttp.ClientSession, headers: Dict, payload: Dict) -> Dict:
        """POST a JSON payload, raising ProviderError on anything but a 200"""
        try:
            async with session.post(
                self.url,
                headers=headers,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise ProviderError(
                        self.name,
                        f"API error {response.status}: {error_text[:200]}",
                        status=response.status
                    )
                return await response.json()

        except asyncio.TimeoutError as e:
            raise ProviderError(self.name, "Request timeout") from e
        except aiohttp.ClientError as e:
            raise ProviderError(self.name, str(e)) from e
