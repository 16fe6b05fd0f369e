"""
Screenshot image fetching

Images are downloaded once per screenshot and shared by every stage. Pillow
supplies the pixel dimensions the coordinate normalizer needs.
"""

import asyncio
import base64
from dataclasses import dataclass
from io import BytesIO

import aiohttp
from PIL import Image, UnidentifiedImageError

from config import config
from core.base import ImageFetchError

PIL_MEDIA_TYPES = {
    'PNG': 'image/png',
    'JPEG': 'image/jpeg',
    'WEBP': 'image/webp',
    'GIF': 'image/gif',
}


@dataclass(frozen=True)
class ImageRef:
    """A fetched screenshot"""
    url: str
    data: bytes
    media_type: str
    width: int
    height: int

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode('utf-8')

    @property
    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.base64}"


def image_from_bytes(url: str, data: bytes, content_type: str = '') -> ImageRef:
    """Build an ImageRef, reading size and format with Pillow"""
    try:
        with Image.open(BytesIO(data)) as img:
            width, height = img.size
            media_type = PIL_MEDIA_TYPES.get(img.format)
    except (UnidentifiedImageError, OSError) as e:
        raise ImageFetchError(f"Could not decode image {url[:80]}: {e}") from e

    if not media_type:
        # Fall back to header or URL
        if 'jpeg' in content_type or 'jpg' in content_type or url.lower().split('?')[0].endswith(('.jpg', '.jpeg')):
            media_type = 'image/jpeg'
        else:
            media_type = 'image/png'

    return ImageRef(url=url, data=data, media_type=media_type, width=width, height=height)


async def fetch_image(session: aiohttp.ClientSession, image_url: str) -> ImageRef:
    """Download an image and return it with its dimensions"""
    try:
        async with session.get(image_url, timeout=aiohttp.ClientTimeout(total=config.IMAGE_TIMEOUT_SECONDS)) as response:
            if response.status != 200:
                raise ImageFetchError(f"Image download failed: {response.status}")
            content = await response.read()
            content_type = response.headers.get('content-type', '')
    except asyncio.TimeoutError as e:
        raise ImageFetchError("Image download timeout") from e
    except aiohttp.ClientError as e:
        raise ImageFetchError(f"Image download error: {e}") from e

    return image_from_bytes(image_url, content, content_type)
