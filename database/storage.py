"""
Supabase storage operations - signed URL issuing
"""

import re
from urllib.parse import quote, unquote, urlparse

import requests
from config import config


class StorageError(Exception):
    """The storage service refused or failed a signing request."""


# /storage/v1/object/{public|sign|authenticated}/{bucket}/{path}
OBJECT_PATH_PATTERN = re.compile(r'/storage/v1/object/(?:public/|sign/|authenticated/)?([^/]+)/(.+)$')


def get_screenshot_path(file_url, bucket=None):
    """
    Derive the bucket-relative object path from a stored screenshot URL.

    Args:
        file_url: Public/signed object URL or an already bucket-relative path
        bucket: Expected bucket name (defaults to SUPABASE_BUCKET_NAME)

    Returns:
        Object path inside the bucket, or None when the URL is unusable
    """
    if not file_url or not isinstance(file_url, str):
        return None

    bucket = bucket or config.SUPABASE_BUCKET_NAME
    parsed = urlparse(file_url.strip())

    if not parsed.scheme:
        path = parsed.path.lstrip('/')
        if path.startswith(f"{bucket}/"):
            path = path[len(bucket) + 1:]
        return unquote(path) or None

    match = OBJECT_PATH_PATTERN.search(parsed.path)
    if not match or match.group(1) != bucket:
        return None

    return unquote(match.group(2)) or None


class StorageClient:
    """Issues time-limited read URLs for objects in one storage bucket"""

    def __init__(self, url=None, key=None, bucket=None, timeout=30):
        self.url = (url or config.SUPABASE_URL).rstrip('/')
        self.key = key or config.SUPABASE_KEY
        self.bucket = bucket or config.SUPABASE_BUCKET_NAME
        self.timeout = timeout

    def _headers(self):
        return {
            'Authorization': f'Bearer {self.key}',
            'apikey': self.key,
            'Content-Type': 'application/json'
        }

    def _absolute(self, signed_path):
        return f"{self.url}/storage/v1{signed_path}"

    def _post(self, url, body):
        try:
            response = requests.post(url, headers=self._headers(), json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise StorageError(f"Storage signing failed: {e}") from e

        if response.status_code not in (200, 201):
            print(f"Storage signing failed: {response.status_code} - {response.text}", flush=True)
            raise StorageError(f"Storage signing error: {response.status_code}")

        return response.json()

    def create_signed_url(self, path, ttl_seconds):
        """Sign a single object path"""
        result = self._post(
            f"{self.url}/storage/v1/object/sign/{self.bucket}/{quote(path)}",
            {'expiresIn': ttl_seconds}
        )
        signed = result.get('signedURL') or result.get('signedUrl')
        if not signed:
            raise StorageError(f"No signed URL returned for {path}")
        return self._absolute(signed)

    def create_signed_urls(self, paths, ttl_seconds):
        """
        Sign many object paths in one request.

        Returns:
            Dict of path -> absolute signed URL; paths the service could not
            sign are left out
        """
        if not paths:
            return {}

        result = self._post(
            f"{self.url}/storage/v1/object/sign/{self.bucket}",
            {'expiresIn': ttl_seconds, 'paths': list(paths)}
        )

        signed_urls = {}
        for item in result or []:
            signed = item.get('signedURL') or item.get('signedUrl')
            if item.get('error') or not signed:
                print(f"[SignedUrl] Could not sign {item.get('path')}: {item.get('error')}", flush=True)
                continue
            signed_urls[item['path']] = self._absolute(signed)

        return signed_urls
