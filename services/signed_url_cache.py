"""
Signed-Access Cache

LRU cache of storage path -> signed URL. Every screenshot unit shares one
instance on the batch's event loop. Concurrent misses for the same path
share one upstream request; racing writes for a path are harmless because
any fresh URL for it is equivalent.
"""

import asyncio
import time
from collections import OrderedDict
from typing import Dict, Iterable, Optional

from config import config


class SignedUrlCache:
    """LRU + TTL cache in front of a StorageClient"""

    def __init__(self, storage, max_entries=None, ttl_seconds=None, clock=time.monotonic):
        self.storage = storage
        self.max_entries = max_entries or config.SIGNED_URL_CACHE_SIZE
        self.ttl_seconds = ttl_seconds or config.SIGNED_URL_TTL_SECONDS
        self.clock = clock
        self._entries: 'OrderedDict[str, tuple]' = OrderedDict()
        self._in_flight: Dict[str, asyncio.Future] = {}

    def __len__(self):
        return len(self._entries)

    def __contains__(self, path):
        return self._lookup(path) is not None

    # ===== CACHE PRIMITIVES =====

    def _lookup(self, path) -> Optional[str]:
        entry = self._entries.get(path)
        if entry is None:
            return None

        url, expires_at = entry
        if self.clock() >= expires_at:
            del self._entries[path]
            return None

        self._entries.move_to_end(path)
        return url

    def _store(self, path, url):
        self._entries[path] = (url, self.clock() + self.ttl_seconds)
        self._entries.move_to_end(path)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def invalidate(self, path):
        self._entries.pop(path, None)

    def clear(self):
        self._entries.clear()

    # ===== FETCHING =====

    def _claim(self, paths):
        """Register a shared future for each path this caller will fetch"""
        loop = asyncio.get_running_loop()
        futures = {}
        for path in paths:
            future = loop.create_future()
            self._in_flight[path] = future
            futures[path] = future
        return futures

    def _settle(self, futures, urls=None, error=None):
        for path, future in futures.items():
            self._in_flight.pop(path, None)
            if future.done():
                continue
            if isinstance(error, asyncio.CancelledError):
                future.cancel()
            elif error is not None:
                future.set_exception(error)
                # Waiters re-raise; consume here so an unawaited future is quiet
                future.exception()
            else:
                future.set_result((urls or {}).get(path))

    async def get_signed_url(self, path) -> Optional[str]:
        """
        Signed URL for one storage path.

        A hit is returned unchanged. A miss issues exactly one upstream
        request no matter how many callers are waiting on the same path.
        None only when a concurrent batch request could not sign the path.
        """
        url = self._lookup(path)
        if url is not None:
            return url

        pending = self._in_flight.get(path)
        if pending is not None:
            return await asyncio.shield(pending)

        futures = self._claim([path])
        try:
            url = await asyncio.to_thread(self.storage.create_signed_url, path, self.ttl_seconds)
        except BaseException as e:
            self._settle(futures, error=e)
            raise

        self._store(path, url)
        self._settle(futures, {path: url})
        return url

    async def get_signed_urls(self, paths: Iterable[str]) -> Dict[str, str]:
        """
        Signed URLs for many paths.

        Cached paths are served locally, paths another caller is already
        fetching are awaited, and the rest are signed in one batch request.

        Returns:
            Dict of path -> URL; paths that could not be signed are missing
        """
        results = {}
        waiting = {}
        misses = []

        for path in dict.fromkeys(paths):
            url = self._lookup(path)
            if url is not None:
                results[path] = url
            elif path in self._in_flight:
                waiting[path] = self._in_flight[path]
            else:
                misses.append(path)

        if misses:
            futures = self._claim(misses)
            try:
                fetched = await asyncio.to_thread(self.storage.create_signed_urls, misses, self.ttl_seconds)
            except BaseException as e:
                self._settle(futures, error=e)
                raise

            for path, url in fetched.items():
                if path in futures:
                    self._store(path, url)
                    results[path] = url
            self._settle(futures, fetched)

            print(f"[SignedUrl] Signed {len(fetched)}/{len(misses)} uncached paths", flush=True)

        for path, future in waiting.items():
            url = await asyncio.shield(future)
            if url is not None:
                results[path] = url

        return results
