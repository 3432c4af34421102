"""TTL cache in front of ``VectorSearchService``.

Entries live in a process-wide ``cachetools.TTLCache`` keyed by
``vector_search:<md5(query:limit:threshold)>``; formatted contexts use the
same key with a ``:context`` suffix.
"""

import hashlib
import logging
import threading
from typing import Any, Dict, List, Optional

from cachetools import TTLCache
from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..utils.log import log
from .vector_search import VectorSearchService


logger = logging.getLogger(__name__)

CACHE_PREFIX = "vector_search:"

_cache: Optional[TTLCache] = None
_cache_lock = threading.Lock()


def get_search_cache() -> TTLCache:
    global _cache
    with _cache_lock:
        if _cache is None:
            _cache = TTLCache(
                maxsize=settings.chatbot.cache_max_entries,
                ttl=settings.chatbot.cache_ttl_seconds,
            )
        return _cache


def cache_key(query: str, limit: int, threshold: float) -> str:
    digest = hashlib.md5(f"{query}:{limit}:{threshold}".encode("utf-8")).hexdigest()
    return f"{CACHE_PREFIX}{digest}"


class CachedVectorSearchService:
    def __init__(self, vector_search: VectorSearchService, cache: Optional[TTLCache] = None):
        self.vector_search = vector_search
        self.cache = cache if cache is not None else get_search_cache()
        self._lock = _cache_lock

    def _get(self, key: str) -> Any:
        with self._lock:
            return self.cache.get(key)

    def _set(self, key: str, value: Any) -> None:
        with self._lock:
            self.cache[key] = value

    @log(
        args_message=lambda a: f'Cached vector search query="{a["query"]}" limit={a["limit"]} threshold={a["threshold"]}',
        success_message=lambda r, a: f"Vector search completed, found {len(r)} results",
    )
    def search(self, query: str, limit: int = 5, threshold: float = 0.7) -> List[Dict[str, Any]]:
        key = cache_key(query, limit, threshold)
        cached = self._get(key)
        if cached is not None:
            return cached
        results = self.vector_search.search(query, limit, threshold)
        self._set(key, results)
        return results

    @log(
        args_message=lambda a: f'Cached context generation for query="{a["query"]}"',
        success_message=lambda r, a: "Context generation completed",
    )
    def search_and_format_context(self, query: str, limit: int = 5, threshold: float = 0.7) -> str:
        key = f"{cache_key(query, limit, threshold)}:context"
        cached = self._get(key)
        if cached is not None:
            return cached
        context = self.vector_search.search_and_format_context([query], limit, threshold)
        self._set(key, context)
        return context

    @log(args_message=lambda a: f'Invalidating cache for query="{a["query"]}"', success_message=False)
    def invalidate_query(self, query: str, limit: int = 5, threshold: float = 0.6) -> None:
        key = cache_key(query, limit, threshold)
        with self._lock:
            self.cache.pop(key, None)
            self.cache.pop(f"{key}:context", None)

    @log(args_message=lambda a: "Clearing all vector search cache", success_message=lambda r, a: f"Removed {r} entries")
    def clear_all(self) -> int:
        with self._lock:
            keys = [key for key in list(self.cache.keys()) if key.startswith(CACHE_PREFIX)]
            for key in keys:
                self.cache.pop(key, None)
        return len(keys)

    @log(
        args_message=lambda a: f"Warming up cache with {len(a['queries'])} queries",
        success_message=lambda r, a: (
            f"Cache warmed up: {r['success_count']} successful, {r['fail_count']} failed"
        ),
    )
    def warm_up_cache(self, queries: List[str], limit: int = 5, threshold: float = 0.6) -> Dict[str, int]:
        success_count = 0
        fail_count = 0
        for query in queries:
            try:
                self.search(query, limit, threshold)
            except (HTTPException, SQLAlchemyError) as exc:
                logger.error("Failed to warm up cache for query %r: %s", query, exc)
                fail_count += 1
            else:
                success_count += 1
        return {"success_count": success_count, "fail_count": fail_count}
