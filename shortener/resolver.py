from datetime import datetime
from typing import Callable, Optional

from .cache import CachedLink, RedisLinkCache, ShardedLRUCache
from .errors import Deleted, Expired
from .models import Link, utcnow
from .store import LinkStore


class RedirectResolver:
    """
    Горячий путь: код -> адрес назначения.
    Порядок поиска: локальный LRU, затем Redis (если настроен), затем база.
    Срок жизни проверяется при каждом чтении, фоновой чистки нет.
    У resolve нет побочных эффектов кроме заполнения кэша.
    """

    def __init__(
        self,
        store: LinkStore,
        cache: ShardedLRUCache,
        shared_cache: Optional[RedisLinkCache] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.cache = cache
        self.shared_cache = shared_cache
        self.clock = clock

    def lookup(self, code: str) -> CachedLink:
        # номер читается до похода в Redis и базу, см. ShardedLRUCache.put
        generation = self.cache.generation(code)
        entry = self.cache.get(code)
        if entry is not None:
            return entry

        if self.shared_cache is not None:
            entry = self.shared_cache.get(code)
            if entry is not None:
                self.cache.put(code, entry, generation)
                return entry

        entry = CachedLink.from_link(self.store.get(code))
        if self.shared_cache is not None:
            self.shared_cache.put(code, entry, only_new=True)
        self.cache.put(code, entry, generation)
        return entry

    def resolve(self, code: str) -> str:
        entry = self.lookup(code)
        if entry.deleted:
            raise Deleted(f"Ссылка '{code}' удалена")
        if entry.is_expired(self.clock()):
            raise Expired(f"Срок действия ссылки '{code}' истёк")
        return entry.destination_url

    def invalidate(self, code: str, link: Link):
        """
        Сбрасывает локальный кэш и записывает в Redis закоммиченное состояние
        ссылки. Заполнения из базы идут через SET NX и его не затирают.
        """
        self.cache.invalidate(code)
        if self.shared_cache is not None:
            self.shared_cache.put(code, CachedLink.from_link(link))
