import json
import logging
import threading
import time
import zlib
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import redis

from .models import Link, as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedLink:
    """То, что нужно резолверу: адрес, срок жизни и признак удаления."""
    destination_url: str
    expires_at: Optional[datetime] = None
    deleted: bool = False

    @classmethod
    def from_link(cls, link: Link) -> "CachedLink":
        return cls(
            destination_url=link.destination_url,
            expires_at=as_utc(link.expires_at),
            deleted=link.is_deleted,
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def to_json(self) -> str:
        return json.dumps({
            "url": self.destination_url,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "deleted": self.deleted,
        })

    @classmethod
    def from_json(cls, raw) -> "CachedLink":
        data = json.loads(raw)
        expires_at = data.get("expires_at")
        return cls(
            destination_url=data["url"],
            expires_at=as_utc(datetime.fromisoformat(expires_at)) if expires_at else None,
            deleted=bool(data.get("deleted", False)),
        )


class _Shard:
    def __init__(self, capacity: int):
        self.capacity = capacity
        self.lock = threading.Lock()
        # последний элемент - самый недавно использованный
        self.entries: OrderedDict = OrderedDict()
        # растёт при каждой инвалидации, заполнение со старым номером отбрасывается
        self.generation = 0


class ShardedLRUCache:
    """
    Ограниченный LRU-кэш, разбитый на шарды со своими блокировками.
    Код попадает в шард по crc32, так что одной общей блокировки на весь кэш нет.
    Записи живут не дольше ttl секунд (0 - без ограничения).
    """

    def __init__(self, capacity: int = 10_000, shards: int = 16, ttl: float = 60.0, clock=time.monotonic):
        if capacity < 1 or shards < 1:
            raise ValueError("capacity и shards должны быть положительными")
        shards = min(shards, capacity)
        per_shard = -(-capacity // shards)
        self._shards: List[_Shard] = [_Shard(per_shard) for _ in range(shards)]
        self.ttl = ttl
        self._clock = clock

    def _shard(self, key: str) -> _Shard:
        return self._shards[zlib.crc32(key.encode("utf-8")) % len(self._shards)]

    def get(self, key: str) -> Optional[CachedLink]:
        shard = self._shard(key)
        with shard.lock:
            item = shard.entries.get(key)
            if item is None:
                return None
            value, stored_at = item
            if self.ttl and self._clock() - stored_at >= self.ttl:
                del shard.entries[key]
                return None
            shard.entries.move_to_end(key)
            return value

    def generation(self, key: str) -> int:
        shard = self._shard(key)
        with shard.lock:
            return shard.generation

    def put(self, key: str, value: CachedLink, generation: Optional[int] = None) -> Optional[str]:
        """
        Кладёт значение, возвращает вытесненный ключ, если он был.
        Если передан generation и с тех пор шард инвалидировали, запись пропускается.
        """
        shard = self._shard(key)
        evicted = None
        with shard.lock:
            if generation is not None and generation != shard.generation:
                return None
            if key in shard.entries:
                shard.entries.move_to_end(key)
            elif len(shard.entries) >= shard.capacity:
                evicted = shard.entries.popitem(last=False)[0]
            shard.entries[key] = (value, self._clock())
        return evicted

    def invalidate(self, key: str) -> bool:
        shard = self._shard(key)
        with shard.lock:
            shard.generation += 1
            return shard.entries.pop(key, None) is not None

    def clear(self):
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()

    def __len__(self) -> int:
        return sum(len(shard.entries) for shard in self._shards)


class RedisLinkCache:
    """
    Общий для нескольких процессов уровень кэша.
    Любая ошибка Redis логируется и трактуется как промах: редирект
    не должен падать из-за кэша.
    """

    def __init__(self, client: redis.Redis, ttl: int = 3600, prefix: str = "link:"):
        self.client = client
        self.ttl = ttl
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, ttl: int = 3600) -> "RedisLinkCache":
        return cls(redis.Redis.from_url(url), ttl=ttl)

    def get(self, code: str) -> Optional[CachedLink]:
        try:
            raw = self.client.get(self.prefix + code)
        except redis.RedisError as exc:
            logger.warning("Redis get failed for %s: %s", code, exc)
            return None
        if raw is None:
            return None
        try:
            return CachedLink.from_json(raw)
        except (ValueError, KeyError) as exc:
            logger.warning("Broken cache entry for %s: %s", code, exc)
            return None

    def put(self, code: str, value: CachedLink, only_new: bool = False):
        """
        only_new=True (SET NX) используется при заполнении из базы: оно не должно
        затирать запись, которую после удаления или смены срока записал сервис.
        """
        try:
            self.client.set(self.prefix + code, value.to_json(), ex=self.ttl, nx=only_new)
        except redis.RedisError as exc:
            logger.warning("Redis set failed for %s: %s", code, exc)
