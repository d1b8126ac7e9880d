import logging
from datetime import datetime
from typing import List, Optional
from urllib.parse import urlsplit

import redis
import validators

from .aliases import AliasValidator
from .allocator import CodeAllocator
from .cache import RedisLinkCache, ShardedLRUCache
from .config import Settings
from .database import Base, make_engine, make_session_factory
from .errors import DuplicateCode, InvalidUrl
from .models import Link, as_utc, utcnow
from .recorder import AggregateStats, ClickRecorder
from .resolver import RedirectResolver
from .store import LinkStore

logger = logging.getLogger(__name__)

MAX_URL_LENGTH = 2048


def validate_destination(url: str) -> str:
    """Адрес должен быть абсолютным http(s) URL. Возвращается без нормализации."""
    if not url or len(url) > MAX_URL_LENGTH:
        raise InvalidUrl("Пустой или слишком длинный URL")
    if urlsplit(url).scheme.lower() not in ("http", "https"):
        raise InvalidUrl(f"Неподдерживаемая схема URL: {url}")
    if not validators.url(url):
        raise InvalidUrl(f"Некорректный URL: {url}")
    return url


class ShortenerService:
    """Связывает хранилище, аллокатор, резолвер и учёт переходов."""

    def __init__(
        self,
        store: LinkStore,
        allocator: CodeAllocator,
        aliases: AliasValidator,
        resolver: RedirectResolver,
        recorder: ClickRecorder,
        base_url: str = "https://short.ly",
    ):
        self.store = store
        self.allocator = allocator
        self.aliases = aliases
        self.resolver = resolver
        self.recorder = recorder
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings, redis_client: Optional[redis.Redis] = None) -> "ShortenerService":
        engine = make_engine(settings.database_url)
        Base.metadata.create_all(bind=engine)
        session_factory = make_session_factory(engine)
        store = LinkStore(session_factory)

        shared_cache = None
        if redis_client is not None:
            shared_cache = RedisLinkCache(redis_client, ttl=settings.redis_ttl_seconds)
        elif settings.redis_url:
            shared_cache = RedisLinkCache.from_url(settings.redis_url, ttl=settings.redis_ttl_seconds)

        return cls(
            store=store,
            allocator=CodeAllocator(
                store,
                length=settings.code_length,
                max_length=settings.code_max_length,
                retries=settings.allocation_retries,
            ),
            aliases=AliasValidator(store, settings.reserved_aliases),
            resolver=RedirectResolver(
                store,
                ShardedLRUCache(
                    capacity=settings.cache_size,
                    shards=settings.cache_shards,
                    ttl=settings.cache_ttl_seconds,
                ),
                shared_cache=shared_cache,
            ),
            recorder=ClickRecorder(
                session_factory,
                queue_size=settings.click_queue_size,
                batch_size=settings.click_batch_size,
            ),
            base_url=settings.base_url,
        )

    def short_url(self, code: str) -> str:
        return f"{self.base_url}/{code}"

    def create_link(
        self,
        destination_url: str,
        custom_alias: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        owner_id: Optional[str] = None,
    ) -> Link:
        """
        Создаёт ссылку. URL проверяется до любой работы с кодами.
        Гонку при вставке сгенерированного кода повторяем в пределах
        бюджета аллокатора, потом отдаём DuplicateCode.
        """
        validate_destination(destination_url)
        expires_at = as_utc(expires_at)

        if custom_alias:
            return self.aliases.create(Link(
                code=custom_alias,
                destination_url=destination_url,
                created_at=utcnow(),
                expires_at=expires_at,
                is_custom_alias=True,
                owner_id=owner_id,
            ))

        last_error = None
        for _ in range(self.allocator.retries):
            code = self.allocator.allocate()
            try:
                return self.store.create(Link(
                    code=code,
                    destination_url=destination_url,
                    created_at=utcnow(),
                    expires_at=expires_at,
                    is_custom_alias=False,
                    owner_id=owner_id,
                ))
            except DuplicateCode as exc:
                logger.info("Code %s taken concurrently, allocating again", code)
                last_error = exc
        raise last_error

    def get_link(self, code: str) -> Link:
        return self.store.get(code)

    def resolve(self, code: str, referrer: Optional[str] = None, country_code: Optional[str] = None) -> str:
        destination = self.resolver.resolve(code)
        self.recorder.record(code, referrer=referrer, country_code=country_code)
        return destination

    def stats(self, code: str) -> AggregateStats:
        # NotFound для неизвестного кода; истёкшие и удалённые ссылки статистику отдают
        self.store.get(code)
        return self.recorder.stats(code)

    def delete_link(self, code: str) -> Link:
        link = self.store.soft_delete(code)
        self.resolver.invalidate(code, link)
        return link

    def update_expiry(self, code: str, expires_at: Optional[datetime]) -> Link:
        link = self.store.update_expiry(code, as_utc(expires_at))
        self.resolver.invalidate(code, link)
        return link

    def search(self, destination_url: str) -> List[Link]:
        return self.store.find_by_destination(destination_url)
