import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

DEFAULT_RESERVED = "api,admin,static,links,docs,redoc,openapi,health,stats"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


@dataclass
class Settings:
    database_url: str = "sqlite:///./data/links.db"
    redis_url: Optional[str] = None
    base_url: str = "https://short.ly"

    code_length: int = 6
    code_max_length: int = 16
    allocation_retries: int = 5

    cache_size: int = 10_000
    cache_shards: int = 16
    cache_ttl_seconds: int = 60
    redis_ttl_seconds: int = 3600

    click_queue_size: int = 10_000
    click_batch_size: int = 500
    click_flush_interval_seconds: int = 5
    click_reconcile_interval_seconds: int = 600

    reserved_aliases: FrozenSet[str] = field(
        default_factory=lambda: frozenset(DEFAULT_RESERVED.split(","))
    )
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Собирает настройки из переменных окружения.
        Незаданные переменные берутся из значений по умолчанию.
        """
        reserved = os.getenv("RESERVED_ALIASES", DEFAULT_RESERVED)
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            redis_url=os.getenv("REDIS_URL") or None,
            base_url=os.getenv("BASE_URL", cls.base_url).rstrip("/"),
            code_length=_env_int("CODE_LENGTH", cls.code_length),
            code_max_length=_env_int("CODE_MAX_LENGTH", cls.code_max_length),
            allocation_retries=_env_int("ALLOCATION_RETRIES", cls.allocation_retries),
            cache_size=_env_int("CACHE_SIZE", cls.cache_size),
            cache_shards=_env_int("CACHE_SHARDS", cls.cache_shards),
            cache_ttl_seconds=_env_int("CACHE_TTL_SECONDS", cls.cache_ttl_seconds),
            redis_ttl_seconds=_env_int("REDIS_TTL_SECONDS", cls.redis_ttl_seconds),
            click_queue_size=_env_int("CLICK_QUEUE_SIZE", cls.click_queue_size),
            click_batch_size=_env_int("CLICK_BATCH_SIZE", cls.click_batch_size),
            click_flush_interval_seconds=_env_int(
                "CLICK_FLUSH_INTERVAL_SECONDS", cls.click_flush_interval_seconds
            ),
            click_reconcile_interval_seconds=_env_int(
                "CLICK_RECONCILE_INTERVAL_SECONDS", cls.click_reconcile_interval_seconds
            ),
            reserved_aliases=frozenset(
                word.strip().lower() for word in reserved.split(",") if word.strip()
            ),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )
