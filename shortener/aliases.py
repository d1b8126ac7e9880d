import re
from typing import Iterable

from .config import DEFAULT_RESERVED
from .errors import AlreadyTaken, DuplicateCode, InvalidFormat, Reserved
from .models import Link
from .store import LinkStore

ALIAS_PATTERN = re.compile(r"[A-Za-z0-9_-]{3,32}")
RESERVED_ALIASES = frozenset(DEFAULT_RESERVED.split(","))


class AliasValidator:
    """
    Проверяет пользовательский алиас: формат, зарезервированные слова, занятость.
    Окончательное решение об уникальности принимает хранилище при вставке.
    """

    def __init__(self, store: LinkStore, reserved: Iterable[str] = RESERVED_ALIASES):
        self.store = store
        self.reserved = frozenset(word.lower() for word in reserved)

    def validate(self, alias: str) -> str:
        if not ALIAS_PATTERN.fullmatch(alias):
            raise InvalidFormat(
                "Алиас должен состоять из 3-32 символов: латиница, цифры, '_' или '-'"
            )
        if alias.lower() in self.reserved:
            raise Reserved(f"Алиас '{alias}' зарезервирован")
        if self.store.exists(alias):
            raise AlreadyTaken(f"Алиас '{alias}' уже занят")
        return alias

    def create(self, link: Link) -> Link:
        self.validate(link.code)
        try:
            return self.store.create(link)
        except DuplicateCode:
            raise AlreadyTaken(f"Алиас '{link.code}' уже занят")
