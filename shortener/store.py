import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .errors import DuplicateCode, NotFound
from .models import Link, utcnow

logger = logging.getLogger(__name__)


class LinkStore:
    """
    Хранилище ссылок поверх SQLAlchemy.
    Уникальность кода держит уникальный индекс links.code, а не проверка
    перед вставкой: из двух одновременных create с одним кодом проходит один.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def create(self, link: Link) -> Link:
        db = self.session_factory()
        try:
            db.add(link)
            db.commit()
            db.refresh(link)
        except IntegrityError:
            db.rollback()
            raise DuplicateCode(f"Код '{link.code}' уже существует")
        finally:
            db.close()
        logger.debug("Created link %s", link.code)
        return link

    def get(self, code: str) -> Link:
        """Возвращает ссылку, в том числе мягко удалённую."""
        db = self.session_factory()
        try:
            link = db.execute(select(Link).where(Link.code == code)).scalar_one_or_none()
        finally:
            db.close()
        if link is None:
            raise NotFound(f"Ссылка '{code}' не найдена")
        return link

    def exists(self, code: str) -> bool:
        db = self.session_factory()
        try:
            found = db.execute(select(Link.id).where(Link.code == code)).first()
        finally:
            db.close()
        return found is not None

    def soft_delete(self, code: str) -> Link:
        """
        Помечает ссылку удалённой. Строка остаётся в таблице,
        поэтому код больше никогда не будет выдан повторно.
        """
        db = self.session_factory()
        try:
            db.execute(
                update(Link)
                .where(Link.code == code, Link.deleted_at.is_(None))
                .values(deleted_at=utcnow())
            )
            db.commit()
            link = db.execute(select(Link).where(Link.code == code)).scalar_one_or_none()
        finally:
            db.close()
        if link is None:
            raise NotFound(f"Ссылка '{code}' не найдена")
        return link

    def update_expiry(self, code: str, expires_at: Optional[datetime]) -> Link:
        db = self.session_factory()
        try:
            link = db.execute(select(Link).where(Link.code == code)).scalar_one_or_none()
            if link is None:
                raise NotFound(f"Ссылка '{code}' не найдена")
            link.expires_at = expires_at
            db.commit()
            db.refresh(link)
        finally:
            db.close()
        return link

    def find_by_destination(self, destination_url: str) -> List[Link]:
        """Живые (не удалённые) ссылки на данный URL."""
        db = self.session_factory()
        try:
            links = db.execute(
                select(Link)
                .where(Link.destination_url == destination_url, Link.deleted_at.is_(None))
                .order_by(Link.created_at)
            ).scalars().all()
        finally:
            db.close()
        return list(links)

    def count_with_length(self, length: int) -> int:
        db = self.session_factory()
        try:
            return db.execute(
                select(func.count(Link.id)).where(func.length(Link.code) == length)
            ).scalar_one()
        finally:
            db.close()
