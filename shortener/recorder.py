import logging
import queue
import threading
import zlib
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .models import ClickEvent, LinkStats, as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Click:
    code: str
    timestamp: datetime
    referrer: Optional[str] = None
    country_code: Optional[str] = None


@dataclass(frozen=True)
class AggregateStats:
    code: str
    total_clicks: int
    last_click_at: Optional[datetime]


def _later(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    a, b = as_utc(a), as_utc(b)
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


class ShardedCounters:
    """Счётчики переходов по коду, ещё не попавшие в link_stats."""

    def __init__(self, shards: int = 16):
        self._locks = [threading.Lock() for _ in range(shards)]
        self._data: List[Dict[str, list]] = [{} for _ in range(shards)]

    def _index(self, code: str) -> int:
        return zlib.crc32(code.encode("utf-8")) % len(self._locks)

    def add(self, code: str, timestamp: datetime):
        i = self._index(code)
        with self._locks[i]:
            entry = self._data[i].setdefault(code, [0, None])
            entry[0] += 1
            entry[1] = _later(entry[1], timestamp)

    def subtract(self, code: str, count: int):
        i = self._index(code)
        with self._locks[i]:
            entry = self._data[i].get(code)
            if entry is None:
                return
            entry[0] -= count
            if entry[0] <= 0:
                del self._data[i][code]

    def get(self, code: str) -> Tuple[int, Optional[datetime]]:
        i = self._index(code)
        with self._locks[i]:
            entry = self._data[i].get(code)
            if entry is None:
                return 0, None
            return entry[0], entry[1]


class ClickRecorder:
    """
    Учёт переходов по принципу best-effort.

    record() только кладёт событие в ограниченную очередь и увеличивает
    счётчик в памяти, поэтому не добавляет задержки редиректу. Если очередь
    полна, событие теряется. flush() переносит очередь в журнал click_events
    и агрегат link_stats, reconcile() пересобирает link_stats из журнала.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        queue_size: int = 10_000,
        batch_size: int = 500,
        shards: int = 16,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.batch_size = batch_size
        self.clock = clock
        self._queue: "queue.Queue[Click]" = queue.Queue(maxsize=queue_size)
        self._pending = ShardedCounters(shards)
        self._flush_lock = threading.Lock()
        self._dropped_lock = threading.Lock()
        self._dropped = 0

    @property
    def dropped(self) -> int:
        return self._dropped

    def record(self, code: str, referrer: Optional[str] = None, country_code: Optional[str] = None) -> bool:
        click = Click(
            code=code,
            timestamp=self.clock(),
            referrer=referrer,
            country_code=country_code.upper()[:2] if country_code else None,
        )
        self._pending.add(code, click.timestamp)
        try:
            self._queue.put_nowait(click)
        except queue.Full:
            self._pending.subtract(code, 1)
            with self._dropped_lock:
                self._dropped += 1
            logger.warning("RecordingDropped: click queue full, dropped click for %s", code)
            return False
        return True

    def _take_batch(self, limit: int) -> List[Click]:
        batch = []
        while len(batch) < limit:
            try:
                batch.append(self._queue.get_nowait())
            except queue.Empty:
                break
        return batch

    def _persist(self, batch: List[Click]):
        folded: Dict[str, list] = {}
        for click in batch:
            entry = folded.setdefault(click.code, [0, None])
            entry[0] += 1
            entry[1] = _later(entry[1], click.timestamp)

        db = self.session_factory()
        try:
            db.add_all([
                ClickEvent(
                    code=click.code,
                    timestamp=click.timestamp,
                    referrer=click.referrer,
                    country_code=click.country_code,
                )
                for click in batch
            ])
            for code, (count, last_click_at) in folded.items():
                row = db.get(LinkStats, code)
                if row is None:
                    db.add(LinkStats(code=code, total_clicks=count, last_click_at=last_click_at))
                else:
                    row.total_clicks += count
                    row.last_click_at = _later(row.last_click_at, last_click_at)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to persist %d clicks, batch discarded", len(batch))
        finally:
            db.close()
            for code, (count, _) in folded.items():
                self._pending.subtract(code, count)

    def flush(self) -> int:
        """
        Записывает в базу всё, что лежало в очереди на момент вызова.
        Возвращает число обработанных событий.
        """
        with self._flush_lock:
            remaining = self._queue.qsize()
            processed = 0
            while remaining > 0:
                batch = self._take_batch(min(self.batch_size, remaining))
                if not batch:
                    break
                self._persist(batch)
                processed += len(batch)
                remaining -= len(batch)
        if processed:
            logger.debug("Flushed %d clicks", processed)
        return processed

    def reconcile(self):
        """Пересобирает link_stats из журнала click_events."""
        with self._flush_lock:
            db = self.session_factory()
            try:
                db.execute(delete(LinkStats))
                db.execute(
                    insert(LinkStats).from_select(
                        ["code", "total_clicks", "last_click_at"],
                        select(
                            ClickEvent.code,
                            func.count(ClickEvent.id),
                            func.max(ClickEvent.timestamp),
                        ).group_by(ClickEvent.code),
                    )
                )
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Click stats reconciliation failed")
                raise
            finally:
                db.close()
        logger.info("Click stats reconciled from event log")

    def stats(self, code: str) -> AggregateStats:
        # flush коммитит батч и вычитает его из pending под тем же локом
        with self._flush_lock:
            db = self.session_factory()
            try:
                row = db.get(LinkStats, code)
                total = row.total_clicks if row else 0
                last_click_at = row.last_click_at if row else None
            finally:
                db.close()
            pending, pending_last = self._pending.get(code)
        return AggregateStats(
            code=code,
            total_clicks=total + pending,
            last_click_at=_later(last_click_at, pending_last),
        )
