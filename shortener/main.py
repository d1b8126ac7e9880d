import logging
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, Depends, Header, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse

from apscheduler.schedulers.background import BackgroundScheduler

from .config import Settings
from .errors import ShortenerError
from .models import Link, as_utc
from .schemas import ErrorResponse, ExpiryUpdate, LinkCreate, LinkInfo, LinkStats
from .service import ShortenerService

logger = logging.getLogger(__name__)

settings = Settings.from_env()
service = ShortenerService.from_settings(settings)

app = FastAPI(title="URL Shortener")

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    410: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def get_service() -> ShortenerService:
    return service


def link_info(svc: ShortenerService, link: Link) -> LinkInfo:
    return LinkInfo(
        code=link.code,
        short_url=svc.short_url(link.code),
        destination_url=link.destination_url,
        created_at=as_utc(link.created_at),
        expires_at=as_utc(link.expires_at),
        is_custom_alias=link.is_custom_alias,
        owner_id=link.owner_id,
        deleted_at=as_utc(link.deleted_at),
    )


@app.exception_handler(ShortenerError)
async def shortener_error_handler(request: Request, exc: ShortenerError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "detail": exc.detail},
    )

# Планировщик APScheduler

scheduler = BackgroundScheduler()


@app.on_event("startup")
def start_scheduler():
    """
    Пересобираем агрегаты кликов из журнала и запускаем планировщик:
    flush очереди кликов и периодическую сверку со статистикой.
    """
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    service.recorder.reconcile()
    scheduler.add_job(
        service.recorder.flush, "interval",
        seconds=settings.click_flush_interval_seconds, misfire_grace_time=60,
    )
    scheduler.add_job(
        service.recorder.reconcile, "interval",
        seconds=settings.click_reconcile_interval_seconds, misfire_grace_time=60,
    )
    scheduler.start()
    logger.info("Scheduler started")


@app.on_event("shutdown")
def shutdown_scheduler():
    """
    Останавливаем планировщик и сбрасываем в базу оставшиеся клики.
    """
    scheduler.shutdown()
    service.recorder.flush()

# Ссылки


@app.post("/links", response_model=LinkInfo, status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES)
def create_link(payload: LinkCreate, svc: ShortenerService = Depends(get_service)):
    """
    Создаёт короткую ссылку: со своим алиасом или со сгенерированным кодом.
    """
    link = svc.create_link(
        payload.destination_url,
        custom_alias=payload.custom_alias,
        expires_at=payload.expires_at,
        owner_id=payload.owner_id,
    )
    return link_info(svc, link)


@app.get("/links/search", response_model=List[LinkInfo])
def search_links(
    destination_url: str = Query(..., alias="destinationUrl"),
    svc: ShortenerService = Depends(get_service),
):
    """
    Ищет не удалённые ссылки на указанный адрес.
    """
    return [link_info(svc, link) for link in svc.search(destination_url)]


@app.get("/links/{code}", response_model=LinkInfo, responses=ERROR_RESPONSES)
def get_link(code: str, svc: ShortenerService = Depends(get_service)):
    return link_info(svc, svc.get_link(code))


@app.get("/links/{code}/stats", response_model=LinkStats, responses=ERROR_RESPONSES)
def get_link_stats(code: str, svc: ShortenerService = Depends(get_service)):
    """
    Возвращает число переходов и время последнего.
    """
    stats = svc.stats(code)
    return LinkStats(
        code=stats.code,
        total_clicks=stats.total_clicks,
        last_click_at=stats.last_click_at,
    )


@app.put("/links/{code}/expiry", response_model=LinkInfo, responses=ERROR_RESPONSES)
def update_expiry(code: str, payload: ExpiryUpdate, svc: ShortenerService = Depends(get_service)):
    """
    Меняет срок жизни ссылки, null снимает ограничение.
    """
    return link_info(svc, svc.update_expiry(code, payload.expires_at))


@app.delete("/links/{code}", status_code=status.HTTP_204_NO_CONTENT, responses=ERROR_RESPONSES)
def delete_link(code: str, svc: ShortenerService = Depends(get_service)):
    """
    Мягкое удаление: код остаётся занятым навсегда.
    """
    svc.delete_link(code)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

# Редирект


@app.get("/{code}", responses=ERROR_RESPONSES)
def redirect_link(
    code: str,
    referer: Optional[str] = Header(None),
    x_country_code: Optional[str] = Header(None),
    svc: ShortenerService = Depends(get_service),
):
    """
    Принимает короткий код, делает редирект (HTTP 302).
    """
    destination = svc.resolve(code, referrer=referer, country_code=x_country_code)
    return RedirectResponse(url=destination, status_code=status.HTTP_302_FOUND)


if __name__ == "__main__":
    uvicorn.run("shortener.main:app", host="0.0.0.0", port=8000, reload=True)
