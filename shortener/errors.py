"""
Доменные ошибки сервиса. У каждой свой HTTP-статус,
обработчик в main.py превращает их в JSON-ответ {"error", "detail"}.
"""


class ShortenerError(Exception):
    status_code = 500

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.__class__.__name__)
        self.detail = detail or self.__class__.__name__

    @property
    def error(self) -> str:
        return self.__class__.__name__


class InvalidUrl(ShortenerError):
    status_code = 400


class InvalidFormat(ShortenerError):
    status_code = 422


class Reserved(ShortenerError):
    status_code = 409


class AlreadyTaken(ShortenerError):
    status_code = 409


class DuplicateCode(ShortenerError):
    status_code = 409


class AllocationExhausted(ShortenerError):
    status_code = 503


class NotFound(ShortenerError):
    status_code = 404


class Expired(ShortenerError):
    status_code = 410


class Deleted(ShortenerError):
    status_code = 410


class RecordingDropped(ShortenerError):
    """Только для логов, наружу никогда не выбрасывается."""
    status_code = 503
