from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Optional
from datetime import datetime


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class LinkCreate(CamelModel):
    # URL проверяется в сервисе, чтобы ответить 400 InvalidUrl, а не 422
    destination_url: str
    custom_alias: Optional[str] = None
    expires_at: Optional[datetime] = None
    owner_id: Optional[str] = None


class ExpiryUpdate(CamelModel):
    expires_at: Optional[datetime] = None


class LinkInfo(CamelModel):
    code: str
    short_url: str
    destination_url: str
    created_at: datetime
    expires_at: Optional[datetime] = None
    is_custom_alias: bool
    owner_id: Optional[str] = None
    deleted_at: Optional[datetime] = None


class LinkStats(CamelModel):
    code: str
    total_clicks: int
    last_click_at: Optional[datetime] = None


class ErrorResponse(BaseModel):
    error: str
    detail: str
