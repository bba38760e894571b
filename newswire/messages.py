"""
Message schemas for the broker queues.

Every queue has a fixed field set; a message is validated against the model
registered for its queue before it is published.
"""

from __future__ import annotations

from typing import Annotated, Literal, Optional, Type

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    StrictInt,
    StrictStr,
    TypeAdapter,
    ValidationError,
)

QueueName = Literal["news", "rss_atom", "searcher"]

_HTTP_URL = TypeAdapter(HttpUrl)


def check_http_url(value: str) -> str:
    """Validate an http(s) URL but hand back the caller's string untouched."""
    try:
        _HTTP_URL.validate_python(value)
    except ValidationError as exc:
        raise ValueError(f"Invalid URL: {exc.errors()[0]['msg']}") from exc
    return value


PositiveId = Annotated[StrictInt, Field(gt=0)]
NonEmptyStr = Annotated[StrictStr, Field(min_length=1)]
UrlStr = Annotated[StrictStr, AfterValidator(check_http_url)]


class QueueMessage(BaseModel):
    model_config = ConfigDict(extra="forbid")


class NewsMessage(QueueMessage):
    keyword_id: PositiveId
    rss_atom_id: Optional[PositiveId] = None
    url: UrlStr


class RssAtomMessage(QueueMessage):
    rss_atom_id: PositiveId
    feed_url: UrlStr
    keywords: list[NonEmptyStr]


class SearcherMessage(QueueMessage):
    project_id: PositiveId
    topic: NonEmptyStr
    keyword_id: PositiveId
    keyword: NonEmptyStr
    searches: Annotated[StrictInt, Field(ge=0)] = 0


QUEUE_SCHEMAS: dict[QueueName, Type[QueueMessage]] = {
    "news": NewsMessage,
    "rss_atom": RssAtomMessage,
    "searcher": SearcherMessage,
}
