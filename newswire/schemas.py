"""
Pydantic schemas for the newswire FastAPI backend.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from newswire.messages import UrlStr


class ProjectCreateRequest(BaseModel):
    owner_id: int = Field(..., gt=0)
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    topic: str = Field(..., min_length=1)


class ProjectUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    topic: Optional[str] = Field(default=None, min_length=1)


class ProjectResponse(BaseModel):
    id: int
    owner_id: int
    name: str
    description: str
    topic: str
    member_count: int
    created_at: float


class KeywordCreateRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=255)


class KeywordResponse(BaseModel):
    id: int
    project_id: int
    content: str
    searches: int
    processed: bool
    visible: bool


class KeywordProcessedResponse(BaseModel):
    keyword: KeywordResponse
    cycle_reset: bool


class RssSourceCreateRequest(BaseModel):
    url: UrlStr
    provenance: Literal["manual", "found", "inherited"] = "manual"


class RssSourceResponse(BaseModel):
    id: int
    project_id: int
    url: str
    provenance: str


class NewsCreateRequest(BaseModel):
    keyword_id: int = Field(..., gt=0)
    rss_atom_id: Optional[int] = Field(default=None, gt=0)
    url: UrlStr
    title: str
    summary: str = ""
    source: str
    published_date: Optional[float] = None


class NewsResponse(BaseModel):
    id: int
    url: str
    title: str
    summary: str
    source: str
    timestamp: float
    rss_atom_id: Optional[int] = None


class NewsExistsResponse(BaseModel):
    exists: bool


class NewsPage(BaseModel):
    data: list[NewsResponse]
    total: int
    page: int
    limit: int


class NewsSourcesResponse(BaseModel):
    sources: list[str]


class SaveNewsRequest(BaseModel):
    project_id: int = Field(..., gt=0)


class SavedNewsUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    summary: Optional[str] = None
    category: Optional[str] = None
    views: Optional[int] = Field(default=None, ge=0)


class SavedNewsResponse(BaseModel):
    id: int
    project_id: int
    source_news_id: int
    title: str
    summary: str
    category: Optional[str] = None
    views: int
    url: Optional[str] = None
    source: Optional[str] = None
    timestamp: Optional[float] = None


class SavedNewsPage(BaseModel):
    data: list[SavedNewsResponse]
    total: int
    page: int
    limit: int


class ScheduleRunRequest(BaseModel):
    cron: str


class PublishFailureResponse(BaseModel):
    queue: str
    item_id: int
    kind: str
    message: str


class ScheduleRunResponse(BaseModel):
    schedule: str
    handled: bool
    published: int = 0
    failures: list[PublishFailureResponse] = []
