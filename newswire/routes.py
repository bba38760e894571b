"""
HTTP routes for the newswire backend API.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from newswire.config import get_settings
from newswire.db import (
    AlreadyExistsError,
    DbClient,
    NotFoundError,
    ProjectLimitError,
)
from newswire.dependencies import get_db_client, get_publisher
from newswire.publisher import Publisher
from newswire.scheduler import handle_schedule
from newswire.schemas import (
    KeywordCreateRequest,
    KeywordProcessedResponse,
    KeywordResponse,
    NewsCreateRequest,
    NewsExistsResponse,
    NewsPage,
    NewsResponse,
    NewsSourcesResponse,
    ProjectCreateRequest,
    ProjectResponse,
    ProjectUpdateRequest,
    RssSourceCreateRequest,
    RssSourceResponse,
    SavedNewsPage,
    SavedNewsResponse,
    SavedNewsUpdateRequest,
    SaveNewsRequest,
    ScheduleRunRequest,
    ScheduleRunResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _split_csv(value: str | None) -> list[str] | None:
    if not value:
        return None
    items = [item.strip() for item in value.split(",") if item.strip()]
    return items or None


def _day_start(value: date | None) -> float | None:
    if value is None:
        return None
    return datetime.combine(value, time.min, tzinfo=timezone.utc).timestamp()


def _day_end(value: date | None) -> float | None:
    if value is None:
        return None
    return datetime.combine(value, time.max, tzinfo=timezone.utc).timestamp()


# Projects


@router.post("/projects", response_model=ProjectResponse, status_code=201)
def create_project(
    payload: ProjectCreateRequest, db: DbClient = Depends(get_db_client)
):
    try:
        project = db.create_project(
            payload.owner_id,
            payload.name,
            payload.description,
            payload.topic,
            project_limit=get_settings().default_project_limit,
        )
    except ProjectLimitError as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    return ProjectResponse(**project.as_dict())


@router.get("/projects", response_model=list[ProjectResponse])
def list_projects(
    owner_id: int | None = Query(None, gt=0),
    db: DbClient = Depends(get_db_client),
):
    return [ProjectResponse(**p.as_dict()) for p in db.list_projects(owner_id)]


@router.get("/projects/{project_id}", response_model=ProjectResponse)
def get_project(project_id: int, db: DbClient = Depends(get_db_client)):
    project = db.get_project(project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return ProjectResponse(**project.as_dict())


@router.patch("/projects/{project_id}", response_model=ProjectResponse)
def update_project(
    project_id: int,
    payload: ProjectUpdateRequest,
    db: DbClient = Depends(get_db_client),
):
    try:
        project = db.update_project(project_id, payload.model_dump(exclude_unset=True))
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return ProjectResponse(**project.as_dict())


@router.delete("/projects/{project_id}", status_code=204)
def delete_project(project_id: int, db: DbClient = Depends(get_db_client)):
    try:
        db.delete_project(project_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return Response(status_code=204)


# Keywords


@router.post(
    "/projects/{project_id}/keywords", response_model=KeywordResponse, status_code=201
)
def create_keyword(
    project_id: int,
    payload: KeywordCreateRequest,
    db: DbClient = Depends(get_db_client),
):
    try:
        keyword = db.add_keyword(project_id, payload.content)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except AlreadyExistsError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return KeywordResponse(**keyword.as_dict())


@router.get("/projects/{project_id}/keywords", response_model=list[KeywordResponse])
def list_keywords(project_id: int, db: DbClient = Depends(get_db_client)):
    if not db.get_project(project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    return [KeywordResponse(**k.as_dict()) for k in db.list_keywords(project_id)]


@router.delete("/projects/{project_id}/keywords/{keyword_id}", status_code=204)
def delete_keyword(
    project_id: int, keyword_id: int, db: DbClient = Depends(get_db_client)
):
    try:
        db.soft_delete_keyword(project_id, keyword_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return Response(status_code=204)


@router.post(
    "/admin/keywords/{keyword_id}/processed", response_model=KeywordProcessedResponse
)
def mark_keyword_processed(keyword_id: int, db: DbClient = Depends(get_db_client)):
    try:
        keyword, was_reset = db.mark_keyword_processed(keyword_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    if was_reset:
        logger.info("Keyword cycle reset for project %s", keyword.project_id)
    return KeywordProcessedResponse(
        keyword=KeywordResponse(**keyword.as_dict()), cycle_reset=was_reset
    )


# Feed sources


@router.post(
    "/projects/{project_id}/sources", response_model=RssSourceResponse, status_code=201
)
def create_rss_source(
    project_id: int,
    payload: RssSourceCreateRequest,
    db: DbClient = Depends(get_db_client),
):
    try:
        source = db.add_rss_source(project_id, payload.url, payload.provenance)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except AlreadyExistsError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return RssSourceResponse(**source.as_dict())


@router.get("/projects/{project_id}/sources", response_model=list[RssSourceResponse])
def list_rss_sources(project_id: int, db: DbClient = Depends(get_db_client)):
    if not db.get_project(project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    return [RssSourceResponse(**s.as_dict()) for s in db.list_rss_sources(project_id)]


# News


@router.post("/admin/news", response_model=NewsResponse, status_code=201)
def create_news(payload: NewsCreateRequest, db: DbClient = Depends(get_db_client)):
    try:
        news = db.create_news(
            payload.keyword_id,
            payload.url,
            payload.title,
            payload.summary,
            payload.source,
            timestamp=payload.published_date,
            rss_atom_id=payload.rss_atom_id,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except AlreadyExistsError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return NewsResponse(**news.as_dict())


@router.get("/admin/news/exists", response_model=NewsExistsResponse)
def news_exists(
    url: str = Query(..., min_length=1), db: DbClient = Depends(get_db_client)
):
    return NewsExistsResponse(exists=db.news_exists(url))


@router.get("/news", response_model=NewsPage)
def list_news(
    project_id: int = Query(..., gt=0),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str | None = Query(None),
    sources: str | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    db: DbClient = Depends(get_db_client),
):
    items, total = db.list_news(
        project_id,
        page=page,
        limit=limit,
        search=search,
        sources=_split_csv(sources),
        date_from=_day_start(date_from),
        date_to=_day_end(date_to),
    )
    return NewsPage(
        data=[NewsResponse(**n.as_dict()) for n in items],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/news/sources", response_model=NewsSourcesResponse)
def list_news_sources(
    project_id: int = Query(..., gt=0), db: DbClient = Depends(get_db_client)
):
    return NewsSourcesResponse(sources=db.list_news_sources(project_id))


@router.post("/news/{news_id}/save", response_model=SavedNewsResponse, status_code=201)
def save_news(
    news_id: int, payload: SaveNewsRequest, db: DbClient = Depends(get_db_client)
):
    try:
        saved = db.save_news(news_id, payload.project_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except AlreadyExistsError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return SavedNewsResponse(**saved.as_dict())


# Saved news


@router.get("/saved-news", response_model=SavedNewsPage)
def list_saved_news(
    project_id: int = Query(..., gt=0),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str | None = Query(None),
    categories: str | None = Query(None),
    sources: str | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    db: DbClient = Depends(get_db_client),
):
    items, total = db.list_saved_news(
        project_id,
        page=page,
        limit=limit,
        search=search,
        categories=_split_csv(categories),
        sources=_split_csv(sources),
        date_from=_day_start(date_from),
        date_to=_day_end(date_to),
    )
    return SavedNewsPage(
        data=[SavedNewsResponse(**s.as_dict()) for s in items],
        total=total,
        page=page,
        limit=limit,
    )


@router.patch("/saved-news/{saved_id}", response_model=SavedNewsResponse)
def update_saved_news(
    saved_id: int,
    payload: SavedNewsUpdateRequest,
    db: DbClient = Depends(get_db_client),
):
    try:
        saved = db.update_saved_news(saved_id, payload.model_dump(exclude_unset=True))
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return SavedNewsResponse(**saved.as_dict())


@router.delete("/saved-news/{saved_id}", status_code=204)
def delete_saved_news(saved_id: int, db: DbClient = Depends(get_db_client)):
    try:
        db.delete_saved_news(saved_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return Response(status_code=204)


# Scheduled tasks


@router.post("/admin/schedules/run", response_model=ScheduleRunResponse)
def run_schedule(
    payload: ScheduleRunRequest,
    db: DbClient = Depends(get_db_client),
    publisher: Publisher = Depends(get_publisher),
):
    """
    Run one scheduled tick on demand, e.g. to re-trigger after failed publishes.
    """
    report = handle_schedule(payload.cron, db=db, publisher=publisher)
    if report is None:
        return ScheduleRunResponse(schedule=payload.cron, handled=False)
    return ScheduleRunResponse(handled=True, **report.as_dict())
