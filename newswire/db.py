"""
Database abstraction for Postgres and an in-memory test implementation.

Keywords carry the state of the search cycle: `searches` counts how often a
keyword was handed to the searcher, `processed` marks that the searcher
finished with it. Once every visible keyword of a project is processed, the
whole set is reset (`processed=False`, `searches=0`) and the cycle restarts.
"""

from __future__ import annotations

import itertools
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Dict, Iterable, Optional, Protocol

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

PROVENANCES = ("manual", "found", "inherited")
PROJECT_FIELDS = ("name", "description", "topic")
SAVED_NEWS_FIELDS = ("title", "summary", "category", "views")
NULLABLE_FIELDS = ("category",)


class StoreError(Exception):
    """Base class for store-level failures surfaced to API callers."""


class NotFoundError(StoreError):
    pass


class AlreadyExistsError(StoreError):
    pass


class ProjectLimitError(StoreError):
    pass


def normalize_keyword(content: str) -> str:
    normalized = content.strip().lower()
    if not normalized:
        raise ValueError("Keyword content cannot be empty")
    return normalized


@dataclass
class ProjectRecord:
    id: int
    owner_id: int
    name: str
    description: str
    topic: str
    member_count: int = 1
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class KeywordRecord:
    id: int
    project_id: int
    content: str
    searches: int = 0
    processed: bool = False
    visible: bool = True

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "content": self.content,
            "searches": self.searches,
            "processed": self.processed,
            "visible": self.visible,
        }


@dataclass
class RssSourceRecord:
    id: int
    project_id: int
    url: str
    provenance: str = "manual"

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class NewsRecord:
    id: int
    url: str
    title: str
    summary: str
    source: str
    timestamp: float
    rss_atom_id: Optional[int] = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class SavedNewsRecord:
    id: int
    project_id: int
    source_news_id: int
    title: str
    summary: str
    category: Optional[str] = None
    views: int = 0
    # Joined from the source news row when listing.
    url: Optional[str] = None
    source: Optional[str] = None
    timestamp: Optional[float] = None

    def as_dict(self) -> dict:
        return asdict(self)


class DbClient(Protocol):
    """Interface for database access."""

    def create_project(
        self,
        owner_id: int,
        name: str,
        description: str,
        topic: str,
        *,
        project_limit: int,
    ) -> ProjectRecord:
        ...

    def get_project(self, project_id: int) -> Optional[ProjectRecord]:
        ...

    def list_projects(self, owner_id: Optional[int] = None) -> list[ProjectRecord]:
        ...

    def update_project(self, project_id: int, changes: dict) -> ProjectRecord:
        ...

    def delete_project(self, project_id: int) -> None:
        ...

    def add_keyword(self, project_id: int, content: str) -> KeywordRecord:
        ...

    def get_keyword(self, keyword_id: int) -> Optional[KeywordRecord]:
        ...

    def list_keywords(self, project_id: int) -> list[KeywordRecord]:
        ...

    def soft_delete_keyword(self, project_id: int, keyword_id: int) -> None:
        ...

    def select_top_for_search(self, project_id: int, n: int) -> list[KeywordRecord]:
        ...

    def increment_keyword_searches(self, keyword_id: int) -> None:
        ...

    def mark_keyword_processed(self, keyword_id: int) -> tuple[KeywordRecord, bool]:
        ...

    def cycle_reset(self, project_id: int) -> bool:
        ...

    def add_rss_source(
        self, project_id: int, url: str, provenance: str = "manual"
    ) -> RssSourceRecord:
        ...

    def list_rss_sources(self, project_id: Optional[int] = None) -> list[RssSourceRecord]:
        ...

    def create_news(
        self,
        keyword_id: int,
        url: str,
        title: str,
        summary: str,
        source: str,
        *,
        timestamp: Optional[float] = None,
        rss_atom_id: Optional[int] = None,
    ) -> NewsRecord:
        ...

    def news_exists(self, url: str) -> bool:
        ...

    def list_news(
        self,
        project_id: int,
        *,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        sources: Optional[list[str]] = None,
        date_from: Optional[float] = None,
        date_to: Optional[float] = None,
    ) -> tuple[list[NewsRecord], int]:
        ...

    def list_news_sources(self, project_id: int) -> list[str]:
        ...

    def save_news(self, news_id: int, project_id: int) -> SavedNewsRecord:
        ...

    def list_saved_news(
        self,
        project_id: int,
        *,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        categories: Optional[list[str]] = None,
        sources: Optional[list[str]] = None,
        date_from: Optional[float] = None,
        date_to: Optional[float] = None,
    ) -> tuple[list[SavedNewsRecord], int]:
        ...

    def update_saved_news(self, saved_id: int, changes: dict) -> SavedNewsRecord:
        ...

    def delete_saved_news(self, saved_id: int) -> None:
        ...


def _clean_changes(changes: dict, allowed: Iterable[str]) -> dict:
    cleaned = {key: value for key, value in changes.items() if key in allowed}
    if "summary" in cleaned and cleaned["summary"] is None:
        cleaned["summary"] = ""
    # None on a NOT NULL column means "leave unchanged".
    return {
        key: value
        for key, value in cleaned.items()
        if value is not None or key in NULLABLE_FIELDS
    }


def _like_pattern(search: str) -> str:
    escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _contains(needle: Optional[str], *haystacks: str) -> bool:
    if not needle:
        return True
    needle = needle.lower()
    return any(needle in (value or "").lower() for value in haystacks)


def _in_range(
    timestamp: Optional[float], date_from: Optional[float], date_to: Optional[float]
) -> bool:
    if date_from is not None and (timestamp is None or timestamp < date_from):
        return False
    if date_to is not None and (timestamp is None or timestamp > date_to):
        return False
    return True


def _page(items: list, page: int, limit: int) -> list:
    offset = (page - 1) * limit
    return items[offset : offset + limit]


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.projects: Dict[int, ProjectRecord] = {}
        self.keywords: Dict[int, KeywordRecord] = {}
        self.rss_sources: Dict[int, RssSourceRecord] = {}
        self.news: Dict[int, NewsRecord] = {}
        self.keyword_news: set[tuple[int, int]] = set()
        self.saved_news: Dict[int, SavedNewsRecord] = {}
        self._ids = itertools.count(1)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.projects.clear()
        self.keywords.clear()
        self.rss_sources.clear()
        self.news.clear()
        self.keyword_news.clear()
        self.saved_news.clear()

    def _require_project(self, project_id: int) -> ProjectRecord:
        project = self.projects.get(project_id)
        if not project:
            raise NotFoundError("Project not found")
        return project

    # Projects

    def create_project(
        self,
        owner_id: int,
        name: str,
        description: str,
        topic: str,
        *,
        project_limit: int,
    ) -> ProjectRecord:
        owned = sum(1 for p in self.projects.values() if p.owner_id == owner_id)
        if owned >= project_limit:
            raise ProjectLimitError("Project limit reached for your plan")
        record = ProjectRecord(
            id=next(self._ids),
            owner_id=owner_id,
            name=name,
            description=description,
            topic=topic,
        )
        self.projects[record.id] = record
        return replace(record)

    def get_project(self, project_id: int) -> Optional[ProjectRecord]:
        project = self.projects.get(project_id)
        return replace(project) if project else None

    def list_projects(self, owner_id: Optional[int] = None) -> list[ProjectRecord]:
        return [
            replace(p)
            for p in sorted(self.projects.values(), key=lambda p: p.id)
            if owner_id is None or p.owner_id == owner_id
        ]

    def update_project(self, project_id: int, changes: dict) -> ProjectRecord:
        project = self._require_project(project_id)
        for key, value in _clean_changes(changes, PROJECT_FIELDS).items():
            setattr(project, key, value)
        return replace(project)

    def delete_project(self, project_id: int) -> None:
        self._require_project(project_id)
        keyword_ids = {k.id for k in self.keywords.values() if k.project_id == project_id}
        source_ids = {s.id for s in self.rss_sources.values() if s.project_id == project_id}
        self.keyword_news = {
            (kid, nid) for kid, nid in self.keyword_news if kid not in keyword_ids
        }
        for saved_id in [s.id for s in self.saved_news.values() if s.project_id == project_id]:
            del self.saved_news[saved_id]
        for news in self.news.values():
            if news.rss_atom_id in source_ids:
                news.rss_atom_id = None
        for source_id in source_ids:
            del self.rss_sources[source_id]
        for keyword_id in keyword_ids:
            del self.keywords[keyword_id]
        del self.projects[project_id]

    # Keywords

    def add_keyword(self, project_id: int, content: str) -> KeywordRecord:
        self._require_project(project_id)
        normalized = normalize_keyword(content)
        for keyword in self.keywords.values():
            if keyword.project_id == project_id and keyword.content == normalized:
                if keyword.visible:
                    raise AlreadyExistsError("Keyword already exists")
                keyword.visible = True
                return replace(keyword)
        record = KeywordRecord(
            id=next(self._ids), project_id=project_id, content=normalized
        )
        self.keywords[record.id] = record
        return replace(record)

    def get_keyword(self, keyword_id: int) -> Optional[KeywordRecord]:
        keyword = self.keywords.get(keyword_id)
        return replace(keyword) if keyword else None

    def _visible_keywords(self, project_id: int) -> list[KeywordRecord]:
        return sorted(
            (
                k
                for k in self.keywords.values()
                if k.project_id == project_id and k.visible
            ),
            key=lambda k: k.id,
        )

    def list_keywords(self, project_id: int) -> list[KeywordRecord]:
        return [replace(k) for k in self._visible_keywords(project_id)]

    def soft_delete_keyword(self, project_id: int, keyword_id: int) -> None:
        keyword = self.keywords.get(keyword_id)
        if not keyword or keyword.project_id != project_id:
            raise NotFoundError("Keyword not found")
        keyword.visible = False

    def select_top_for_search(self, project_id: int, n: int) -> list[KeywordRecord]:
        ranked = sorted(
            self._visible_keywords(project_id), key=lambda k: (k.searches, k.id)
        )
        return [replace(k) for k in ranked[:n]]

    def increment_keyword_searches(self, keyword_id: int) -> None:
        keyword = self.keywords.get(keyword_id)
        if not keyword:
            raise NotFoundError("Keyword not found")
        keyword.searches += 1

    def mark_keyword_processed(self, keyword_id: int) -> tuple[KeywordRecord, bool]:
        keyword = self.keywords.get(keyword_id)
        if not keyword:
            raise NotFoundError("Keyword not found")
        keyword.processed = True
        was_reset = self.cycle_reset(keyword.project_id)
        return replace(keyword), was_reset

    def cycle_reset(self, project_id: int) -> bool:
        visible = self._visible_keywords(project_id)
        if not visible or any(not k.processed for k in visible):
            return False
        for keyword in visible:
            keyword.processed = False
            keyword.searches = 0
        return True

    # Feed sources

    def add_rss_source(
        self, project_id: int, url: str, provenance: str = "manual"
    ) -> RssSourceRecord:
        self._require_project(project_id)
        if provenance not in PROVENANCES:
            raise ValueError(f"Unknown provenance: {provenance}")
        for source in self.rss_sources.values():
            if source.project_id == project_id and source.url == url:
                raise AlreadyExistsError("Feed already exists")
        record = RssSourceRecord(
            id=next(self._ids), project_id=project_id, url=url, provenance=provenance
        )
        self.rss_sources[record.id] = record
        return replace(record)

    def list_rss_sources(self, project_id: Optional[int] = None) -> list[RssSourceRecord]:
        return [
            replace(s)
            for s in sorted(self.rss_sources.values(), key=lambda s: s.id)
            if project_id is None or s.project_id == project_id
        ]

    # News

    def create_news(
        self,
        keyword_id: int,
        url: str,
        title: str,
        summary: str,
        source: str,
        *,
        timestamp: Optional[float] = None,
        rss_atom_id: Optional[int] = None,
    ) -> NewsRecord:
        if keyword_id not in self.keywords:
            raise NotFoundError("Keyword not found")
        if rss_atom_id is not None and rss_atom_id not in self.rss_sources:
            raise NotFoundError("Feed not found")
        if self.news_exists(url):
            raise AlreadyExistsError("News already exists")
        record = NewsRecord(
            id=next(self._ids),
            url=url,
            title=title,
            summary=summary,
            source=source,
            timestamp=timestamp if timestamp is not None else time.time(),
            rss_atom_id=rss_atom_id,
        )
        self.news[record.id] = record
        self.keyword_news.add((keyword_id, record.id))
        return replace(record)

    def news_exists(self, url: str) -> bool:
        return any(n.url == url for n in self.news.values())

    def list_news(
        self,
        project_id: int,
        *,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        sources: Optional[list[str]] = None,
        date_from: Optional[float] = None,
        date_to: Optional[float] = None,
    ) -> tuple[list[NewsRecord], int]:
        keyword_ids = {k.id for k in self._visible_keywords(project_id)}
        if not keyword_ids:
            return [], 0
        linked = {nid for kid, nid in self.keyword_news if kid in keyword_ids}
        saved = {
            s.source_news_id
            for s in self.saved_news.values()
            if s.project_id == project_id
        }
        items = [
            n
            for n in self.news.values()
            if n.id in linked
            and n.id not in saved
            and _contains(search, n.title, n.summary)
            and (not sources or n.source in sources)
            and _in_range(n.timestamp, date_from, date_to)
        ]
        items.sort(key=lambda n: (n.timestamp, n.id), reverse=True)
        return [replace(n) for n in _page(items, page, limit)], len(items)

    def list_news_sources(self, project_id: int) -> list[str]:
        keyword_ids = {k.id for k in self.keywords.values() if k.project_id == project_id}
        counts: Dict[str, int] = {}
        for kid, nid in self.keyword_news:
            if kid in keyword_ids:
                source = self.news[nid].source
                counts[source] = counts.get(source, 0) + 1
        return [s for s, _ in sorted(counts.items(), key=lambda item: (-item[1], item[0]))]

    # Saved news

    def save_news(self, news_id: int, project_id: int) -> SavedNewsRecord:
        self._require_project(project_id)
        news = self.news.get(news_id)
        if not news:
            raise NotFoundError("News not found")
        for saved in self.saved_news.values():
            if saved.project_id == project_id and saved.source_news_id == news_id:
                raise AlreadyExistsError("News already saved")
        record = SavedNewsRecord(
            id=next(self._ids),
            project_id=project_id,
            source_news_id=news.id,
            title=news.title,
            summary=news.summary,
        )
        self.saved_news[record.id] = record
        return replace(record)

    def _with_source(self, saved: SavedNewsRecord) -> SavedNewsRecord:
        news = self.news.get(saved.source_news_id)
        if not news:
            return replace(saved)
        return replace(saved, url=news.url, source=news.source, timestamp=news.timestamp)

    def list_saved_news(
        self,
        project_id: int,
        *,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        categories: Optional[list[str]] = None,
        sources: Optional[list[str]] = None,
        date_from: Optional[float] = None,
        date_to: Optional[float] = None,
    ) -> tuple[list[SavedNewsRecord], int]:
        items = [
            self._with_source(s)
            for s in self.saved_news.values()
            if s.project_id == project_id and s.source_news_id in self.news
        ]
        items = [
            s
            for s in items
            if _contains(search, s.title, s.summary)
            and (not categories or s.category in categories)
            and (not sources or s.source in sources)
            and _in_range(s.timestamp, date_from, date_to)
        ]
        items.sort(key=lambda s: s.id, reverse=True)
        return _page(items, page, limit), len(items)

    def update_saved_news(self, saved_id: int, changes: dict) -> SavedNewsRecord:
        saved = self.saved_news.get(saved_id)
        if not saved:
            raise NotFoundError("Saved news not found")
        for key, value in _clean_changes(changes, SAVED_NEWS_FIELDS).items():
            setattr(saved, key, value)
        return self._with_source(saved)

    def delete_saved_news(self, saved_id: int) -> None:
        if saved_id not in self.saved_news:
            raise NotFoundError("Saved news not found")
        del self.saved_news[saved_id]


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @staticmethod
    def _to_project(row: "ProjectRow") -> ProjectRecord:
        return ProjectRecord(
            id=row.id,
            owner_id=row.owner_id,
            name=row.name,
            description=row.description,
            topic=row.topic,
            member_count=row.member_count,
            created_at=row.created_at,
        )

    @staticmethod
    def _to_keyword(row: "KeywordRow") -> KeywordRecord:
        return KeywordRecord(
            id=row.id,
            project_id=row.project_id,
            content=row.content,
            searches=row.searches,
            processed=bool(row.processed),
            visible=bool(row.visible),
        )

    @staticmethod
    def _to_source(row: "RssSourceRow") -> RssSourceRecord:
        return RssSourceRecord(
            id=row.id, project_id=row.project_id, url=row.url, provenance=row.provenance
        )

    @staticmethod
    def _to_news(row: "NewsRow") -> NewsRecord:
        return NewsRecord(
            id=row.id,
            url=row.url,
            title=row.title,
            summary=row.summary,
            source=row.source,
            timestamp=row.timestamp,
            rss_atom_id=row.rss_atom_id,
        )

    @staticmethod
    def _to_saved(row: "SavedNewsRow", news: Optional["NewsRow"] = None) -> SavedNewsRecord:
        return SavedNewsRecord(
            id=row.id,
            project_id=row.project_id,
            source_news_id=row.source_news_id,
            title=row.title,
            summary=row.summary,
            category=row.category,
            views=row.views,
            url=news.url if news else None,
            source=news.source if news else None,
            timestamp=news.timestamp if news else None,
        )

    # Projects

    def create_project(
        self,
        owner_id: int,
        name: str,
        description: str,
        topic: str,
        *,
        project_limit: int,
    ) -> ProjectRecord:
        with self.Session() as session:
            owned = session.scalar(
                select(func.count(ProjectRow.id)).where(ProjectRow.owner_id == owner_id)
            )
            if (owned or 0) >= project_limit:
                raise ProjectLimitError("Project limit reached for your plan")
            row = ProjectRow(
                owner_id=owner_id,
                name=name,
                description=description,
                topic=topic,
                member_count=1,
                created_at=time.time(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_project(row)

    def get_project(self, project_id: int) -> Optional[ProjectRecord]:
        with self.Session() as session:
            row = session.get(ProjectRow, project_id)
            return self._to_project(row) if row else None

    def list_projects(self, owner_id: Optional[int] = None) -> list[ProjectRecord]:
        with self.Session() as session:
            stmt = select(ProjectRow).order_by(ProjectRow.id.asc())
            if owner_id is not None:
                stmt = stmt.where(ProjectRow.owner_id == owner_id)
            return [self._to_project(row) for row in session.scalars(stmt)]

    def update_project(self, project_id: int, changes: dict) -> ProjectRecord:
        with self.Session() as session:
            row = session.get(ProjectRow, project_id)
            if not row:
                raise NotFoundError("Project not found")
            for key, value in _clean_changes(changes, PROJECT_FIELDS).items():
                setattr(row, key, value)
            session.commit()
            session.refresh(row)
            return self._to_project(row)

    def delete_project(self, project_id: int) -> None:
        with self.Session() as session:
            if not session.get(ProjectRow, project_id):
                raise NotFoundError("Project not found")
            keyword_ids = select(KeywordRow.id).where(KeywordRow.project_id == project_id)
            source_ids = select(RssSourceRow.id).where(RssSourceRow.project_id == project_id)
            statements = [
                delete(KeywordNewsRow).where(KeywordNewsRow.keyword_id.in_(keyword_ids)),
                delete(SavedNewsRow).where(SavedNewsRow.project_id == project_id),
                update(NewsRow)
                .where(NewsRow.rss_atom_id.in_(source_ids))
                .values(rss_atom_id=None),
                delete(RssSourceRow).where(RssSourceRow.project_id == project_id),
                delete(KeywordRow).where(KeywordRow.project_id == project_id),
                delete(ProjectRow).where(ProjectRow.id == project_id),
            ]
            for stmt in statements:
                session.execute(stmt.execution_options(synchronize_session=False))
            session.commit()

    # Keywords

    def add_keyword(self, project_id: int, content: str) -> KeywordRecord:
        normalized = normalize_keyword(content)
        with self.Session() as session:
            if not session.get(ProjectRow, project_id):
                raise NotFoundError("Project not found")
            existing = session.execute(
                select(KeywordRow).where(
                    KeywordRow.project_id == project_id,
                    KeywordRow.content == normalized,
                )
            ).scalar_one_or_none()
            if existing:
                if existing.visible:
                    raise AlreadyExistsError("Keyword already exists")
                existing.visible = True
                session.commit()
                session.refresh(existing)
                return self._to_keyword(existing)
            row = KeywordRow(
                project_id=project_id,
                content=normalized,
                searches=0,
                processed=False,
                visible=True,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise AlreadyExistsError("Keyword already exists") from exc
            session.refresh(row)
            return self._to_keyword(row)

    def get_keyword(self, keyword_id: int) -> Optional[KeywordRecord]:
        with self.Session() as session:
            row = session.get(KeywordRow, keyword_id)
            return self._to_keyword(row) if row else None

    def list_keywords(self, project_id: int) -> list[KeywordRecord]:
        with self.Session() as session:
            stmt = (
                select(KeywordRow)
                .where(KeywordRow.project_id == project_id, KeywordRow.visible.is_(True))
                .order_by(KeywordRow.id.asc())
            )
            return [self._to_keyword(row) for row in session.scalars(stmt)]

    def soft_delete_keyword(self, project_id: int, keyword_id: int) -> None:
        with self.Session() as session:
            row = session.get(KeywordRow, keyword_id)
            if not row or row.project_id != project_id:
                raise NotFoundError("Keyword not found")
            row.visible = False
            session.commit()

    def select_top_for_search(self, project_id: int, n: int) -> list[KeywordRecord]:
        with self.Session() as session:
            stmt = (
                select(KeywordRow)
                .where(KeywordRow.project_id == project_id, KeywordRow.visible.is_(True))
                .order_by(KeywordRow.searches.asc(), KeywordRow.id.asc())
                .limit(n)
            )
            return [self._to_keyword(row) for row in session.scalars(stmt)]

    def increment_keyword_searches(self, keyword_id: int) -> None:
        with self.Session() as session:
            result = session.execute(
                update(KeywordRow)
                .where(KeywordRow.id == keyword_id)
                .values(searches=KeywordRow.searches + 1)
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                session.rollback()
                raise NotFoundError("Keyword not found")
            session.commit()

    def mark_keyword_processed(self, keyword_id: int) -> tuple[KeywordRecord, bool]:
        with self.Session() as session:
            row = session.get(KeywordRow, keyword_id)
            if not row:
                raise NotFoundError("Keyword not found")
            row.processed = True
            session.flush()
            was_reset = self._cycle_reset(session, row.project_id)
            session.commit()
            session.refresh(row)
            return self._to_keyword(row), was_reset

    def cycle_reset(self, project_id: int) -> bool:
        with self.Session() as session:
            was_reset = self._cycle_reset(session, project_id)
            session.commit()
            return was_reset

    @staticmethod
    def _cycle_reset(session: Session, project_id: int) -> bool:
        visible = (KeywordRow.project_id == project_id, KeywordRow.visible.is_(True))
        total = session.scalar(select(func.count(KeywordRow.id)).where(*visible))
        if not total:
            return False
        pending = session.scalar(
            select(func.count(KeywordRow.id)).where(
                *visible, KeywordRow.processed.is_(False)
            )
        )
        if pending:
            return False
        session.execute(
            update(KeywordRow).where(*visible).values(processed=False, searches=0)
        )
        return True

    # Feed sources

    def add_rss_source(
        self, project_id: int, url: str, provenance: str = "manual"
    ) -> RssSourceRecord:
        if provenance not in PROVENANCES:
            raise ValueError(f"Unknown provenance: {provenance}")
        with self.Session() as session:
            if not session.get(ProjectRow, project_id):
                raise NotFoundError("Project not found")
            existing = session.execute(
                select(RssSourceRow.id).where(
                    RssSourceRow.project_id == project_id, RssSourceRow.url == url
                )
            ).first()
            if existing:
                raise AlreadyExistsError("Feed already exists")
            row = RssSourceRow(project_id=project_id, url=url, provenance=provenance)
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_source(row)

    def list_rss_sources(self, project_id: Optional[int] = None) -> list[RssSourceRecord]:
        with self.Session() as session:
            stmt = select(RssSourceRow).order_by(RssSourceRow.id.asc())
            if project_id is not None:
                stmt = stmt.where(RssSourceRow.project_id == project_id)
            return [self._to_source(row) for row in session.scalars(stmt)]

    # News

    def create_news(
        self,
        keyword_id: int,
        url: str,
        title: str,
        summary: str,
        source: str,
        *,
        timestamp: Optional[float] = None,
        rss_atom_id: Optional[int] = None,
    ) -> NewsRecord:
        with self.Session() as session:
            if not session.get(KeywordRow, keyword_id):
                raise NotFoundError("Keyword not found")
            if rss_atom_id is not None and not session.get(RssSourceRow, rss_atom_id):
                raise NotFoundError("Feed not found")
            if session.execute(select(NewsRow.id).where(NewsRow.url == url)).first():
                raise AlreadyExistsError("News already exists")
            row = NewsRow(
                url=url,
                title=title,
                summary=summary,
                source=source,
                timestamp=timestamp if timestamp is not None else time.time(),
                rss_atom_id=rss_atom_id,
            )
            session.add(row)
            try:
                session.flush()
                session.add(KeywordNewsRow(keyword_id=keyword_id, news_id=row.id))
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise AlreadyExistsError("News already exists") from exc
            session.refresh(row)
            return self._to_news(row)

    def news_exists(self, url: str) -> bool:
        with self.Session() as session:
            return session.execute(select(NewsRow.id).where(NewsRow.url == url)).first() is not None

    @staticmethod
    def _news_filters(
        search: Optional[str],
        sources: Optional[list[str]],
        date_from: Optional[float],
        date_to: Optional[float],
        text_columns: tuple,
    ) -> list:
        conditions = []
        if search:
            pattern = _like_pattern(search)
            conditions.append(
                or_(*(column.ilike(pattern, escape="\\") for column in text_columns))
            )
        if sources:
            conditions.append(NewsRow.source.in_(sources))
        if date_from is not None:
            conditions.append(NewsRow.timestamp >= date_from)
        if date_to is not None:
            conditions.append(NewsRow.timestamp <= date_to)
        return conditions

    def list_news(
        self,
        project_id: int,
        *,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        sources: Optional[list[str]] = None,
        date_from: Optional[float] = None,
        date_to: Optional[float] = None,
    ) -> tuple[list[NewsRecord], int]:
        keyword_ids = select(KeywordRow.id).where(
            KeywordRow.project_id == project_id, KeywordRow.visible.is_(True)
        )
        linked = select(KeywordNewsRow.news_id).where(
            KeywordNewsRow.keyword_id.in_(keyword_ids)
        )
        saved = select(SavedNewsRow.source_news_id).where(
            SavedNewsRow.project_id == project_id
        )
        conditions = [NewsRow.id.in_(linked), NewsRow.id.not_in(saved)]
        conditions += self._news_filters(
            search, sources, date_from, date_to, (NewsRow.title, NewsRow.summary)
        )
        with self.Session() as session:
            total = session.scalar(select(func.count(NewsRow.id)).where(*conditions))
            rows = session.scalars(
                select(NewsRow)
                .where(*conditions)
                .order_by(NewsRow.timestamp.desc(), NewsRow.id.desc())
                .limit(limit)
                .offset((page - 1) * limit)
            )
            return [self._to_news(row) for row in rows], total or 0

    def list_news_sources(self, project_id: int) -> list[str]:
        keyword_ids = select(KeywordRow.id).where(KeywordRow.project_id == project_id)
        news_count = func.count(NewsRow.id)
        stmt = (
            select(NewsRow.source, news_count)
            .join(KeywordNewsRow, KeywordNewsRow.news_id == NewsRow.id)
            .where(KeywordNewsRow.keyword_id.in_(keyword_ids))
            .group_by(NewsRow.source)
            .order_by(news_count.desc(), NewsRow.source.asc())
        )
        with self.Session() as session:
            return [source for source, _ in session.execute(stmt)]

    # Saved news

    def save_news(self, news_id: int, project_id: int) -> SavedNewsRecord:
        with self.Session() as session:
            if not session.get(ProjectRow, project_id):
                raise NotFoundError("Project not found")
            news = session.get(NewsRow, news_id)
            if not news:
                raise NotFoundError("News not found")
            existing = session.execute(
                select(SavedNewsRow.id).where(
                    SavedNewsRow.project_id == project_id,
                    SavedNewsRow.source_news_id == news_id,
                )
            ).first()
            if existing:
                raise AlreadyExistsError("News already saved")
            row = SavedNewsRow(
                project_id=project_id,
                source_news_id=news.id,
                title=news.title,
                summary=news.summary,
                views=0,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_saved(row)

    def list_saved_news(
        self,
        project_id: int,
        *,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        categories: Optional[list[str]] = None,
        sources: Optional[list[str]] = None,
        date_from: Optional[float] = None,
        date_to: Optional[float] = None,
    ) -> tuple[list[SavedNewsRecord], int]:
        conditions = [SavedNewsRow.project_id == project_id]
        conditions += self._news_filters(
            search, sources, date_from, date_to, (SavedNewsRow.title, SavedNewsRow.summary)
        )
        if categories:
            conditions.append(SavedNewsRow.category.in_(categories))
        with self.Session() as session:
            total = session.scalar(
                select(func.count(SavedNewsRow.id))
                .select_from(SavedNewsRow)
                .join(NewsRow, SavedNewsRow.source_news_id == NewsRow.id)
                .where(*conditions)
            )
            rows = session.execute(
                select(SavedNewsRow, NewsRow)
                .join(NewsRow, SavedNewsRow.source_news_id == NewsRow.id)
                .where(*conditions)
                .order_by(SavedNewsRow.id.desc())
                .limit(limit)
                .offset((page - 1) * limit)
            )
            return [self._to_saved(saved, news) for saved, news in rows], total or 0

    def update_saved_news(self, saved_id: int, changes: dict) -> SavedNewsRecord:
        with self.Session() as session:
            row = session.get(SavedNewsRow, saved_id)
            if not row:
                raise NotFoundError("Saved news not found")
            for key, value in _clean_changes(changes, SAVED_NEWS_FIELDS).items():
                setattr(row, key, value)
            session.commit()
            session.refresh(row)
            return self._to_saved(row, session.get(NewsRow, row.source_news_id))

    def delete_saved_news(self, saved_id: int) -> None:
        with self.Session() as session:
            row = session.get(SavedNewsRow, saved_id)
            if not row:
                raise NotFoundError("Saved news not found")
            session.delete(row)
            session.commit()


Base = declarative_base()


class ProjectRow(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    topic = Column(Text, nullable=False, default="")
    member_count = Column(Integer, nullable=False, default=1)
    created_at = Column(Float, nullable=False)


class KeywordRow(Base):
    __tablename__ = "keywords"
    __table_args__ = (UniqueConstraint("project_id", "content"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    content = Column(String, nullable=False)
    searches = Column(Integer, nullable=False, default=0)
    processed = Column(Boolean, nullable=False, default=False)
    visible = Column(Boolean, nullable=False, default=True)


class RssSourceRow(Base):
    __tablename__ = "rss_atom"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    url = Column(String, nullable=False)
    provenance = Column(String, nullable=False, default="manual")


class NewsRow(Base):
    __tablename__ = "news"

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(String, nullable=False, unique=True)
    title = Column(Text, nullable=False)
    summary = Column(Text, nullable=False, default="")
    source = Column(String, nullable=False, index=True)
    timestamp = Column(Float, nullable=False, index=True)
    rss_atom_id = Column(Integer, ForeignKey("rss_atom.id"), nullable=True)


class KeywordNewsRow(Base):
    __tablename__ = "keywords_to_news"

    keyword_id = Column(Integer, ForeignKey("keywords.id"), primary_key=True)
    news_id = Column(Integer, ForeignKey("news.id"), primary_key=True)


class SavedNewsRow(Base):
    __tablename__ = "saved_news"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    source_news_id = Column(Integer, ForeignKey("news.id"), nullable=False)
    title = Column(Text, nullable=False)
    summary = Column(Text, nullable=False, default="")
    category = Column(String, nullable=True)
    views = Column(Integer, nullable=False, default=0)
